"""Suggested and executed action models"""
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from models.base import CamelModel
from utils.validation import sanitize_input


class EntityKind(str, Enum):
    """The two business entities the assistant can manage."""
    PAYEE = "payee"
    CATEGORY = "category"


class ActionType(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


# Keys that steer an action but are never written to a record
_CONTROL_FIELDS = {"entity", "id", "query", "tree"}

# Free-text fields sanitised on the way in; never the "entity" discriminator
_TEXT_FIELDS = (
    "id", "name", "description", "query",
    "email", "phone", "address", "tax_id", "category_id", "notes",
    "parent_id", "color", "icon",
)


class _ActionData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    query: Optional[str] = Field(
        None, validation_alias=AliasChoices("query", "search_term", "searchTerm")
    )

    @field_validator(*_TEXT_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _clean_strings(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str):
            v = sanitize_input(v)
            return v or None
        return v

    def record_fields(self) -> dict[str, Any]:
        """Fields to write to the record store (no control keys, no unset values)."""
        return {
            k: v for k, v in self.model_dump(exclude_none=True).items()
            if k not in _CONTROL_FIELDS
        }

    def search_term(self) -> str:
        return self.query or self.name or ""


class PayeeActionData(_ActionData):
    entity: Literal["payee"] = "payee"
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_id: Optional[str] = None
    category_id: Optional[str] = None
    notes: Optional[str] = None


class CategoryActionData(_ActionData):
    entity: Literal["category"] = "category"
    type: Optional[Literal["income", "expense"]] = None
    parent_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    tree: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in ("income", "expense") else None
        return v


ActionData = Annotated[
    Union[PayeeActionData, CategoryActionData],
    Field(discriminator="entity"),
]


class SuggestedAction(CamelModel):
    """One proposed CRUD operation. Not persisted."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: ActionType
    entity: EntityKind
    data: ActionData
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _tag_data(cls, values: Any) -> Any:
        # The entity kind lives on the action; copy it into the payload so
        # the data union can discriminate on it.
        if isinstance(values, dict):
            values = dict(values)
            entity = values.get("entity")
            if isinstance(entity, Enum):
                entity = entity.value
            data = values.get("data") or {}
            if isinstance(data, BaseModel):
                data = data.model_dump()
            if isinstance(entity, str) and isinstance(data, dict):
                values["entity"] = entity.strip().lower()
                values["data"] = {**data, "entity": values["entity"]}
            if isinstance(values.get("type"), str):
                values["type"] = values["type"].strip().lower()
            if not values.get("id"):
                values.pop("id", None)
        return values


class ExecutedOperation(CamelModel):
    """Outcome of one SuggestedAction."""
    action_id: str
    type: str
    entity: str
    success: bool
    data: Optional[Any] = None
    count: Optional[int] = None
    error: Optional[str] = None
    message: str = ""


class PlannedResponse(CamelModel):
    """Planner output: what to say and what to do."""
    message: str
    actions: list[SuggestedAction] = []
    requires_confirmation: bool = True
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
