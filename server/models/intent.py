"""Intent, entity and extraction data models"""
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import Field, field_validator

from models.action import ActionType, EntityKind
from models.base import CamelModel


class Intent(str, Enum):
    """Closed intent vocabulary: CRUD x {payee, category} plus three control tags."""
    CREATE_PAYEE = "CREATE_PAYEE"
    READ_PAYEE = "READ_PAYEE"
    UPDATE_PAYEE = "UPDATE_PAYEE"
    DELETE_PAYEE = "DELETE_PAYEE"
    CREATE_CATEGORY = "CREATE_CATEGORY"
    READ_CATEGORY = "READ_CATEGORY"
    UPDATE_CATEGORY = "UPDATE_CATEGORY"
    DELETE_CATEGORY = "DELETE_CATEGORY"
    CLARIFY = "CLARIFY"
    HELP = "HELP"
    UNKNOWN = "UNKNOWN"

    @property
    def action(self) -> Optional[ActionType]:
        verb, _, noun = self.value.partition("_")
        if noun not in ("PAYEE", "CATEGORY"):
            return None
        return ActionType(verb.lower())

    @property
    def entity(self) -> Optional[EntityKind]:
        _, _, noun = self.value.partition("_")
        if noun not in ("PAYEE", "CATEGORY"):
            return None
        return EntityKind(noun.lower())

    @property
    def is_crud(self) -> bool:
        return self.action is not None

    @classmethod
    def for_operation(cls, action: ActionType, entity: EntityKind) -> "Intent":
        return cls(f"{action.value.upper()}_{entity.value.upper()}")


EntityType = Literal["name", "email", "phone", "address", "category", "id", "description"]

# Required-field table: a pure function of the intent
REQUIRED_FIELDS: dict[Intent, tuple[str, ...]] = {
    Intent.CREATE_PAYEE: ("name",),
    Intent.READ_PAYEE: (),
    Intent.UPDATE_PAYEE: ("name", "id"),
    Intent.DELETE_PAYEE: ("name", "id"),
    Intent.CREATE_CATEGORY: ("name",),
    Intent.READ_CATEGORY: (),
    Intent.UPDATE_CATEGORY: ("name", "id"),
    Intent.DELETE_CATEGORY: ("name", "id"),
    Intent.CLARIFY: (),
    Intent.HELP: (),
    Intent.UNKNOWN: (),
}


def required_fields(intent: Intent) -> list[str]:
    return list(REQUIRED_FIELDS.get(intent, ()))


class ExtractedEntity(CamelModel):
    """A typed, valued span pulled out of the user's text."""
    type: EntityType
    value: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    context: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class IntentClassification(CamelModel):
    """Classifier output for one user turn."""
    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    entities: list[ExtractedEntity] = []
    requires_clarification: bool = False
    clarification_questions: list[str] = []


class EntityExtractionResult(CamelModel):
    """Extractor output. ``missing_required_fields`` is structural, not semantic."""
    entities: list[ExtractedEntity] = []
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    ambiguous_entities: list[str] = []
    missing_required_fields: list[str] = []

    def first(self, entity_type: str) -> Optional[str]:
        """Value of the first non-blank entity of ``entity_type``."""
        for entity in self.entities:
            if entity.type == entity_type and entity.value.strip():
                return entity.value.strip()
        return None

    def as_fields(self) -> dict[str, str]:
        """Collapse entities to a field map, first occurrence wins."""
        fields: dict[str, str] = {}
        for entity in self.entities:
            value = entity.value.strip()
            if value and entity.type not in fields:
                fields[entity.type] = value
        return fields


class ClassificationContext(CamelModel):
    """Known names injected into classification to help disambiguation."""
    known_payee_names: list[str] = []
    known_category_names: list[str] = []


class KnownRecord(CamelModel):
    id: str
    name: str


class ExtractionContext(CamelModel):
    """Existing records the extractor may match references against."""
    known_payees: list[KnownRecord] = []
    known_categories: list[KnownRecord] = []

    def records_for(self, entity: Optional[EntityKind]) -> list[KnownRecord]:
        if entity == EntityKind.PAYEE:
            return self.known_payees
        if entity == EntityKind.CATEGORY:
            return self.known_categories
        return []

    def to_classification_context(self) -> ClassificationContext:
        return ClassificationContext(
            known_payee_names=[p.name for p in self.known_payees],
            known_category_names=[c.name for c in self.known_categories],
        )
