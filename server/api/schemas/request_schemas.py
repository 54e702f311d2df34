"""API request schemas"""
from pydantic import Field, field_validator
from typing import List, Optional
from uuid import UUID

from models.base import CamelModel


def _check_uuid(v: str, field: str) -> str:
    try:
        UUID(v)
    except ValueError:
        raise ValueError(f"{field} must be a valid UUID")
    return v


class TurnContextInput(CamelModel):
    """Names the client already knows about, used to bias classification."""
    known_payee_names: List[str] = Field(default_factory=list, max_length=200)
    known_category_names: List[str] = Field(default_factory=list, max_length=200)


class AssistantMessageRequest(CamelModel):
    message: str = Field(..., max_length=4000)
    conversation_id: Optional[str] = None
    context: Optional[TurnContextInput] = None

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            return _check_uuid(v, "conversationId")
        return v


class ClarifyRequest(CamelModel):
    conversation_id: str
    message: str = Field(..., max_length=4000)

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, v: str) -> str:
        return _check_uuid(v, "conversationId")


class ConfirmActionsRequest(CamelModel):
    conversation_id: str
    action_ids: List[str] = []

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, v: str) -> str:
        return _check_uuid(v, "conversationId")
