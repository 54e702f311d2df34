"""Conversation and clarification state models"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import Field

from models.action import SuggestedAction
from models.base import CamelModel
from models.intent import EntityExtractionResult, IntentClassification


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ClarificationState(str, Enum):
    IDLE = "idle"
    AWAITING_ANSWER = "awaiting_answer"
    ABANDONED = "abandoned"


class ChatMessage(CamelModel):
    """Message model"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = {}


class ClarificationContext(CamelModel):
    """Accumulates answers across turns until the required fields are known."""
    original_intent: IntentClassification
    original_message: str
    original_extraction: Optional[EntityExtractionResult] = None
    clarification_step: int = 1
    collected_data: dict[str, Any] = {}
    pending_questions: list[str] = []
    answers: list[str] = []


class Conversation(CamelModel):
    """Per-conversation state; exclusively owns its messages and clarification."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: Optional[str] = None
    messages: list[ChatMessage] = []
    last_activity: datetime = Field(default_factory=_now)
    clarification: Optional[ClarificationContext] = None
    pending_actions: list[SuggestedAction] = []

    @property
    def clarification_state(self) -> ClarificationState:
        if self.clarification is None:
            return ClarificationState.IDLE
        return ClarificationState.AWAITING_ANSWER

    def touch(self) -> None:
        self.last_activity = _now()
