"""Typed errors so callers can tell "try again" apart from "my input was bad"."""
from typing import Any, Optional


class AssistantError(Exception):
    """Base class for errors surfaced by the assistant pipeline."""

    code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        retryable: bool = False,
        details: Any = None,
    ):
        super().__init__(message)
        if code:
            self.code = code
        self.retryable = retryable
        self.details = details


class AIServiceError(AssistantError):
    """The completion call itself failed (timeout, outage, rate limit, empty body)."""

    code = "llm_unavailable"


class InputValidationError(AssistantError):
    """Caller sent input the pipeline refuses to process."""

    code = "invalid_input"


class TurnCancelledError(AssistantError):
    """The caller gave up on the turn before it finished."""

    code = "turn_cancelled"


class ConversationNotFoundError(AssistantError):
    code = "conversation_not_found"


class MalformedOutputError(ValueError):
    """The completion succeeded but did not contain the expected JSON shape.

    Never leaves the stage that produced it: each stage falls back to its
    safe default instead.
    """
