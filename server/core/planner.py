"""Response planner: turns a resolved request into a reply and proposed actions."""
import logging
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from config.settings import settings
from core.errors import AIServiceError, MalformedOutputError
from core.formatting import escape_text, format_known_records
from integrations.llm.client import LLMClient, parse_json_object
from integrations.llm.prompts import (
    CLARIFICATION_PROMPT,
    PLANNER_PROMPT,
    PLANNER_SYSTEM_PROMPT,
)
from models.action import ActionType, PlannedResponse, SuggestedAction
from models.intent import (
    EntityExtractionResult,
    ExtractedEntity,
    ExtractionContext,
    IntentClassification,
)

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "I understand your request, but I need to process it further."
FALLBACK_QUESTION = "Could you provide more details about what you would like to do?"

_CONFIRM_ACTIONS = (ActionType.UPDATE, ActionType.DELETE)


def fallback_plan() -> PlannedResponse:
    return PlannedResponse(
        message=FALLBACK_MESSAGE,
        actions=[],
        requires_confirmation=True,
        confidence=0.1,
    )


def should_auto_execute(plan: PlannedResponse, threshold: Optional[float] = None) -> bool:
    """Auto-execute only above the threshold (strictly) and without a confirmation flag."""
    if threshold is None:
        threshold = settings.AUTO_EXECUTE_THRESHOLD
    return plan.confidence > threshold and not plan.requires_confirmation


def needs_confirmation(actions: Sequence[SuggestedAction]) -> bool:
    """Destructive actions and nameless creates always need a human yes."""
    for action in actions:
        if action.type in _CONFIRM_ACTIONS:
            return True
        if action.type == ActionType.CREATE and not action.data.name:
            return True
    return False


class ResponsePlanner:
    """
    Produces the conversational reply and a list of suggested actions.

    The confirmation rule is applied after parsing, so a model that
    forgets to ask before a delete cannot trigger one on its own.
    """

    def __init__(
        self,
        llm: LLMClient,
        timeout_s: Optional[float] = None,
        temperature: float = 0.3,
        clarify_timeout_s: Optional[float] = None,
    ):
        self.llm = llm
        self.timeout_s = timeout_s or settings.LLM_PLAN_TIMEOUT
        self.clarify_timeout_s = clarify_timeout_s or settings.LLM_CLARIFY_TIMEOUT
        self.temperature = temperature

    async def plan(
        self,
        message: str,
        classification: IntentClassification,
        extraction: EntityExtractionResult,
        context: Optional[ExtractionContext] = None,
    ) -> PlannedResponse:
        prompt = self._build_prompt(message, classification, extraction, context)

        response_text = await self.llm.complete(
            prompt=prompt,
            system_prompt=PLANNER_SYSTEM_PROMPT,
            temperature=self.temperature,
            timeout_s=self.timeout_s,
            json_mode=True,
        )

        try:
            plan = self._parse(response_text)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Unparsable plan for {classification.intent.value}, using fallback: {e}")
            return fallback_plan()

        logger.info(
            f"Planned {len(plan.actions)} action(s) for {classification.intent.value}, "
            f"confidence: {plan.confidence:.2f}, "
            f"confirmation: {plan.requires_confirmation}"
        )
        return plan

    async def clarification_message(
        self,
        message: str,
        missing: Sequence[str],
        ambiguous: Sequence[str] = (),
    ) -> str:
        """One friendly question for what is still missing. Never raises."""
        prompt = CLARIFICATION_PROMPT.format(
            message=escape_text(message),
            missing=", ".join(missing) or "none",
            ambiguous=", ".join(ambiguous) or "none",
        )
        try:
            text = await self.llm.complete(
                prompt=prompt,
                temperature=self.temperature,
                timeout_s=self.clarify_timeout_s,
            )
        except AIServiceError as e:
            logger.warning(f"Clarification question generation failed: {e}")
            return FALLBACK_QUESTION

        question = text.strip().strip('"').strip()
        return question or FALLBACK_QUESTION

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_prompt(
        self,
        message: str,
        classification: IntentClassification,
        extraction: EntityExtractionResult,
        context: Optional[ExtractionContext],
    ) -> str:
        known = ""
        if context:
            known += format_known_records("Existing payees", context.known_payees)
            known += format_known_records("Existing categories", context.known_categories)
            if known:
                known += "\n"
        return PLANNER_PROMPT.format(
            message=escape_text(message),
            intent=classification.intent.value,
            confidence=f"{classification.confidence:.2f}",
            entities=_format_entities(extraction.entities) or "none",
            missing=", ".join(extraction.missing_required_fields) or "none",
            known=known,
        )

    def _parse(self, text: str) -> PlannedResponse:
        parsed = parse_json_object(text)

        reply = parsed.get("message")
        if not isinstance(reply, str) or not reply.strip():
            raise MalformedOutputError("plan has no message")

        actions = _parse_actions(parsed.get("actions"))

        confidence = parsed.get("confidence", 0.0)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.0
        confidence = min(1.0, max(0.0, float(confidence)))

        requires_confirmation = parsed.get("requiresConfirmation", True)
        if not isinstance(requires_confirmation, bool):
            requires_confirmation = True
        if needs_confirmation(actions):
            requires_confirmation = True

        return PlannedResponse(
            message=reply.strip(),
            actions=actions,
            requires_confirmation=requires_confirmation,
            confidence=confidence,
        )


def _parse_actions(raw: Any) -> list[SuggestedAction]:
    """Validate actions one by one; an unusable action is dropped, not fatal."""
    if not isinstance(raw, list):
        return []
    actions = []
    for item in raw:
        try:
            actions.append(SuggestedAction.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping invalid suggested action {item!r}: {e}")
    return actions


def _format_entities(entities: Sequence[ExtractedEntity]) -> str:
    return ", ".join(
        f"{e.type}={escape_text(e.value)} ({e.confidence:.2f})" for e in entities
    )
