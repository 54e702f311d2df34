"""Intent classifier: maps free text onto the closed intent vocabulary."""
import logging
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from config.settings import settings
from core.errors import MalformedOutputError
from core.formatting import escape_text, format_history, format_known_names
from integrations.llm.client import LLMClient, parse_json_object
from integrations.llm.prompts import CLASSIFIER_PROMPT, CLASSIFIER_SYSTEM_PROMPT
from models.intent import (
    ClassificationContext,
    ExtractedEntity,
    Intent,
    IntentClassification,
)
from models.message import ChatMessage

logger = logging.getLogger(__name__)

REPHRASE_QUESTION = "I need more information to understand your request. Could you rephrase it?"
KIND_QUESTION = "Would you like to work with a payee or a category?"


def fallback_classification() -> IntentClassification:
    """Safe result for output that cannot be trusted."""
    return IntentClassification(
        intent=Intent.UNKNOWN,
        confidence=0.0,
        entities=[],
        requires_clarification=True,
        clarification_questions=[REPHRASE_QUESTION],
    )


class IntentClassifier:
    """
    Classifies one user turn.

    Malformed model output never raises: it degrades to UNKNOWN with
    confidence 0 and a rephrase question. A failing completion call
    (AIServiceError) does propagate, so outages are not mistaken for
    ambiguous input.
    """

    def __init__(
        self,
        llm: LLMClient,
        timeout_s: Optional[float] = None,
        temperature: float = 0.1,
    ):
        self.llm = llm
        self.timeout_s = timeout_s or settings.LLM_CLASSIFY_TIMEOUT
        self.temperature = temperature

    async def classify(
        self,
        message: str,
        context: Optional[ClassificationContext] = None,
        history: Optional[Sequence[ChatMessage]] = None,
    ) -> IntentClassification:
        prompt = self._build_prompt(message, context, history)

        response_text = await self.llm.complete(
            prompt=prompt,
            system_prompt=CLASSIFIER_SYSTEM_PROMPT,
            temperature=self.temperature,
            timeout_s=self.timeout_s,
            json_mode=True,
        )

        try:
            classification = self._parse(response_text)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Unparsable classification, falling back to UNKNOWN: {e}")
            return fallback_classification()

        logger.info(
            f"Classified intent: {classification.intent.value}, "
            f"confidence: {classification.confidence:.2f}, "
            f"{len(classification.entities)} entities, "
            f"clarification: {classification.requires_clarification}"
        )
        return classification

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_prompt(
        self,
        message: str,
        context: Optional[ClassificationContext],
        history: Optional[Sequence[ChatMessage]],
    ) -> str:
        known = ""
        if context:
            known += format_known_names("Known payees", context.known_payee_names)
            known += format_known_names("Known categories", context.known_category_names)
            if known:
                known += "\n"
        return CLASSIFIER_PROMPT.format(
            message=escape_text(message),
            history=format_history(history),
            known=known,
        )

    def _parse(self, text: str) -> IntentClassification:
        parsed = parse_json_object(text)

        if "intent" not in parsed or "confidence" not in parsed:
            raise MalformedOutputError("classification is missing intent or confidence")

        raw_intent = parsed["intent"]
        if not isinstance(raw_intent, str):
            raise MalformedOutputError(f"intent is not a string: {raw_intent!r}")
        intent = Intent(raw_intent.strip().upper())

        confidence = parsed["confidence"]
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise MalformedOutputError(f"confidence is not a number: {confidence!r}")

        raw_questions = parsed.get("clarificationQuestions")
        if not isinstance(raw_questions, list):
            raw_questions = []
        questions = [q.strip() for q in raw_questions if isinstance(q, str) and q.strip()]

        classification = IntentClassification(
            intent=intent,
            confidence=float(confidence),
            entities=_parse_entities(parsed.get("entities")),
            requires_clarification=bool(parsed.get("requiresClarification", False)),
            clarification_questions=questions,
        )
        return _normalise(classification)


def _parse_entities(raw: Any) -> list[ExtractedEntity]:
    """Validate entities one by one; a malformed entity is dropped, not fatal."""
    if not isinstance(raw, list):
        return []
    entities = []
    for item in raw:
        try:
            entities.append(ExtractedEntity.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Dropping malformed entity {item!r}: {e}")
    return entities


def _normalise(classification: IntentClassification) -> IntentClassification:
    if classification.intent == Intent.CLARIFY:
        classification.requires_clarification = True
        # A CLARIFY turn must always offer the payee/category choice
        if not any(
            "payee" in q.lower() or "category" in q.lower()
            for q in classification.clarification_questions
        ):
            classification.clarification_questions.append(KIND_QUESTION)
    if classification.requires_clarification and not classification.clarification_questions:
        classification.clarification_questions = [REPHRASE_QUESTION]
    return classification
