"""Entity extractor: pulls typed field values for a classified intent."""
import logging
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from config.settings import settings
from core.errors import MalformedOutputError
from core.formatting import escape_text, format_known_records
from integrations.llm.client import LLMClient, parse_json_object
from integrations.llm.prompts import EXTRACTOR_PROMPT, EXTRACTOR_SYSTEM_PROMPT
from models.action import ActionType
from models.intent import (
    EntityExtractionResult,
    ExtractedEntity,
    ExtractionContext,
    Intent,
    required_fields,
)

logger = logging.getLogger(__name__)


class ConfidencePolicy(BaseModel):
    """Tunable weights for blending intent and entity confidence."""
    model_config = ConfigDict(frozen=True)

    intent_weight: float = 0.6
    entity_weight: float = 0.4
    complete_bonus: float = 0.1
    incomplete_penalty: float = 0.2

    @classmethod
    def from_settings(cls) -> "ConfidencePolicy":
        return cls(
            intent_weight=settings.CONFIDENCE_INTENT_WEIGHT,
            entity_weight=settings.CONFIDENCE_ENTITY_WEIGHT,
            complete_bonus=settings.CONFIDENCE_COMPLETE_BONUS,
            incomplete_penalty=settings.CONFIDENCE_INCOMPLETE_PENALTY,
        )

    def overall_confidence(
        self,
        intent_confidence: float,
        entity_confidences: Sequence[float],
        has_required_fields: bool,
    ) -> float:
        """
        Blend intent and entity confidence into one score in [0, 1].

        A policy hook for callers that want a single readiness score. The
        pipeline itself gates on the planner's confidence and reports the
        extractor's own confidence unchanged.
        """
        avg_entity = (
            sum(entity_confidences) / len(entity_confidences)
            if entity_confidences else 0.0
        )
        adjustment = self.complete_bonus if has_required_fields else -self.incomplete_penalty
        score = intent_confidence * self.intent_weight + avg_entity * self.entity_weight + adjustment
        return min(1.0, max(0.0, score))


def missing_fields(intent: Intent, entities: Sequence[ExtractedEntity]) -> list[str]:
    """Required fields for ``intent`` with no non-blank entity of that type."""
    present = {e.type for e in entities if e.value.strip()}
    return [field for field in required_fields(intent) if field not in present]


def fallback_extraction(intent: Intent) -> EntityExtractionResult:
    return EntityExtractionResult(
        entities=[],
        confidence=0.0,
        ambiguous_entities=[],
        missing_required_fields=required_fields(intent),
    )


class EntityExtractor:
    """
    Extracts entities for an intent.

    Pure apart from the completion call. Malformed output degrades to an
    empty result that reports every required field as missing.
    """

    def __init__(
        self,
        llm: LLMClient,
        timeout_s: Optional[float] = None,
        temperature: float = 0.2,
        policy: Optional[ConfidencePolicy] = None,
    ):
        self.llm = llm
        self.timeout_s = timeout_s or settings.LLM_EXTRACT_TIMEOUT
        self.temperature = temperature
        self.policy = policy or ConfidencePolicy.from_settings()

    async def extract(
        self,
        message: str,
        intent: Intent,
        context: Optional[ExtractionContext] = None,
    ) -> EntityExtractionResult:
        prompt = self._build_prompt(message, intent, context)

        response_text = await self.llm.complete(
            prompt=prompt,
            system_prompt=EXTRACTOR_SYSTEM_PROMPT,
            temperature=self.temperature,
            timeout_s=self.timeout_s,
            json_mode=True,
        )

        try:
            result = self._parse(response_text, intent, context)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Unparsable extraction for {intent.value}, using empty result: {e}")
            return fallback_extraction(intent)

        logger.info(
            f"Extracted {len(result.entities)} entities for {intent.value}, "
            f"missing: {result.missing_required_fields or 'none'}"
        )
        return result

    def overall_confidence(
        self,
        intent_confidence: float,
        extraction: EntityExtractionResult,
    ) -> float:
        """``ConfidencePolicy.overall_confidence`` applied to an extraction result."""
        return self.policy.overall_confidence(
            intent_confidence,
            [e.confidence for e in extraction.entities],
            not extraction.missing_required_fields,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_prompt(
        self,
        message: str,
        intent: Intent,
        context: Optional[ExtractionContext],
    ) -> str:
        known = ""
        if context:
            known += format_known_records("Existing payees to match against", context.known_payees)
            known += format_known_records("Existing categories", context.known_categories)
            if known:
                known += "\n"
        return EXTRACTOR_PROMPT.format(
            message=escape_text(message),
            intent=intent.value,
            required_fields=", ".join(required_fields(intent)) or "none",
            known=known,
        )

    def _parse(
        self,
        text: str,
        intent: Intent,
        context: Optional[ExtractionContext],
    ) -> EntityExtractionResult:
        parsed = parse_json_object(text)

        raw_entities = parsed.get("entities", [])
        if not isinstance(raw_entities, list):
            raise MalformedOutputError("entities is not a list")

        entities: list[ExtractedEntity] = []
        for item in raw_entities:
            try:
                entities.append(ExtractedEntity.model_validate(item))
            except ValidationError as e:
                logger.debug(f"Dropping malformed entity {item!r}: {e}")

        raw_ambiguous = parsed.get("ambiguousEntities")
        if not isinstance(raw_ambiguous, list):
            raw_ambiguous = []
        ambiguous = [a.strip() for a in raw_ambiguous if isinstance(a, str) and a.strip()]

        confidence = parsed.get("confidence", 0.0)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.0
        confidence = min(1.0, max(0.0, float(confidence)))

        if context:
            resolve_record_id(intent, entities, ambiguous, context)

        return EntityExtractionResult(
            entities=entities,
            confidence=confidence,
            ambiguous_entities=ambiguous,
            missing_required_fields=missing_fields(intent, entities),
        )


def resolve_record_id(
    intent: Intent,
    entities: list[ExtractedEntity],
    ambiguous: list[str],
    context: ExtractionContext,
) -> None:
    """Fill in the id of an existing record named by an update/delete request."""
    if intent.action not in (ActionType.UPDATE, ActionType.DELETE):
        return
    if any(e.type == "id" and e.value.strip() for e in entities):
        return

    name = next((e.value.strip() for e in entities if e.type == "name" and e.value.strip()), None)
    if not name:
        return

    matches = [r for r in context.records_for(intent.entity) if r.name.strip().lower() == name.lower()]
    if len(matches) == 1:
        entities.append(ExtractedEntity(
            type="id",
            value=matches[0].id,
            confidence=0.9,
            context=f"matched existing {intent.entity.value} by name",
        ))
    elif len(matches) > 1 and name not in ambiguous:
        ambiguous.append(name)


def merge_entities(
    base: Sequence[ExtractedEntity],
    updates: Sequence[ExtractedEntity],
) -> list[ExtractedEntity]:
    """Entities from ``updates`` replace same-typed ones in ``base``.

    A base entity carrying the same value survives in place of its update,
    so its (usually higher) extraction confidence is kept.
    """
    updates = [e for e in updates if e.value.strip()]
    replaced = {e.type for e in updates}
    merged = [e for e in base if e.type not in replaced]
    for update in updates:
        same = next(
            (
                e for e in base
                if e.type == update.type
                and e.value.strip().lower() == update.value.strip().lower()
            ),
            None,
        )
        merged.append(same or update)
    return merged


def entities_from_fields(fields: dict[str, Any], confidence: float = 0.7) -> list[ExtractedEntity]:
    """Turn collected clarification data back into entities."""
    entities = []
    for key, value in fields.items():
        if key in ("name", "email", "phone", "address", "category", "id", "description") and value:
            entities.append(ExtractedEntity(type=key, value=str(value), confidence=confidence))
    return entities
