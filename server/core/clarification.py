"""Clarification manager: multi-turn slot filling with a hard turn cap."""
import logging
import re
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel

from config.settings import settings
from core.extractor import (
    EntityExtractor,
    entities_from_fields,
    merge_entities,
    missing_fields,
    resolve_record_id,
)
from core.classifier import IntentClassifier
from models.action import ActionType, EntityKind
from models.intent import (
    EntityExtractionResult,
    ExtractionContext,
    Intent,
    IntentClassification,
)
from models.message import ClarificationContext, ClarificationState

logger = logging.getLogger(__name__)

GENERIC_QUESTION = "Could you provide more details about what you want to do?"
ABANDON_MESSAGE = (
    "I'm sorry, I couldn't complete this request with the information so far. "
    "Please start again with the full details, for example: "
    "\"Add payee 'ABC Corp'\"."
)

_FIELD_QUESTIONS = {
    "name": "What name should I use?",
    "id": "Which existing record do you mean? Please give its exact name.",
    "entity": "Is this about a payee or a category?",
    "action": "What would you like to do: add, find, update or delete it?",
}


def _compile_word_patterns(keywords: List[str]) -> re.Pattern:
    """Single regex matching any keyword on word boundaries."""
    escaped = [re.escape(kw) for kw in keywords]
    return re.compile(r"\b(?:" + "|".join(escaped) + r")\b", re.IGNORECASE)


_PAYEE_KEYWORDS = ["payee", "payees", "vendor", "vendors", "supplier", "suppliers"]
_CATEGORY_KEYWORDS = ["category", "categories", "expense", "expenses", "income"]
_PAYEE_RE = _compile_word_patterns(_PAYEE_KEYWORDS)
_CATEGORY_RE = _compile_word_patterns(_CATEGORY_KEYWORDS)
_EXPENSE_RE = _compile_word_patterns(["expense", "expenses"])
_INCOME_RE = _compile_word_patterns(["income"])

_ACTION_PATTERNS = [
    (ActionType.DELETE, _compile_word_patterns(["delete", "remove", "drop"])),
    (ActionType.UPDATE, _compile_word_patterns(["update", "change", "rename", "edit", "modify"])),
    (ActionType.CREATE, _compile_word_patterns(["add", "create", "new", "make"])),
    (ActionType.READ, _compile_word_patterns(["find", "list", "show", "search", "look up", "view"])),
]

_QUOTED_RE = re.compile(r"\"([^\"]+)\"|“([^”]+)”|(?<!\w)'([^']+)'(?!\w)")

_STOPWORDS = {
    "the", "and", "for", "with", "want", "add", "create", "new", "please",
    "called", "named", "name", "its", "it's", "that", "this", "one", "would",
    "like", "just", "yes", "sure", "make", "should", "be", "use", "call",
    "delete", "remove", "update", "change", "rename", "edit", "find", "list", "show",
}
_KIND_WORDS = {kw for kw in _PAYEE_KEYWORDS + _CATEGORY_KEYWORDS}


class ClarificationOutcome(str, Enum):
    RESOLVED = "resolved"
    STILL_MISSING = "still_missing"
    ABANDONED = "abandoned"


class ClarificationResult(BaseModel):
    """What happened to one clarifying answer."""
    outcome: ClarificationOutcome
    classification: IntentClassification
    extraction: EntityExtractionResult
    context: Optional[ClarificationContext] = None  # set while still awaiting an answer
    collected_data: dict[str, Any] = {}
    request_text: str = ""                          # original message plus every answer
    message: Optional[str] = None                   # next question or apology

    @property
    def state(self) -> ClarificationState:
        return _OUTCOME_STATES[self.outcome]


_OUTCOME_STATES = {
    ClarificationOutcome.RESOLVED: ClarificationState.IDLE,
    ClarificationOutcome.STILL_MISSING: ClarificationState.AWAITING_ANSWER,
    ClarificationOutcome.ABANDONED: ClarificationState.ABANDONED,
}


def augmented_message(original: str, answers: List[str]) -> str:
    if not answers:
        return original
    return f"{original}. Additional details: {'. '.join(answers)}"


def infer_action(text: str) -> Optional[ActionType]:
    for action, pattern in _ACTION_PATTERNS:
        if pattern.search(text):
            return action
    return None


def merge_answer(collected: dict[str, Any], answer: str) -> dict[str, Any]:
    """
    Heuristic slot filling for one clarifying answer.

    - entity-kind keywords set ``entity`` (payee wins over category words)
    - income/expense are recorded as ``type`` alongside the entity kind
    - a quoted substring becomes the name when none is known yet
    - otherwise the first non-stopword token longer than two characters,
      never an entity-kind keyword
    """
    updated = dict(collected)

    if _PAYEE_RE.search(answer):
        updated["entity"] = EntityKind.PAYEE.value
    elif _CATEGORY_RE.search(answer):
        updated["entity"] = EntityKind.CATEGORY.value

    if _EXPENSE_RE.search(answer):
        updated["type"] = "expense"
    elif _INCOME_RE.search(answer):
        updated["type"] = "income"

    if not updated.get("name"):
        quoted = quoted_name(answer)
        if quoted:
            updated["name"] = quoted
        else:
            guess = _guess_name(answer)
            if guess:
                updated["name"] = guess

    return updated


def quoted_name(text: str) -> Optional[str]:
    match = _QUOTED_RE.search(text)
    if not match:
        return None
    value = next(g for g in match.groups() if g is not None).strip()
    return value or None


def _guess_name(text: str) -> Optional[str]:
    for raw in text.split():
        word = raw.strip(".,;:!?()[]")
        lowered = word.lower()
        if len(word) > 2 and lowered not in _STOPWORDS and lowered not in _KIND_WORDS:
            return word
    return None


class ClarificationManager:
    """
    Per-conversation clarification state machine.

    Idle -> AwaitingAnswer(1) -> ... -> Idle (resolved) or Abandoned once
    ``max_turns`` questions have gone unanswered. The context object is
    owned by exactly one conversation; callers serialise access to it.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        extractor: EntityExtractor,
        max_turns: Optional[int] = None,
        question_writer=None,
        reextract: bool = True,
    ):
        self.classifier = classifier
        self.extractor = extractor
        self.max_turns = max_turns or settings.MAX_CLARIFICATION_TURNS
        # Optional async callable (message, missing, ambiguous) -> question text
        self.question_writer = question_writer
        self.reextract = reextract

    @staticmethod
    def needs_clarification(
        classification: IntentClassification,
        extraction: EntityExtractionResult,
    ) -> bool:
        return classification.requires_clarification or bool(extraction.missing_required_fields)

    def open(
        self,
        message: str,
        classification: IntentClassification,
        extraction: EntityExtractionResult,
    ) -> ClarificationContext:
        """Idle -> AwaitingAnswer(1)."""
        collected: dict[str, Any] = extraction.as_fields()
        intent = classification.intent
        if intent.entity:
            collected["entity"] = intent.entity.value
        if intent.action:
            collected["action"] = intent.action.value

        questions = list(classification.clarification_questions)
        if not questions:
            questions = [self._question_for(extraction.missing_required_fields)]

        logger.info(
            f"Opening clarification for {intent.value}, "
            f"missing: {extraction.missing_required_fields or 'none'}"
        )
        return ClarificationContext(
            original_intent=classification,
            original_message=message,
            original_extraction=extraction,
            clarification_step=1,
            collected_data=collected,
            pending_questions=questions,
        )

    @staticmethod
    def first_question(context: ClarificationContext) -> str:
        return context.pending_questions[0] if context.pending_questions else GENERIC_QUESTION

    async def resolve(
        self,
        context: ClarificationContext,
        answer: str,
        extraction_context: Optional[ExtractionContext] = None,
    ) -> ClarificationResult:
        """AwaitingAnswer(n) -> Idle, AwaitingAnswer(n+1) or Abandoned."""
        answers = context.answers + [answer]
        augmented = augmented_message(context.original_message, answers)

        collected = merge_answer(context.collected_data, answer)
        if "action" not in collected:
            action = infer_action(context.original_message) or infer_action(answer)
            if action:
                collected["action"] = action.value

        classification = await self._resolve_intent(context, collected, augmented)
        intent = classification.intent

        base_extraction = context.original_extraction or EntityExtractionResult()
        reextraction = None
        if intent.is_crud and self.reextract:
            reextraction = await self.extractor.extract(augmented, intent, extraction_context)
            for field, value in reextraction.as_fields().items():
                collected[field] = value

            # An explicitly quoted name in the answer beats any re-extracted guess
            quoted = quoted_name(answer)
            if quoted and not context.collected_data.get("name"):
                collected["name"] = quoted

        entities = merge_entities(
            base_extraction.entities + (reextraction.entities if reextraction else []),
            entities_from_fields(collected),
        )
        ambiguous = list(reextraction.ambiguous_entities if reextraction else base_extraction.ambiguous_entities)
        if intent.is_crud and extraction_context:
            resolve_record_id(intent, entities, ambiguous, extraction_context)
            for entity in entities:
                if entity.type == "id" and "id" not in collected:
                    collected["id"] = entity.value

        if intent.is_crud:
            missing = missing_fields(intent, entities)
        else:
            missing = [f for f in ("entity", "action") if not collected.get(f)] or ["entity"]
        extraction = EntityExtractionResult(
            entities=entities,
            confidence=reextraction.confidence if reextraction else base_extraction.confidence,
            ambiguous_entities=ambiguous,
            missing_required_fields=missing,
        )

        if not missing:
            logger.info(f"Clarification resolved {intent.value} after {len(answers)} answer(s)")
            resolved = classification.model_copy(update={
                "entities": entities,
                "requires_clarification": False,
                "clarification_questions": [],
            })
            return ClarificationResult(
                outcome=ClarificationOutcome.RESOLVED,
                classification=resolved,
                extraction=extraction,
                collected_data=collected,
                request_text=augmented,
            )

        next_step = context.clarification_step + 1
        if next_step > self.max_turns:
            logger.info(f"Clarification abandoned after {len(answers)} answer(s)")
            return ClarificationResult(
                outcome=ClarificationOutcome.ABANDONED,
                classification=classification,
                extraction=extraction,
                collected_data=collected,
                request_text=augmented,
                message=ABANDON_MESSAGE,
            )

        question = await self._next_question(context, augmented, missing, ambiguous)
        updated = context.model_copy(update={
            "clarification_step": next_step,
            "collected_data": collected,
            "answers": answers,
        })
        logger.info(f"Clarification still missing {missing or ambiguous}, step {next_step}")
        return ClarificationResult(
            outcome=ClarificationOutcome.STILL_MISSING,
            classification=classification,
            extraction=extraction,
            context=updated,
            collected_data=collected,
            request_text=augmented,
            message=question,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _resolve_intent(
        self,
        context: ClarificationContext,
        collected: dict[str, Any],
        augmented: str,
    ) -> IntentClassification:
        original = context.original_intent
        if original.intent.is_crud:
            return original

        # CLARIFY / UNKNOWN / HELP: ask the classifier again with everything we know
        reclassified = await self.classifier.classify(augmented)
        if reclassified.intent.is_crud:
            return reclassified

        entity = collected.get("entity")
        action = collected.get("action")
        if entity and action:
            intent = Intent.for_operation(ActionType(action), EntityKind(entity))
            return IntentClassification(
                intent=intent,
                confidence=max(original.confidence, reclassified.confidence, 0.5),
                entities=reclassified.entities,
            )
        return reclassified

    async def _next_question(
        self,
        context: ClarificationContext,
        augmented: str,
        missing: list[str],
        ambiguous: list[str],
    ) -> str:
        # Questions are 0-indexed; the one at index ``step`` comes next
        step = context.clarification_step
        if step < len(context.pending_questions):
            return context.pending_questions[step]
        if self.question_writer is not None:
            return await self.question_writer(augmented, missing, ambiguous)
        return self._question_for(missing)

    @staticmethod
    def _question_for(missing: list[str]) -> str:
        for field in missing:
            if field in _FIELD_QUESTIONS:
                return _FIELD_QUESTIONS[field]
        return GENERIC_QUESTION
