"""Assistant: runs one conversation turn through classify, extract, plan and act."""
import asyncio
import logging
import time
from typing import Callable, Literal, Optional

from config.settings import settings
from core.clarification import ClarificationManager, ClarificationOutcome
from core.classifier import IntentClassifier
from core.conversation_store import ConversationStore
from core.errors import ConversationNotFoundError, InputValidationError, TurnCancelledError
from core.executor import ActionExecutor, summarize
from core.extractor import EntityExtractor
from core.planner import ResponsePlanner, should_auto_execute
from database.repositories.conversation_repo import ConversationRepository
from database.repositories.record_repo import RecordRepository
from models.action import EntityKind, ExecutedOperation, SuggestedAction
from models.base import CamelModel
from models.intent import (
    ClassificationContext,
    EntityExtractionResult,
    ExtractionContext,
    IntentClassification,
    KnownRecord,
)
from models.message import ChatMessage, ClarificationState, Conversation

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000

_RESPONSE_FIELDS = {
    "type", "conversationId", "message", "classification", "extraction",
    "suggestedActions", "executedActions", "requiresConfirmation", "confidence",
}
_CLARIFICATION_FIELDS = {
    "type", "conversationId", "message", "classification", "extraction",
    "needsClarification", "missingFields",
}


class AssistantReply(CamelModel):
    """What one turn produced, in the public JSON shape."""
    type: Literal["response", "clarification"]
    conversation_id: str
    message: str
    classification: Optional[IntentClassification] = None
    extraction: Optional[EntityExtractionResult] = None
    suggested_actions: list[SuggestedAction] = []
    executed_actions: list[ExecutedOperation] = []
    requires_confirmation: bool = False
    confidence: float = 0.0
    needs_clarification: bool = False
    missing_fields: list[str] = []

    def to_api(self) -> dict:
        payload = super().to_api()
        keep = _CLARIFICATION_FIELDS if self.type == "clarification" else _RESPONSE_FIELDS
        return {k: v for k, v in payload.items() if k in keep}


def _check_cancelled(cancel: Optional[asyncio.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise TurnCancelledError("The request was cancelled")


def validate_message(message) -> str:
    if not isinstance(message, str) or not message.strip():
        raise InputValidationError("Message is required")
    text = message.strip()
    if len(text) > MAX_MESSAGE_LENGTH:
        raise InputValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    return text


class Assistant:
    """
    Turn orchestrator.

    Each turn holds its conversation's lock from start to finish. The
    pipeline is sequential; only the two read-only name lookups run
    concurrently. A set ``cancel`` event stops the turn before its next
    completion call and leaves the conversation untouched.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        extractor: EntityExtractor,
        clarifier: ClarificationManager,
        planner: ResponsePlanner,
        conversations: ConversationStore,
        store_factory: Callable[[str], RecordRepository],
        turn_log: Optional[ConversationRepository] = None,
        auto_execute_threshold: Optional[float] = None,
        db_timeout_s: Optional[float] = None,
    ):
        self.classifier = classifier
        self.extractor = extractor
        self.clarifier = clarifier
        self.planner = planner
        self.conversations = conversations
        self.store_factory = store_factory
        self.turn_log = turn_log
        self.threshold = (
            settings.AUTO_EXECUTE_THRESHOLD
            if auto_execute_threshold is None else auto_execute_threshold
        )
        self.db_timeout_s = db_timeout_s or settings.DB_TIMEOUT

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def handle_message(
        self,
        owner_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        context: Optional[ClassificationContext] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AssistantReply:
        """Process one user message. Resumes an open clarification if there is one."""
        text = validate_message(message)
        conversation = self.conversations.get_or_create(owner_id, conversation_id)

        async with self.conversations.lock(conversation.id):
            if conversation.clarification_state == ClarificationState.AWAITING_ANSWER:
                return await self._continue_clarification(conversation, owner_id, text, cancel)
            return await self._run_turn(conversation, owner_id, text, context, cancel)

    async def handle_clarification(
        self,
        owner_id: str,
        conversation_id: str,
        answer: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> AssistantReply:
        """Answer the pending clarification question of an existing conversation."""
        text = validate_message(answer)
        conversation = self.conversations.get(conversation_id, owner_id)

        async with self.conversations.lock(conversation.id):
            if conversation.clarification_state == ClarificationState.IDLE:
                # Nothing pending any more: treat the answer as a fresh request
                return await self._run_turn(conversation, owner_id, text, None, cancel)
            return await self._continue_clarification(conversation, owner_id, text, cancel)

    async def confirm_actions(
        self,
        owner_id: str,
        conversation_id: str,
        action_ids: Optional[list[str]] = None,
    ) -> AssistantReply:
        """Execute held actions; all of them when ``action_ids`` is empty."""
        conversation = self.conversations.get(conversation_id, owner_id)

        async with self.conversations.lock(conversation.id):
            pending = conversation.pending_actions
            if not pending:
                raise InputValidationError("There are no actions awaiting confirmation")

            if action_ids:
                known_ids = {a.id for a in pending}
                unknown = [aid for aid in action_ids if aid not in known_ids]
                if unknown:
                    raise InputValidationError(f"Unknown action id(s): {', '.join(unknown)}")
                selected = [a for a in pending if a.id in action_ids]
            else:
                selected = list(pending)

            logger.info(f"Confirmed {len(selected)} of {len(pending)} pending action(s)")
            executor = ActionExecutor(self.store_factory(owner_id), self.db_timeout_s)
            results = await executor.execute(selected)
            conversation.pending_actions = []

            message = summarize(results)
            self.conversations.append(conversation, "assistant", message, type="response")
            await self._log_turn(conversation, owner_id, "confirm", message, None, None)

            return AssistantReply(
                type="response",
                conversation_id=conversation.id,
                message=message,
                executed_actions=results,
                requires_confirmation=False,
                confidence=1.0,
            )

    def get_history(self, owner_id: str, conversation_id: str) -> list[ChatMessage]:
        conversation = self.conversations.get(conversation_id, owner_id)
        return self.conversations.recent(conversation)

    def clear_conversation(self, owner_id: str, conversation_id: str) -> None:
        if not self.conversations.delete(conversation_id, owner_id):
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")

    # ------------------------------------------------------------------
    # Turn stages
    # ------------------------------------------------------------------

    async def _run_turn(
        self,
        conversation: Conversation,
        owner_id: str,
        text: str,
        extra_context: Optional[ClassificationContext],
        cancel: Optional[asyncio.Event],
    ) -> AssistantReply:
        start_time = time.time()
        store = self.store_factory(owner_id)
        history = self.conversations.recent(conversation)

        _check_cancelled(cancel)
        known = await self._lookup_context(store)
        classification_context = _merge_context(known.to_classification_context(), extra_context)

        _check_cancelled(cancel)
        logger.info(f"CLASSIFY: conversation {conversation.id}")
        classification = await self.classifier.classify(text, classification_context, history)

        _check_cancelled(cancel)
        if classification.intent.is_crud:
            logger.info(f"EXTRACT: {classification.intent.value}")
            extraction = await self.extractor.extract(text, classification.intent, known)
            _check_cancelled(cancel)
        else:
            extraction = EntityExtractionResult(
                entities=classification.entities,
                confidence=classification.confidence,
            )

        if ClarificationManager.needs_clarification(classification, extraction):
            clarification = self.clarifier.open(text, classification, extraction)
            reply = AssistantReply(
                type="clarification",
                conversation_id=conversation.id,
                message=self.clarifier.first_question(clarification),
                classification=classification,
                extraction=extraction,
                needs_clarification=True,
                missing_fields=extraction.missing_required_fields,
            )
            self.conversations.append(conversation, "user", text)
            conversation.clarification = clarification
            conversation.pending_actions = []
        else:
            reply = await self._plan_and_act(
                conversation, store, text, classification, extraction, known, cancel
            )
            self.conversations.append(conversation, "user", text)

        self.conversations.append(conversation, "assistant", reply.message, type=reply.type)
        await self._log_turn(conversation, owner_id, text, reply.message, classification, extraction)

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Turn completed in {elapsed_ms}ms ({reply.type})")
        return reply

    async def _continue_clarification(
        self,
        conversation: Conversation,
        owner_id: str,
        answer: str,
        cancel: Optional[asyncio.Event],
    ) -> AssistantReply:
        store = self.store_factory(owner_id)

        _check_cancelled(cancel)
        known = await self._lookup_context(store)

        _check_cancelled(cancel)
        logger.info(
            f"CLARIFY: conversation {conversation.id}, "
            f"step {conversation.clarification.clarification_step}"
        )
        result = await self.clarifier.resolve(conversation.clarification, answer, known)
        logger.info(f"Clarification {result.outcome.value}, now {result.state.value}")
        _check_cancelled(cancel)
        # Actions held before the request changed are no longer confirmable
        conversation.pending_actions = []

        if result.outcome == ClarificationOutcome.RESOLVED:
            reply = await self._plan_and_act(
                conversation, store, result.request_text,
                result.classification, result.extraction, known, cancel,
            )
            conversation.clarification = None
        elif result.outcome == ClarificationOutcome.ABANDONED:
            reply = AssistantReply(
                type="response",
                conversation_id=conversation.id,
                message=result.message,
                classification=result.classification,
                extraction=result.extraction,
                requires_confirmation=False,
                confidence=0.0,
            )
            conversation.clarification = None
        else:
            reply = AssistantReply(
                type="clarification",
                conversation_id=conversation.id,
                message=result.message,
                classification=result.classification,
                extraction=result.extraction,
                needs_clarification=True,
                missing_fields=result.extraction.missing_required_fields,
            )
            conversation.clarification = result.context

        self.conversations.append(conversation, "user", answer)
        self.conversations.append(conversation, "assistant", reply.message, type=reply.type)
        await self._log_turn(
            conversation, owner_id, answer, reply.message,
            result.classification, result.extraction,
        )
        return reply

    async def _plan_and_act(
        self,
        conversation: Conversation,
        store: RecordRepository,
        text: str,
        classification: IntentClassification,
        extraction: EntityExtractionResult,
        known: ExtractionContext,
        cancel: Optional[asyncio.Event],
    ) -> AssistantReply:
        logger.info(f"PLAN: {classification.intent.value}")
        plan = await self.planner.plan(text, classification, extraction, known)
        _check_cancelled(cancel)

        message = plan.message
        executed: list[ExecutedOperation] = []
        if plan.actions and should_auto_execute(plan, self.threshold):
            logger.info(f"ACT: auto-executing {len(plan.actions)} action(s)")
            executed = await ActionExecutor(store, self.db_timeout_s).execute(plan.actions)
            conversation.pending_actions = []
            message = f"{message}\n\n{summarize(executed)}"
        else:
            conversation.pending_actions = list(plan.actions)
            if plan.actions:
                logger.info(f"Holding {len(plan.actions)} action(s) for confirmation")

        return AssistantReply(
            type="response",
            conversation_id=conversation.id,
            message=message,
            classification=classification,
            extraction=extraction,
            suggested_actions=plan.actions,
            executed_actions=executed,
            requires_confirmation=bool(conversation.pending_actions) or plan.requires_confirmation,
            confidence=plan.confidence,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lookup_context(self, store: RecordRepository) -> ExtractionContext:
        """Known payees and categories, fetched concurrently. Failures give empty lists."""

        async def _names(kind: EntityKind, limit: int) -> list[KnownRecord]:
            try:
                rows = await asyncio.wait_for(store.list_names(kind, limit), timeout=self.db_timeout_s)
            except Exception as e:
                logger.warning(f"Could not load known {kind.value} names: {e}")
                return []
            return [
                KnownRecord(id=str(row["id"]), name=str(row["name"]))
                for row in rows
                if row.get("id") and row.get("name")
            ]

        payees, categories = await asyncio.gather(
            _names(EntityKind.PAYEE, settings.CONTEXT_PAYEE_LIMIT),
            _names(EntityKind.CATEGORY, settings.CONTEXT_CATEGORY_LIMIT),
        )
        return ExtractionContext(known_payees=payees, known_categories=categories)

    async def _log_turn(
        self,
        conversation: Conversation,
        owner_id: str,
        user_message: str,
        ai_response: str,
        classification: Optional[IntentClassification],
        extraction: Optional[EntityExtractionResult],
    ) -> None:
        if self.turn_log is None:
            return
        try:
            await asyncio.wait_for(
                self.turn_log.log_turn(
                    session_id=conversation.id,
                    owner_id=owner_id,
                    user_message=user_message,
                    ai_response=ai_response,
                    intent=classification.intent.value if classification else None,
                    entities=extraction.as_fields() if extraction else None,
                ),
                timeout=self.db_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.error(f"Logging turn of conversation {conversation.id} timed out after {self.db_timeout_s}s")


def _merge_context(
    base: ClassificationContext,
    extra: Optional[ClassificationContext],
) -> ClassificationContext:
    if extra is None:
        return base
    return ClassificationContext(
        known_payee_names=list(dict.fromkeys(base.known_payee_names + extra.known_payee_names)),
        known_category_names=list(dict.fromkeys(base.known_category_names + extra.known_category_names)),
    )
