"""Tests for Assistant: the turn orchestrator.

Covers:
- auto-executed and confirmation-gated turns
- the clarification round trip
- confirmation of held actions
- input validation, cancellation and service errors
- the public reply shapes
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.assistant import Assistant, AssistantReply
from core.clarification import ClarificationManager
from core.classifier import KIND_QUESTION
from core.conversation_store import ConversationStore
from core.errors import (
    AIServiceError,
    ConversationNotFoundError,
    InputValidationError,
    TurnCancelledError,
)
from models.action import PlannedResponse, SuggestedAction
from models.intent import EntityExtractionResult, ExtractedEntity, Intent, IntentClassification
from models.message import ClarificationState

OWNER = "owner-1"
PAYEE_ID = "0b6f3c2e-6f0a-4f43-9a59-2f6f1f3d9a10"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _classification(intent, confidence=0.95, requires=False, questions=None, **entities):
    return IntentClassification(
        intent=intent,
        confidence=confidence,
        entities=[ExtractedEntity(type=k, value=v, confidence=0.9) for k, v in entities.items()],
        requires_clarification=requires,
        clarification_questions=questions or [],
    )


def _extraction(missing=None, **fields):
    return EntityExtractionResult(
        entities=[ExtractedEntity(type=k, value=v, confidence=0.9) for k, v in fields.items()],
        confidence=0.9,
        missing_required_fields=missing or [],
    )


def _plan(actions, confidence=0.95, requires_confirmation=False, message="On it."):
    return PlannedResponse(
        message=message,
        actions=[SuggestedAction.model_validate(a) for a in actions],
        requires_confirmation=requires_confirmation,
        confidence=confidence,
    )


def _record_store():
    store = MagicMock()
    store.list_names = AsyncMock(side_effect=lambda kind, limit: (
        [{"id": PAYEE_ID, "name": "ABC Corp"}] if kind.value == "payee" else []
    ))
    store.create = AsyncMock(side_effect=lambda kind, data: {"id": PAYEE_ID, **data})
    store.read = AsyncMock(return_value=[])
    store.update = AsyncMock(side_effect=lambda kind, rid, patch: {"id": rid, **patch})
    store.delete = AsyncMock(return_value={"success": True})
    return store


class _Harness:
    """Assistant wired to mocked stages and an in-memory conversation store."""

    def __init__(self, classifications, extraction=None, plan=None):
        self.classifier = MagicMock()
        self.classifier.classify = AsyncMock(side_effect=list(classifications))
        self.extractor = MagicMock()
        self.extractor.extract = AsyncMock(return_value=extraction or _extraction())
        self.planner = MagicMock()
        self.planner.plan = AsyncMock(return_value=plan or _plan([]))
        self.records = _record_store()
        self.turn_log = MagicMock()
        self.turn_log.log_turn = AsyncMock(return_value=True)
        self.conversations = ConversationStore(ttl_minutes=60, max_conversations=100)
        self.assistant = Assistant(
            classifier=self.classifier,
            extractor=self.extractor,
            clarifier=ClarificationManager(self.classifier, self.extractor, max_turns=3),
            planner=self.planner,
            conversations=self.conversations,
            store_factory=lambda owner_id: self.records,
            turn_log=self.turn_log,
            auto_execute_threshold=0.8,
            db_timeout_s=1,
        )


# ---------------------------------------------------------------------------
# Single-turn requests
# ---------------------------------------------------------------------------

class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_confident_create_is_auto_executed(self):
        h = _Harness(
            [_classification(Intent.CREATE_PAYEE, name="ABC Corp")],
            extraction=_extraction(name="ABC Corp"),
            plan=_plan([{"type": "create", "entity": "payee", "data": {"name": "ABC Corp"}}]),
        )

        reply = await h.assistant.handle_message(OWNER, "Add vendor ABC Corp")

        assert reply.type == "response"
        assert len(reply.executed_actions) == 1
        assert reply.executed_actions[0].success
        assert reply.requires_confirmation is False
        h.records.create.assert_awaited_once()
        conversation = h.conversations.get(reply.conversation_id, OWNER)
        assert [m.role for m in conversation.messages] == ["user", "assistant"]
        assert conversation.pending_actions == []
        h.turn_log.log_turn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hung_turn_log_does_not_block_the_turn(self):
        async def _hang(**kwargs):
            await asyncio.sleep(10)

        h = _Harness([_classification(Intent.READ_PAYEE), _classification(Intent.READ_PAYEE)])
        h.turn_log.log_turn = AsyncMock(side_effect=_hang)
        h.assistant.db_timeout_s = 0.05

        first = await asyncio.wait_for(h.assistant.handle_message(OWNER, "list payees"), timeout=2)
        second = await asyncio.wait_for(
            h.assistant.handle_message(OWNER, "list payees", conversation_id=first.conversation_id),
            timeout=2,
        )

        assert second.type == "response"
        assert not h.conversations.lock(first.conversation_id).locked()
        assert len(h.conversations.get(first.conversation_id, OWNER).messages) == 4

    @pytest.mark.asyncio
    async def test_delete_is_held_for_confirmation(self):
        h = _Harness(
            [_classification(Intent.DELETE_PAYEE, 0.99, name="ABC Corp")],
            extraction=_extraction(name="ABC Corp", id=PAYEE_ID),
            plan=_plan(
                [{"type": "delete", "entity": "payee", "data": {"id": PAYEE_ID}}],
                confidence=0.99,
                requires_confirmation=True,
            ),
        )

        reply = await h.assistant.handle_message(OWNER, "Delete the payee called ABC Corp")

        assert reply.requires_confirmation is True
        assert reply.executed_actions == []
        h.records.delete.assert_not_awaited()
        conversation = h.conversations.get(reply.conversation_id, OWNER)
        assert len(conversation.pending_actions) == 1

    @pytest.mark.asyncio
    async def test_low_confidence_plan_is_held(self):
        h = _Harness(
            [_classification(Intent.CREATE_PAYEE, name="ABC")],
            extraction=_extraction(name="ABC"),
            plan=_plan([{"type": "create", "entity": "payee", "data": {"name": "ABC"}}], confidence=0.8),
        )

        reply = await h.assistant.handle_message(OWNER, "Add ABC")

        assert reply.executed_actions == []
        assert reply.requires_confirmation is True
        h.records.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_known_names_passed_to_stages(self):
        h = _Harness(
            [_classification(Intent.READ_PAYEE)],
            plan=_plan([{"type": "read", "entity": "payee", "data": {"query": "ABC"}}]),
        )

        await h.assistant.handle_message(OWNER, "find ABC")

        context = h.classifier.classify.call_args.args[1]
        assert context.known_payee_names == ["ABC Corp"]
        known = h.extractor.extract.call_args.args[2]
        assert known.known_payees[0].id == PAYEE_ID
        assert h.records.list_names.await_count == 2

    @pytest.mark.asyncio
    async def test_lookup_failure_degrades_to_empty_context(self):
        h = _Harness([_classification(Intent.HELP)], plan=_plan([], message="I can manage payees."))
        h.records.list_names = AsyncMock(side_effect=RuntimeError("db down"))

        reply = await h.assistant.handle_message(OWNER, "what can you do?")

        assert reply.message == "I can manage payees."
        context = h.classifier.classify.call_args.args[1]
        assert context.known_payee_names == []

    @pytest.mark.asyncio
    async def test_non_crud_intent_skips_extraction(self):
        h = _Harness([_classification(Intent.HELP)], plan=_plan([], message="Help text"))

        await h.assistant.handle_message(OWNER, "help")

        h.extractor.extract.assert_not_awaited()
        h.planner.plan.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_history_window_sent_to_classifier(self):
        h = _Harness(
            [_classification(Intent.HELP), _classification(Intent.HELP)],
            plan=_plan([], message="Help text"),
        )

        first = await h.assistant.handle_message(OWNER, "help")
        await h.assistant.handle_message(OWNER, "more help", conversation_id=first.conversation_id)

        history = h.classifier.classify.call_args.args[2]
        assert [m.content for m in history] == ["help", "Help text"]


# ---------------------------------------------------------------------------
# Clarification round trip
# ---------------------------------------------------------------------------

class TestClarificationFlow:
    @pytest.mark.asyncio
    async def test_vague_request_asks_payee_or_category(self):
        h = _Harness([_classification(Intent.CLARIFY, 0.4, True, [KIND_QUESTION])])

        reply = await h.assistant.handle_message(OWNER, "I want to add something")

        assert reply.type == "clarification"
        assert reply.needs_clarification is True
        assert "payee" in reply.message and "category" in reply.message
        h.planner.plan.assert_not_awaited()
        conversation = h.conversations.get(reply.conversation_id, OWNER)
        assert conversation.clarification is not None
        assert conversation.clarification_state == ClarificationState.AWAITING_ANSWER

    @pytest.mark.asyncio
    async def test_missing_name_then_answer_resolves(self):
        h = _Harness(
            [_classification(Intent.CREATE_PAYEE, 0.9)],
            extraction=_extraction(missing=["name"]),
            plan=_plan([{"type": "create", "entity": "payee", "data": {"name": "ABC Corp"}}]),
        )

        first = await h.assistant.handle_message(OWNER, "Add a payee")

        assert first.type == "clarification"
        assert first.missing_fields == ["name"]
        pending = h.conversations.get(first.conversation_id, OWNER)
        assert pending.clarification_state == ClarificationState.AWAITING_ANSWER
        assert pending.clarification.clarification_step == 1

        h.extractor.extract = AsyncMock(return_value=_extraction(name="ABC Corp"))
        second = await h.assistant.handle_message(
            OWNER, "ABC Corp", conversation_id=first.conversation_id
        )

        assert second.type == "response"
        assert second.executed_actions[0].success
        plan_message = h.planner.plan.call_args.args[0]
        assert plan_message == "Add a payee. Additional details: ABC Corp"
        conversation = h.conversations.get(first.conversation_id, OWNER)
        assert conversation.clarification is None
        assert len(conversation.messages) == 4
        assert conversation.clarification_state == ClarificationState.IDLE

    @pytest.mark.asyncio
    async def test_clarify_endpoint_requires_known_conversation(self):
        h = _Harness([])
        with pytest.raises(ConversationNotFoundError):
            await h.assistant.handle_clarification(OWNER, "missing", "ABC")

    @pytest.mark.asyncio
    async def test_abandoned_after_three_unhelpful_answers(self):
        h = _Harness(
            [_classification(Intent.CREATE_PAYEE, 0.9)],
            extraction=_extraction(missing=["name"]),
        )
        first = await h.assistant.handle_message(OWNER, "Add a payee")

        replies = []
        for answer in ("no", "ok", "?"):
            replies.append(
                await h.assistant.handle_clarification(OWNER, first.conversation_id, answer)
            )

        assert [r.type for r in replies] == ["clarification", "clarification", "response"]
        assert replies[-1].suggested_actions == []
        assert "sorry" in replies[-1].message.lower()
        conversation = h.conversations.get(first.conversation_id, OWNER)
        assert conversation.clarification is None
        h.planner.plan.assert_not_awaited()


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------

class TestConfirmActions:
    async def _held(self):
        h = _Harness(
            [_classification(Intent.DELETE_PAYEE, 0.99)],
            extraction=_extraction(name="ABC Corp", id=PAYEE_ID),
            plan=_plan(
                [
                    {"type": "delete", "entity": "payee", "data": {"id": PAYEE_ID}},
                    {"type": "read", "entity": "payee", "data": {"query": "ABC"}},
                ],
                requires_confirmation=True,
            ),
        )
        reply = await h.assistant.handle_message(OWNER, "Delete ABC Corp")
        return h, reply

    @pytest.mark.asyncio
    async def test_clarification_turn_drops_held_actions(self):
        h, reply = await self._held()
        h.classifier.classify = AsyncMock(
            return_value=_classification(Intent.CLARIFY, 0.4, True, [KIND_QUESTION])
        )

        second = await h.assistant.handle_message(
            OWNER, "I want to add something", conversation_id=reply.conversation_id
        )

        assert second.type == "clarification"
        assert h.conversations.get(reply.conversation_id, OWNER).pending_actions == []
        with pytest.raises(InputValidationError):
            await h.assistant.confirm_actions(OWNER, reply.conversation_id)
        h.records.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirm_all(self):
        h, reply = await self._held()

        confirmed = await h.assistant.confirm_actions(OWNER, reply.conversation_id)

        assert [r.success for r in confirmed.executed_actions] == [True, True]
        assert confirmed.message.startswith("Completed 2 of 2 actions.")
        h.records.delete.assert_awaited_once()
        assert h.conversations.get(reply.conversation_id, OWNER).pending_actions == []

    @pytest.mark.asyncio
    async def test_confirm_subset(self):
        h, reply = await self._held()
        delete_id = reply.suggested_actions[0].id

        confirmed = await h.assistant.confirm_actions(OWNER, reply.conversation_id, [delete_id])

        assert [r.action_id for r in confirmed.executed_actions] == [delete_id]
        h.records.read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_action_id_rejected(self):
        h, reply = await self._held()
        with pytest.raises(InputValidationError):
            await h.assistant.confirm_actions(OWNER, reply.conversation_id, ["nope"])
        h.records.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_to_confirm(self):
        h, reply = await self._held()
        await h.assistant.confirm_actions(OWNER, reply.conversation_id)
        with pytest.raises(InputValidationError):
            await h.assistant.confirm_actions(OWNER, reply.conversation_id)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_confirm(self):
        h, reply = await self._held()
        with pytest.raises(ConversationNotFoundError):
            await h.assistant.confirm_actions("owner-2", reply.conversation_id)


# ---------------------------------------------------------------------------
# Errors and cancellation
# ---------------------------------------------------------------------------

class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   ", None, 42])
    async def test_invalid_message_rejected(self, message):
        h = _Harness([])
        with pytest.raises(InputValidationError):
            await h.assistant.handle_message(OWNER, message)
        h.classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_error_leaves_conversation_untouched(self):
        h = _Harness([AIServiceError("down", code="llm_timeout", retryable=True)])
        conversation = h.conversations.create(OWNER)

        with pytest.raises(AIServiceError):
            await h.assistant.handle_message(OWNER, "Add ABC", conversation_id=conversation.id)

        assert conversation.messages == []

    @pytest.mark.asyncio
    async def test_cancelled_turn_stops_before_completion_calls(self):
        h = _Harness([_classification(Intent.HELP)])
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(TurnCancelledError):
            await h.assistant.handle_message(OWNER, "help", cancel=cancel)

        h.classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_between_stages(self):
        h = _Harness([_classification(Intent.CREATE_PAYEE, name="ABC")], extraction=_extraction(name="ABC"))
        cancel = asyncio.Event()

        async def _classify_then_cancel(*args, **kwargs):
            cancel.set()
            return _classification(Intent.CREATE_PAYEE, name="ABC")

        h.classifier.classify = AsyncMock(side_effect=_classify_then_cancel)

        with pytest.raises(TurnCancelledError):
            await h.assistant.handle_message(OWNER, "Add ABC", cancel=cancel)

        h.extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clear_conversation(self):
        h = _Harness([])
        conversation = h.conversations.create(OWNER)
        h.assistant.clear_conversation(OWNER, conversation.id)
        with pytest.raises(ConversationNotFoundError):
            h.assistant.clear_conversation(OWNER, conversation.id)


# ---------------------------------------------------------------------------
# Reply shapes
# ---------------------------------------------------------------------------

class TestReplyShape:
    def test_response_keys(self):
        reply = AssistantReply(type="response", conversation_id="c", message="m", confidence=0.9)
        assert set(reply.to_api()) == {
            "type", "conversationId", "message", "classification", "extraction",
            "suggestedActions", "executedActions", "requiresConfirmation", "confidence",
        }

    def test_clarification_keys(self):
        reply = AssistantReply(
            type="clarification", conversation_id="c", message="Which one?",
            needs_clarification=True, missing_fields=["name"],
        )
        payload = reply.to_api()
        assert set(payload) == {
            "type", "conversationId", "message", "classification", "extraction",
            "needsClarification", "missingFields",
        }
        assert payload["needsClarification"] is True
        assert payload["missingFields"] == ["name"]
