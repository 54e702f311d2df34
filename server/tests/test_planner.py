"""Tests for ResponsePlanner and the auto-execution gate."""
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.errors import AIServiceError
from core.planner import (
    FALLBACK_MESSAGE,
    FALLBACK_QUESTION,
    ResponsePlanner,
    needs_confirmation,
    should_auto_execute,
)
from models.action import (
    ActionType,
    CategoryActionData,
    EntityKind,
    PayeeActionData,
    PlannedResponse,
    SuggestedAction,
)
from models.intent import EntityExtractionResult, ExtractedEntity, Intent, IntentClassification

PAYEE_ID = "0b6f3c2e-6f0a-4f43-9a59-2f6f1f3d9a10"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _planner(response):
    llm = MagicMock()
    if isinstance(response, Exception):
        llm.complete = AsyncMock(side_effect=response)
    else:
        text = response if isinstance(response, str) else json.dumps(response)
        llm.complete = AsyncMock(return_value=text)
    return ResponsePlanner(llm, timeout_s=5)


def _classification(intent=Intent.CREATE_PAYEE, confidence=0.95):
    return IntentClassification(intent=intent, confidence=confidence)


def _extraction(**fields):
    return EntityExtractionResult(
        entities=[ExtractedEntity(type=k, value=v, confidence=0.9) for k, v in fields.items()],
        confidence=0.9,
    )


def _plan(confidence, requires_confirmation=False, actions=None):
    return PlannedResponse(
        message="ok",
        actions=actions or [],
        requires_confirmation=requires_confirmation,
        confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Auto-execution gate
# ---------------------------------------------------------------------------

class TestShouldAutoExecute:
    def test_threshold_is_strict(self):
        assert should_auto_execute(_plan(0.8), threshold=0.8) is False
        assert should_auto_execute(_plan(0.8001), threshold=0.8) is True

    def test_confirmation_flag_blocks(self):
        assert should_auto_execute(_plan(0.99, requires_confirmation=True), threshold=0.8) is False

    def test_default_threshold_from_settings(self):
        assert should_auto_execute(_plan(0.79)) is False
        assert should_auto_execute(_plan(0.95)) is True


class TestNeedsConfirmation:
    def test_delete_and_update(self):
        for action_type in (ActionType.UPDATE, ActionType.DELETE):
            action = SuggestedAction(
                type=action_type, entity=EntityKind.PAYEE, data={"id": PAYEE_ID, "name": "X"}
            )
            assert needs_confirmation([action])

    def test_nameless_create(self):
        action = SuggestedAction(type="create", entity="category", data={})
        assert needs_confirmation([action])

    def test_named_create_and_read(self):
        actions = [
            SuggestedAction(type="create", entity="payee", data={"name": "ABC"}),
            SuggestedAction(type="read", entity="category", data={"query": "rent"}),
        ]
        assert not needs_confirmation(actions)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

class TestPlan:
    @pytest.mark.asyncio
    async def test_create_payee_plan(self):
        planner = _planner({
            "message": "I'll add ABC Corp as a payee.",
            "actions": [{
                "type": "create",
                "entity": "payee",
                "data": {"name": "ABC Corp"},
                "description": "Create payee ABC Corp",
            }],
            "requiresConfirmation": False,
            "confidence": 0.95,
        })

        plan = await planner.plan("Add vendor ABC Corp", _classification(), _extraction(name="ABC Corp"))

        assert plan.requires_confirmation is False
        assert plan.confidence == 0.95
        assert len(plan.actions) == 1
        action = plan.actions[0]
        assert action.type == ActionType.CREATE
        assert action.entity == EntityKind.PAYEE
        assert isinstance(action.data, PayeeActionData)
        assert action.data.name == "ABC Corp"
        assert action.id
        assert should_auto_execute(plan, threshold=0.8)

    @pytest.mark.asyncio
    async def test_delete_always_requires_confirmation(self):
        planner = _planner({
            "message": "Deleting ABC Corp.",
            "actions": [{"type": "delete", "entity": "payee", "data": {"id": PAYEE_ID}}],
            "requiresConfirmation": False,
            "confidence": 0.99,
        })

        plan = await planner.plan(
            "Delete the payee called ABC Corp",
            _classification(Intent.DELETE_PAYEE, 0.99),
            _extraction(name="ABC Corp", id=PAYEE_ID),
        )

        assert plan.requires_confirmation is True
        assert plan.confidence == 0.99
        assert should_auto_execute(plan, threshold=0.8) is False

    @pytest.mark.asyncio
    async def test_category_data_is_typed(self):
        planner = _planner({
            "message": "Creating Rent.",
            "actions": [{"type": "CREATE", "entity": "Category", "data": {"name": "Rent", "type": "Expense"}}],
            "requiresConfirmation": False,
            "confidence": 0.9,
        })

        plan = await planner.plan("Add expense category Rent", _classification(Intent.CREATE_CATEGORY), _extraction(name="Rent"))

        action = plan.actions[0]
        assert isinstance(action.data, CategoryActionData)
        assert action.data.type == "expense"

    @pytest.mark.asyncio
    async def test_invalid_actions_dropped(self):
        planner = _planner({
            "message": "Here you go.",
            "actions": [
                {"type": "create", "entity": "payee", "data": {"name": "ABC"}},
                {"type": "archive", "entity": "payee", "data": {}},
                {"type": "create", "entity": "invoice", "data": {"name": "X"}},
                "nonsense",
            ],
            "requiresConfirmation": False,
            "confidence": 0.9,
        })

        plan = await planner.plan("Add ABC", _classification(), _extraction(name="ABC"))

        assert [a.data.name for a in plan.actions] == ["ABC"]

    @pytest.mark.asyncio
    async def test_missing_confirmation_flag_defaults_to_true(self):
        planner = _planner({"message": "Sure.", "actions": [], "confidence": 0.9})
        plan = await planner.plan("hi", _classification(Intent.HELP), _extraction())
        assert plan.requires_confirmation is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "I cannot produce JSON today",
        '{"actions": []}',
        '{"message": "   ", "actions": []}',
    ])
    async def test_malformed_output_falls_back(self, raw):
        plan = await _planner(raw).plan("Add ABC", _classification(), _extraction(name="ABC"))

        assert plan.message == FALLBACK_MESSAGE
        assert plan.actions == []
        assert plan.requires_confirmation is True
        assert plan.confidence == 0.1

    @pytest.mark.asyncio
    async def test_service_error_propagates(self):
        planner = _planner(AIServiceError("down", code="llm_timeout", retryable=True))
        with pytest.raises(AIServiceError):
            await planner.plan("Add ABC", _classification(), _extraction(name="ABC"))


# ---------------------------------------------------------------------------
# Clarification questions
# ---------------------------------------------------------------------------

class TestClarificationMessage:
    @pytest.mark.asyncio
    async def test_returns_model_text(self):
        planner = _planner('"What should I call the new payee?"')
        question = await planner.clarification_message("Add a payee", ["name"], [])
        assert question == "What should I call the new payee?"
        prompt = planner.llm.complete.call_args.kwargs["prompt"]
        assert "Missing required fields: name" in prompt

    @pytest.mark.asyncio
    async def test_service_error_gives_fixed_question(self):
        planner = _planner(AIServiceError("down"))
        assert await planner.clarification_message("Add", ["name"]) == FALLBACK_QUESTION

    @pytest.mark.asyncio
    async def test_blank_text_gives_fixed_question(self):
        planner = _planner("   ")
        assert await planner.clarification_message("Add", ["name"]) == FALLBACK_QUESTION
