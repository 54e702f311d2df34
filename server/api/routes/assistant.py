"""Assistant API routes: one conversation turn per request."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from fastapi import APIRouter, Depends, Request, status

from api.middleware.auth_middleware import get_current_owner
from api.schemas.request_schemas import (
    AssistantMessageRequest,
    ClarifyRequest,
    ConfirmActionsRequest,
)
from api.schemas.response_schemas import HistoryResponse
from core.assistant import Assistant
from core.dependencies import get_assistant
from models.intent import ClassificationContext

logger = logging.getLogger(__name__)
router = APIRouter()

T = TypeVar("T")

_DISCONNECT_POLL_S = 0.5


async def _run_until_disconnect(
    request: Request,
    turn: Callable[[asyncio.Event], Awaitable[T]],
) -> T:
    """Run ``turn`` with a cancel event that is set if the client goes away."""
    cancel = asyncio.Event()

    async def _watch() -> None:
        while not cancel.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling turn")
                cancel.set()
                return
            await asyncio.sleep(_DISCONNECT_POLL_S)

    watcher = asyncio.create_task(_watch())
    try:
        return await turn(cancel)
    finally:
        watcher.cancel()


@router.post("/message")
async def post_message(
    body: AssistantMessageRequest,
    request: Request,
    owner_id: str = Depends(get_current_owner),
    assistant: Assistant = Depends(get_assistant),
):
    """
    Process one user message.

    Returns either a ``response`` (plan, maybe executed) or a
    ``clarification`` (a question to answer on the same conversation).
    """
    context = None
    if body.context is not None:
        context = ClassificationContext(
            known_payee_names=body.context.known_payee_names,
            known_category_names=body.context.known_category_names,
        )

    reply = await _run_until_disconnect(
        request,
        lambda cancel: assistant.handle_message(
            owner_id,
            body.message,
            conversation_id=body.conversation_id,
            context=context,
            cancel=cancel,
        ),
    )
    return reply.to_api()


@router.post("/clarify")
async def post_clarification(
    body: ClarifyRequest,
    request: Request,
    owner_id: str = Depends(get_current_owner),
    assistant: Assistant = Depends(get_assistant),
):
    """Answer the pending clarification question of a conversation."""
    reply = await _run_until_disconnect(
        request,
        lambda cancel: assistant.handle_clarification(
            owner_id, body.conversation_id, body.message, cancel=cancel,
        ),
    )
    return reply.to_api()


@router.post("/confirm")
async def confirm_actions(
    body: ConfirmActionsRequest,
    owner_id: str = Depends(get_current_owner),
    assistant: Assistant = Depends(get_assistant),
):
    """Execute suggested actions held for confirmation (all when no ids are given)."""
    reply = await assistant.confirm_actions(owner_id, body.conversation_id, body.action_ids)
    return reply.to_api()


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_current_owner),
    assistant: Assistant = Depends(get_assistant),
):
    messages = assistant.get_history(owner_id, conversation_id)
    return HistoryResponse(conversation_id=conversation_id, messages=messages).to_api()


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_current_owner),
    assistant: Assistant = Depends(get_assistant),
):
    assistant.clear_conversation(owner_id, conversation_id)
