"""
Composition root.

Expensive objects (the HTTP client behind the LLM, the Supabase client,
the conversation store) are built once at startup, kept on
``app.state.container`` and handed to routes through ``Depends``.
Per-owner record repositories are cheap wrappers and are built per call.
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from supabase import Client

from config.settings import settings
from core.assistant import Assistant
from core.clarification import ClarificationManager
from core.classifier import IntentClassifier
from core.conversation_store import ConversationStore
from core.extractor import ConfidencePolicy, EntityExtractor
from core.planner import ResponsePlanner
from database.client import create_supabase_client
from database.repositories.conversation_repo import ConversationRepository
from database.repositories.record_repo import RecordRepository
from integrations.llm.client import LLMClient

logger = logging.getLogger(__name__)


class AppContainer:
    """Everything the routes need, wired together once."""

    def __init__(
        self,
        supabase: Client,
        llm: LLMClient,
        conversations: ConversationStore,
        assistant: Assistant,
    ):
        self.supabase = supabase
        self.llm = llm
        self.conversations = conversations
        self.assistant = assistant

    def records_for(self, owner_id: str) -> RecordRepository:
        return RecordRepository(self.supabase, owner_id)


def build_container(
    supabase: Optional[Client] = None,
    llm: Optional[LLMClient] = None,
    conversations: Optional[ConversationStore] = None,
) -> AppContainer:
    logger.info("Initializing shared dependencies...")
    supabase = supabase or create_supabase_client()
    llm = llm or LLMClient()
    conversations = conversations or ConversationStore()

    classifier = IntentClassifier(llm)
    extractor = EntityExtractor(llm, policy=ConfidencePolicy.from_settings())
    planner = ResponsePlanner(llm)
    clarifier = ClarificationManager(
        classifier,
        extractor,
        max_turns=settings.MAX_CLARIFICATION_TURNS,
        question_writer=planner.clarification_message,
    )

    assistant = Assistant(
        classifier=classifier,
        extractor=extractor,
        clarifier=clarifier,
        planner=planner,
        conversations=conversations,
        store_factory=lambda owner_id: RecordRepository(supabase, owner_id),
        turn_log=ConversationRepository(supabase),
    )

    logger.info(f"Dependencies initialized (LLM model: {llm.model})")
    return AppContainer(supabase, llm, conversations, assistant)


async def close_container(container: AppContainer) -> None:
    await container.llm.close()
    logger.info("LLM client closed")


def get_container(request: Request) -> AppContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Dependencies not initialized. Start the app through its lifespan.")
    return container


def get_assistant(container: AppContainer = Depends(get_container)) -> Assistant:
    return container.assistant
