"""Conversation turn log for database operations."""
from asyncio import to_thread
from typing import Any, Optional
from supabase import Client
import logging

logger = logging.getLogger(__name__)


class ConversationRepository:
    """Persist finished assistant turns to ``conversation_messages``."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def log_turn(
        self,
        session_id: str,
        owner_id: str,
        user_message: str,
        ai_response: str,
        intent: Optional[str] = None,
        entities: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Insert one turn. Returns True on success, False on failure (never raises)."""
        try:
            data = {
                "session_id": session_id,
                "user_id": owner_id,
                "user_message": user_message,
                "ai_response": ai_response,
                "intent": intent,
                "entities": entities or {},
            }
            await to_thread(
                lambda: self.supabase.table("conversation_messages").insert(data).execute()
            )
            return True
        except Exception as e:
            logger.error(f"Error logging conversation turn: {e}", exc_info=True)
            return False

