"""Conversation store: in-memory conversations with idle expiry."""
import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Optional

from config.settings import settings
from core.errors import ConversationNotFoundError
from models.message import ChatMessage, Conversation

logger = logging.getLogger(__name__)


class ConversationStore:
    """
    Holds live conversations keyed by id, most recently active last.

    - idle conversations expire after ``ttl_minutes``
    - above ``max_conversations`` the least recently active are evicted
    - a conversation whose lock is held is never evicted, nor is the one
      just created
    - a conversation owned by someone else is reported as not found

    Callers hold ``lock(id)`` for the whole of a turn so two turns of the
    same conversation never interleave.
    """

    def __init__(
        self,
        ttl_minutes: Optional[int] = None,
        max_conversations: Optional[int] = None,
    ):
        self.ttl = timedelta(minutes=ttl_minutes or settings.CONVERSATION_TTL_MINUTES)
        self.max_conversations = max_conversations or settings.MAX_CONVERSATIONS
        self._conversations: OrderedDict[str, Conversation] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def create(self, owner_id: str, conversation_id: Optional[str] = None) -> Conversation:
        conversation = Conversation(owner_id=owner_id)
        if conversation_id:
            conversation.id = conversation_id
        self._conversations[conversation.id] = conversation
        self._conversations.move_to_end(conversation.id)
        self._evict(keep=conversation.id)
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    def get(self, conversation_id: str, owner_id: str) -> Conversation:
        """Return a live conversation or raise ConversationNotFoundError."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.owner_id != owner_id or self._expired(conversation):
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def get_or_create(self, owner_id: str, conversation_id: Optional[str] = None) -> Conversation:
        """
        Resume ``conversation_id`` or start a new conversation.

        An unknown or expired id starts a fresh conversation under that id,
        so a client may keep using the id it already has. An id owned by
        another user is never reused.
        """
        if not conversation_id:
            return self.create(owner_id)

        existing = self._conversations.get(conversation_id)
        if existing is not None and existing.owner_id != owner_id:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        if existing is not None and not self._expired(existing):
            return existing
        return self.create(owner_id, conversation_id)

    def append(self, conversation: Conversation, role: str, content: str, **metadata) -> ChatMessage:
        message = ChatMessage(role=role, content=content, metadata=metadata)
        conversation.messages.append(message)
        conversation.touch()
        if conversation.id in self._conversations:
            self._conversations.move_to_end(conversation.id)
        return message

    def recent(self, conversation: Conversation, limit: Optional[int] = None) -> list[ChatMessage]:
        limit = limit or settings.CONTEXT_WINDOW_MESSAGES
        return conversation.messages[-limit:]

    def delete(self, conversation_id: str, owner_id: str) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.owner_id != owner_id:
            return False
        del self._conversations[conversation_id]
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]
        logger.info(f"Deleted conversation {conversation_id}")
        return True

    def lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def purge_expired(self) -> int:
        """Drop every expired conversation that is not mid-turn."""
        expired = [
            cid for cid, conv in self._conversations.items()
            if self._expired(conv) and not self._busy(cid)
        ]
        for cid in expired:
            self._drop(cid)
        if expired:
            logger.info(f"Expired {len(expired)} idle conversation(s)")
        return len(expired)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _expired(self, conversation: Conversation) -> bool:
        return datetime.now(timezone.utc) - conversation.last_activity > self.ttl

    def _busy(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return lock is not None and lock.locked()

    def _drop(self, conversation_id: str) -> None:
        self._conversations.pop(conversation_id, None)
        self._locks.pop(conversation_id, None)

    def _evict(self, keep: str) -> None:
        self.purge_expired()
        overflow = len(self._conversations) - self.max_conversations
        if overflow <= 0:
            return
        # Oldest activity first
        for cid in list(self._conversations):
            if overflow <= 0:
                break
            if cid == keep or self._busy(cid):
                continue
            self._drop(cid)
            overflow -= 1
            logger.debug(f"Evicted conversation {cid} (store full)")
