"""
Conversation context store.
Caches one ConversationContext per user in process, persists snapshots to a
pluggable backend and evicts flows that outlived their TTL.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from pydantic import ValidationError

from src.database.supabase import DatabaseError
from src.models.domain import (
    ChatMessage,
    ConversationContext,
    ConversationState,
    Intent,
    UserProfile,
    utcnow,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


class ContextBackend(Protocol):
    """Durable storage used by ContextStore (PollRepository or InMemoryRepository)."""

    async def load_context_snapshot(self, user_id: str) -> dict | None: ...

    async def upsert_context_snapshot(self, user_id: str, snapshot: dict) -> None: ...

    async def delete_context_snapshot(self, user_id: str) -> None: ...

    async def append_chat_message(self, user_id: str, message: ChatMessage) -> None: ...

    async def fetch_recent_chat_messages(self, user_id: str, limit: int) -> list[ChatMessage]: ...


class ContextStore:
    """
    Per-user conversation contexts.

    Anonymous users (``user_id=None``) get a throwaway context and nothing
    is persisted for them.
    """

    def __init__(
        self,
        backend: ContextBackend,
        ttl_hours: float = 24.0,
        history_limit: int = 20,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            backend: Durable snapshot and chat-history storage
            ttl_hours: Lifetime of an active flow state
            history_limit: Messages kept in the in-memory history window
            clock: Returns the current timezone-aware time
        """
        self.backend = backend
        self.ttl = timedelta(hours=ttl_hours)
        self.history_limit = history_limit
        self._clock = clock
        self._cache: dict[str, ConversationContext] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, user_id: str | None) -> asyncio.Lock:
        """Lock that serializes turns of the same user."""
        if user_id is None:
            return asyncio.Lock()
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    async def load(
        self, user_id: str | None, profile: UserProfile | None = None
    ) -> ConversationContext:
        """
        Returns the user's context, building it from the backend on first use.
        An expired flow state is discarded before the context is returned.

        Args:
            user_id: User id, or None for anonymous users
            profile: Fresh profile to attach (role may have changed)

        Returns:
            The cached ConversationContext
        """
        if user_id is None:
            return ConversationContext(user_profile=profile or UserProfile())

        context = self._cache.get(user_id)
        if context is None:
            context = await self._restore(user_id)
            self._cache[user_id] = context

        if profile is not None:
            context.user_profile = profile

        state = context.current_state
        if state is not None and state.is_expired(self._clock()):
            logger.info(
                "conversation_state_expired",
                state=state.type.value,
                step=state.step,
            )
            context.current_state = None
            await self.save(user_id, context)

        return context

    async def _restore(self, user_id: str) -> ConversationContext:
        try:
            snapshot = await self.backend.load_context_snapshot(user_id)
            history = (
                await self.backend.fetch_recent_chat_messages(user_id, self.history_limit)
                if self.history_limit
                else []
            )
        except DatabaseError as e:
            logger.warning("context_restore_failed", error=str(e))
            return ConversationContext(user_id=user_id, user_profile=UserProfile(id=user_id))

        context = ConversationContext(
            user_id=user_id, user_profile=UserProfile(id=user_id), history=history
        )
        if not snapshot:
            return context

        context.session_data = snapshot.get("session_data") or {}
        context.entities = snapshot.get("entities") or {}
        try:
            if snapshot.get("last_intent"):
                context.last_intent = Intent.model_validate(snapshot["last_intent"])
            if snapshot.get("current_state"):
                state = ConversationState.model_validate(snapshot["current_state"])
                if state.expires_at is None and snapshot.get("updated_at"):
                    updated_at = datetime.fromisoformat(
                        str(snapshot["updated_at"]).replace("Z", "+00:00")
                    )
                    if updated_at.tzinfo is None:
                        updated_at = updated_at.replace(tzinfo=timezone.utc)
                    state.expires_at = updated_at + self.ttl
                context.current_state = state
        except (ValidationError, ValueError) as e:
            logger.warning("context_snapshot_invalid", error=str(e))
            context.current_state = None
        return context

    async def save(self, user_id: str | None, context: ConversationContext) -> None:
        """Caches the context and writes its snapshot to the backend."""
        if user_id is None:
            return
        self._cache[user_id] = context
        snapshot = {
            "current_state": context.current_state.model_dump(mode="json")
            if context.current_state
            else None,
            "session_data": context.session_data,
            "entities": context.entities,
            "last_intent": context.last_intent.model_dump(mode="json")
            if context.last_intent
            else None,
        }
        await self.backend.upsert_context_snapshot(user_id, snapshot)

    async def set_state(
        self, user_id: str | None, state: ConversationState | None
    ) -> ConversationContext:
        """
        Replaces the active flow state; None returns the user to idle.
        New states get an expiry of now + TTL.
        """
        context = await self.load(user_id)
        if state is None and context.current_state is None:
            return context

        if state is not None:
            state = state.model_copy(update={"expires_at": self._clock() + self.ttl})
        context.current_state = state
        await self.save(user_id, context)
        return context

    async def update_session_data(self, user_id: str | None, patch: dict) -> ConversationContext:
        context = await self.load(user_id)
        context.session_data = {**context.session_data, **patch}
        await self.save(user_id, context)
        return context

    async def update_last_intent(self, user_id: str | None, intent: Intent) -> ConversationContext:
        context = await self.load(user_id)
        context.last_intent = intent
        return context

    async def append_message(
        self, user_id: str | None, message: ChatMessage, context: ConversationContext | None = None
    ) -> ConversationContext:
        """
        Appends a message to the history window and the durable chat log.
        The history list is replaced, never mutated in place.
        """
        if context is None:
            context = await self.load(user_id)
        history = [*context.history, message]
        if self.history_limit and len(history) > self.history_limit:
            history = history[-self.history_limit:]
        context.history = history

        if user_id is not None:
            try:
                await self.backend.append_chat_message(user_id, message)
            except DatabaseError as e:
                logger.warning("chat_message_not_persisted", role=message.role, error=str(e))
        return context

    async def clear(self, user_id: str | None) -> None:
        """
        Drops the flow state, session data, entities and last intent.
        Chat history is kept. Clearing an already clear user does nothing.
        """
        if user_id is None:
            return
        context = self._cache.get(user_id)
        if context is not None and not _has_conversation_state(context):
            return

        if context is not None:
            context.current_state = None
            context.session_data = {}
            context.entities = {}
            context.last_intent = None
        await self.backend.delete_context_snapshot(user_id)
        logger.info("conversation_context_cleared")


def _has_conversation_state(context: ConversationContext) -> bool:
    return bool(
        context.current_state
        or context.session_data
        or context.entities
        or context.last_intent
    )
