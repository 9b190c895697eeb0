"""
Supabase persistence for polls, options, votes, chat history and
conversation snapshots. Every call runs the blocking client in a worker
thread and fails fast with DatabaseError.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable

from supabase import Client

from src.models.domain import ChatMessage
from src.utils.logger import get_logger

logger = get_logger(__name__)

POLL_COLUMNS = "id, title, question, category, status, end_date, created_at"


class DatabaseError(Exception):
    """Raised when database operations fail."""


class PollRepository:
    """
    Data access for the chat engine.
    Ownership filters are applied in every owner-scoped query.
    """

    def __init__(self, client: Client):
        """
        Args:
            client: Supabase client created with the service key
        """
        self.client = client

    async def _run(self, operation: str, query: Callable[[], Any], **fields: Any) -> Any:
        """
        Executes a query builder in a thread and returns the response data.

        Raises:
            DatabaseError: If the query fails
        """
        try:
            response = await asyncio.to_thread(query)
        except Exception as e:
            logger.error(f"{operation}_failed", exc_info=True, error=str(e), **fields)
            raise DatabaseError(f"{operation} failed: {e}") from e
        logger.debug(f"{operation}_completed", **fields)
        return response.data

    # --- Polls ---

    async def fetch_polls_by_owner(self, user_id: str) -> list[dict]:
        data = await self._run(
            "fetch_polls_by_owner",
            lambda: self.client.table("polls")
            .select(POLL_COLUMNS)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute(),
            user_id=user_id,
        )
        return data or []

    async def fetch_poll_by_id_and_owner(
        self, poll_id: str, user_id: str
    ) -> dict | None:
        """
        Fetches a poll only if it belongs to the user.

        Returns:
            Poll row, or None when it does not exist or has another owner
        """
        data = await self._run(
            "fetch_poll_by_id_and_owner",
            lambda: self.client.table("polls")
            .select(POLL_COLUMNS)
            .eq("id", poll_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute(),
            poll_id=poll_id,
        )
        return data[0] if data else None

    async def fetch_active_polls(self) -> list[dict]:
        data = await self._run(
            "fetch_active_polls",
            lambda: self.client.table("polls")
            .select(POLL_COLUMNS)
            .eq("status", "active")
            .order("end_date")
            .execute(),
        )
        return data or []

    async def fetch_recent_polls(self, limit: int) -> list[dict]:
        data = await self._run(
            "fetch_recent_polls",
            lambda: self.client.table("polls")
            .select(POLL_COLUMNS)
            .order("created_at", desc=True)
            .limit(limit)
            .execute(),
            limit=limit,
        )
        return data or []

    async def fetch_voted_polls(self, user_id: str, limit: int) -> list[dict]:
        """
        Returns polls the user voted on, most recent vote first.
        Each row is the poll with a ``voted_at`` field added.
        """
        data = await self._run(
            "fetch_voted_polls",
            lambda: self.client.table("votes")
            .select(f"poll_id, created_at, polls({POLL_COLUMNS})")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute(),
            limit=limit,
        )
        polls = []
        for vote in data or []:
            poll = vote.get("polls")
            if poll:
                polls.append({**poll, "voted_at": vote.get("created_at")})
        return polls

    async def fetch_poll_analytics(self, user_id: str) -> list[dict]:
        """Per-poll vote and option counts for the owner's polls."""
        data = await self._run(
            "fetch_poll_analytics",
            lambda: self.client.table("polls")
            .select("id, title, status, votes(id), poll_options(id)")
            .eq("user_id", user_id)
            .execute(),
        )
        return [
            {
                "id": poll["id"],
                "title": poll.get("title"),
                "status": poll.get("status"),
                "total_votes": len(poll.get("votes") or []),
                "total_options": len(poll.get("poll_options") or []),
            }
            for poll in data or []
        ]

    async def insert_poll(self, poll: dict) -> dict:
        """
        Inserts a poll row.

        Raises:
            DatabaseError: If the insert fails or returns no row
        """
        data = await self._run(
            "insert_poll",
            lambda: self.client.table("polls").insert(poll).execute(),
        )
        if not data:
            raise DatabaseError("insert_poll returned no row")
        logger.info("poll_inserted", poll_id=data[0].get("id"))
        return data[0]

    async def update_poll_fields(
        self, poll_id: str, user_id: str, fields: dict
    ) -> dict | None:
        """Applies column changes to a poll owned by the user."""
        data = await self._run(
            "update_poll_fields",
            lambda: self.client.table("polls")
            .update(fields)
            .eq("id", poll_id)
            .eq("user_id", user_id)
            .execute(),
            poll_id=poll_id,
            fields=sorted(fields),
        )
        return data[0] if data else None

    async def delete_poll(self, poll_id: str) -> None:
        await self._run(
            "delete_poll",
            lambda: self.client.table("polls").delete().eq("id", poll_id).execute(),
            poll_id=poll_id,
        )

    # --- Options ---

    async def fetch_options(self, poll_id: str) -> list[dict]:
        data = await self._run(
            "fetch_options",
            lambda: self.client.table("poll_options")
            .select("id, text, position")
            .eq("poll_id", poll_id)
            .order("position")
            .execute(),
            poll_id=poll_id,
        )
        return data or []

    async def insert_options(self, poll_id: str, options: list[str]) -> list[dict]:
        """Inserts options with positions 1..n in the given order."""
        rows = [
            {"poll_id": poll_id, "text": text, "position": position}
            for position, text in enumerate(options, start=1)
        ]
        data = await self._run(
            "insert_options",
            lambda: self.client.table("poll_options").insert(rows).execute(),
            poll_id=poll_id,
            count=len(rows),
        )
        return data or []

    async def delete_options_by_poll(self, poll_id: str) -> None:
        await self._run(
            "delete_options_by_poll",
            lambda: self.client.table("poll_options")
            .delete()
            .eq("poll_id", poll_id)
            .execute(),
            poll_id=poll_id,
        )

    # --- Chat history ---

    async def append_chat_message(self, user_id: str, message: ChatMessage) -> None:
        await self._run(
            "append_chat_message",
            lambda: self.client.table("chat_history")
            .insert(
                {
                    "user_id": user_id,
                    "message": message.content,
                    "role": message.role,
                    "created_at": message.timestamp.isoformat(),
                }
            )
            .execute(),
        )

    async def fetch_recent_chat_messages(
        self, user_id: str, limit: int
    ) -> list[ChatMessage]:
        """
        Returns the latest ``limit`` messages, oldest first.
        """
        data = await self._run(
            "fetch_recent_chat_messages",
            lambda: self.client.table("chat_history")
            .select("message, role, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute(),
            limit=limit,
        )
        messages = [
            ChatMessage(
                role=row["role"],
                content=row["message"],
                timestamp=row.get("created_at") or datetime.now(timezone.utc),
            )
            for row in data or []
            if row.get("role") in ("user", "assistant")
        ]
        messages.reverse()
        return messages

    # --- Conversation context snapshots ---

    async def load_context_snapshot(self, user_id: str) -> dict | None:
        data = await self._run(
            "load_context_snapshot",
            lambda: self.client.table("conversation_context")
            .select("current_state, session_data, entities, last_intent, updated_at")
            .eq("user_id", user_id)
            .limit(1)
            .execute(),
        )
        return data[0] if data else None

    async def upsert_context_snapshot(self, user_id: str, snapshot: dict) -> None:
        row = {
            "user_id": user_id,
            **snapshot,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._run(
            "upsert_context_snapshot",
            lambda: self.client.table("conversation_context")
            .upsert(row, on_conflict="user_id")
            .execute(),
        )

    async def delete_context_snapshot(self, user_id: str) -> None:
        await self._run(
            "delete_context_snapshot",
            lambda: self.client.table("conversation_context")
            .delete()
            .eq("user_id", user_id)
            .execute(),
        )

    # --- Identity ---

    async def get_user_role(self, user_id: str | None) -> str:
        """
        Looks up the user's role in ``profiles``.
        Any failure yields "user" so privileged flows stay closed.
        """
        if not user_id:
            return "user"
        try:
            data = await self._run(
                "get_user_role",
                lambda: self.client.table("profiles")
                .select("role")
                .eq("id", user_id)
                .limit(1)
                .execute(),
            )
        except DatabaseError:
            logger.warning("role_lookup_defaulted", role="user")
            return "user"
        if data and data[0].get("role") == "admin":
            return "admin"
        return "user"
