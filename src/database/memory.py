"""
In-process repository with the same interface as PollRepository.
Used for local console sessions without Supabase and as the test double.
"""

import copy
import uuid
from datetime import datetime, timezone

from src.models.domain import ChatMessage
from src.utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryRepository:
    """
    Dictionary-backed storage for polls, options, votes, profiles,
    chat history and context snapshots.
    """

    def __init__(self, roles: dict[str, str] | None = None):
        """
        Args:
            roles: Optional mapping of user id to role ("admin" or "user")
        """
        self.roles = dict(roles or {})
        self.polls: dict[str, dict] = {}
        self.options: dict[str, list[dict]] = {}
        self.votes: list[dict] = []
        self.chat_history: dict[str, list[ChatMessage]] = {}
        self.snapshots: dict[str, dict] = {}

    # --- Polls ---

    def _public(self, poll: dict) -> dict:
        return {k: v for k, v in poll.items() if k != "user_id"}

    async def fetch_polls_by_owner(self, user_id: str) -> list[dict]:
        owned = [p for p in self.polls.values() if p["user_id"] == user_id]
        owned.sort(key=lambda p: p["created_at"], reverse=True)
        return [self._public(p) for p in owned]

    async def fetch_poll_by_id_and_owner(self, poll_id: str, user_id: str) -> dict | None:
        poll = self.polls.get(poll_id)
        if poll is None or poll["user_id"] != user_id:
            return None
        return self._public(poll)

    async def fetch_active_polls(self) -> list[dict]:
        active = [p for p in self.polls.values() if p.get("status") == "active"]
        active.sort(key=lambda p: str(p.get("end_date")))
        return [self._public(p) for p in active]

    async def fetch_recent_polls(self, limit: int) -> list[dict]:
        ordered = sorted(self.polls.values(), key=lambda p: p["created_at"], reverse=True)
        return [self._public(p) for p in ordered[:limit]]

    async def fetch_voted_polls(self, user_id: str, limit: int) -> list[dict]:
        mine = [v for v in self.votes if v["user_id"] == user_id]
        mine.sort(key=lambda v: v["created_at"], reverse=True)
        return [
            {**self._public(self.polls[v["poll_id"]]), "voted_at": v["created_at"]}
            for v in mine[:limit]
            if v["poll_id"] in self.polls
        ]

    async def fetch_poll_analytics(self, user_id: str) -> list[dict]:
        return [
            {
                "id": poll["id"],
                "title": poll.get("title"),
                "status": poll.get("status"),
                "total_votes": sum(1 for v in self.votes if v["poll_id"] == poll["id"]),
                "total_options": len(self.options.get(poll["id"], [])),
            }
            for poll in self.polls.values()
            if poll["user_id"] == user_id
        ]

    async def insert_poll(self, poll: dict) -> dict:
        row = {
            "id": str(uuid.uuid4()),
            "created_at": datetime.now(timezone.utc).isoformat(),
            **copy.deepcopy(poll),
        }
        self.polls[row["id"]] = row
        logger.info("poll_inserted", poll_id=row["id"])
        return dict(row)

    async def update_poll_fields(self, poll_id: str, user_id: str, fields: dict) -> dict | None:
        poll = self.polls.get(poll_id)
        if poll is None or poll["user_id"] != user_id:
            return None
        poll.update(copy.deepcopy(fields))
        return dict(poll)

    async def delete_poll(self, poll_id: str) -> None:
        self.polls.pop(poll_id, None)
        self.options.pop(poll_id, None)

    # --- Options ---

    async def fetch_options(self, poll_id: str) -> list[dict]:
        return [dict(o) for o in self.options.get(poll_id, [])]

    async def insert_options(self, poll_id: str, options: list[str]) -> list[dict]:
        rows = [
            {"id": str(uuid.uuid4()), "poll_id": poll_id, "text": text, "position": position}
            for position, text in enumerate(options, start=1)
        ]
        self.options.setdefault(poll_id, []).extend(rows)
        return [dict(r) for r in rows]

    async def delete_options_by_poll(self, poll_id: str) -> None:
        self.options.pop(poll_id, None)

    def add_vote(self, poll_id: str, user_id: str) -> None:
        """Records a vote; votes are cast outside the chat engine."""
        self.votes.append(
            {
                "poll_id": poll_id,
                "user_id": user_id,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
        )

    # --- Chat history ---

    async def append_chat_message(self, user_id: str, message: ChatMessage) -> None:
        self.chat_history.setdefault(user_id, []).append(message)

    async def fetch_recent_chat_messages(self, user_id: str, limit: int) -> list[ChatMessage]:
        if limit <= 0:
            return []
        return list(self.chat_history.get(user_id, [])[-limit:])

    # --- Conversation context snapshots ---

    async def load_context_snapshot(self, user_id: str) -> dict | None:
        snapshot = self.snapshots.get(user_id)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    async def upsert_context_snapshot(self, user_id: str, snapshot: dict) -> None:
        self.snapshots[user_id] = copy.deepcopy(snapshot)

    async def delete_context_snapshot(self, user_id: str) -> None:
        self.snapshots.pop(user_id, None)

    # --- Identity ---

    async def get_user_role(self, user_id: str | None) -> str:
        if not user_id:
            return "user"
        return "admin" if self.roles.get(user_id) == "admin" else "user"
