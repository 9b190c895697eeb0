"""
Stateless poll listing: active, mine, most recent, voted on, and analytics.
"""

from src import config
from src.database.supabase import DatabaseError
from src.models.domain import ConversationContext, FlowResult, Intent, IntentType
from src.services.flows.base import BaseFlowController, poll_line
from src.utils.logger import get_logger
from src.utils.prompts import response_text

logger = get_logger(__name__)

MAX_LIST_COUNT = 20


class PollListFlow(BaseFlowController):
    """Answers listing requests directly from the repository. Always terminal."""

    name = "poll_list"

    def __init__(
        self,
        repository,
        request_queue=None,
        recent_default: int = config.RECENT_POLLS_DEFAULT,
        voted_default: int = config.VOTED_POLLS_DEFAULT,
    ):
        super().__init__(repository, request_queue)
        self.recent_default = recent_default
        self.voted_default = voted_default
        self._handlers = {
            IntentType.LIST_POLLS: self._active_polls,
            IntentType.LIST_MY_POLLS: self._my_polls,
            IntentType.LIST_RECENT_POLLS: self._recent_polls,
            IntentType.LIST_VOTED_POLLS: self._voted_polls,
            IntentType.POLL_ANALYTICS: self._analytics,
        }

    async def handle_intent(self, intent: Intent, context: ConversationContext) -> FlowResult:
        handler = self._handlers.get(intent.type, self._active_polls)
        try:
            return await handler(intent, context)
        except DatabaseError:
            return self.end(response_text("lookup_failure"), "persistence_failure", success=False)

    def _count(self, intent: Intent, default: int) -> int:
        count = intent.entities.get("count") or default
        return max(1, min(int(count), MAX_LIST_COUNT))

    def _listing(self, heading: str, polls: list[dict], empty: str, result_type: str = "poll_list") -> FlowResult:
        if not polls:
            return self.end(empty, "empty_poll_list", polls=[])
        titles = [p.get("title") or "Untitled poll" for p in polls]
        return self.end(
            heading + "\n" + "\n".join(poll_line(i, p) for i, p in enumerate(polls, start=1)),
            result_type,
            preserve=titles,
            polls=polls,
        )

    async def _active_polls(self, intent: Intent, context: ConversationContext) -> FlowResult:
        polls = await self.repository.fetch_active_polls()
        logger.info("active_polls_listed", count=len(polls))
        return self._listing(
            "Here are the active polls:",
            polls,
            "There are no active polls right now. Check back soon!",
        )

    async def _my_polls(self, intent: Intent, context: ConversationContext) -> FlowResult:
        if not context.user_profile.is_admin or not context.user_id:
            return self.end(response_text("admin_only_my_polls"), "permission_denied", success=False)
        polls = await self.repository.fetch_polls_by_owner(context.user_id)
        return self._listing(
            "Here are your polls:",
            polls,
            "You haven't created any polls yet. Would you like to create one?",
        )

    async def _recent_polls(self, intent: Intent, context: ConversationContext) -> FlowResult:
        count = self._count(intent, self.recent_default)
        polls = await self.repository.fetch_recent_polls(count)
        return self._listing(
            f"Here are the {len(polls)} most recent polls:",
            polls,
            "No polls have been created yet.",
        )

    async def _voted_polls(self, intent: Intent, context: ConversationContext) -> FlowResult:
        if not context.user_id:
            return self.end(response_text("sign_in_required"), "sign_in_required", success=False)
        count = self._count(intent, self.voted_default)
        polls = await self.repository.fetch_voted_polls(context.user_id, count)
        return self._listing(
            "Here are the polls you voted on most recently:",
            polls,
            "You haven't voted on any polls yet. Say \"show active polls\" to find one.",
        )

    async def _analytics(self, intent: Intent, context: ConversationContext) -> FlowResult:
        if not context.user_profile.is_admin or not context.user_id:
            return self.end(response_text("admin_only_analytics"), "permission_denied", success=False)

        stats = await self.repository.fetch_poll_analytics(context.user_id)
        if not stats:
            return self.end("You don't have any polls to analyze yet.", "empty_poll_list")

        total_polls = len(stats)
        total_votes = sum(s["total_votes"] for s in stats)
        active = sum(1 for s in stats if s.get("status") == "active")
        lines = [
            f"{i}. {s.get('title') or 'Untitled poll'}: {s['total_votes']} votes, "
            f"{s['total_options']} options, {s.get('status') or 'unknown'}"
            for i, s in enumerate(stats, start=1)
        ]
        message = (
            "Your poll analytics:\n"
            f"Total polls: {total_polls}\n"
            f"Active polls: {active}\n"
            f"Total votes received: {total_votes}\n"
            f"Average votes per poll: {round(total_votes / total_polls)}\n\n"
            + "\n".join(lines)
        )
        return self.end(
            message,
            "poll_analytics",
            preserve=[s.get("title") or "Untitled poll" for s in stats],
            summary={
                "total_polls": total_polls,
                "active_polls": active,
                "total_votes": total_votes,
            },
            polls=stats,
        )
