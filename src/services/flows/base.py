"""
Base class for flow controllers.
A controller turns an intent into a FlowResult; it never raises for bad
user input or collaborator failures.
"""

from abc import ABC, abstractmethod
from typing import Any

from src.models.domain import ConversationContext, ConversationState, FlowResult, Intent
from src.services.llm_service import LLMError
from src.utils.logger import get_logger

logger = get_logger(__name__)

_KEEP = object()


class BaseFlowController(ABC):
    """
    Shared helpers for building FlowResults and calling the LLM.

    Result conventions:
        data["type"]     kind of reply, used by the response generator
        data["message"]  deterministic text of the reply
        data["preserve"] strings a rephrased reply must keep verbatim
        context_update   {"state": ConversationState | None} when the state changes
    """

    name = "base"

    def __init__(self, repository, request_queue=None):
        """
        Args:
            repository: PollRepository or InMemoryRepository
            request_queue: RequestQueue for LLM calls (None disables them)
        """
        self.repository = repository
        self.request_queue = request_queue

    @abstractmethod
    async def handle_intent(self, intent: Intent, context: ConversationContext) -> FlowResult:
        """Handles one intent for the given context."""

    def success(
        self,
        message: str,
        result_type: str,
        state: ConversationState | None | object = _KEEP,
        preserve: list[str] | None = None,
        **data: Any,
    ) -> FlowResult:
        """
        Result that keeps the flow going.

        Args:
            message: Reply text
            result_type: Kind of reply
            state: New state; omitted to leave the current state untouched
            preserve: Strings a rephrased reply must keep
            **data: Structured payload
        """
        return FlowResult(
            success=True,
            data=self._data(message, result_type, preserve, data),
            next_step=getattr(state, "step", None) if state is not _KEEP else None,
            context_update={"state": state} if state is not _KEEP else None,
        )

    def error(
        self,
        message: str,
        result_type: str = "error",
        error: str | None = None,
        state: ConversationState | None | object = _KEEP,
        preserve: list[str] | None = None,
        **data: Any,
    ) -> FlowResult:
        """Recoverable failure; by default the state is left unchanged so the user can retry."""
        return FlowResult(
            success=False,
            data=self._data(message, result_type, preserve, data),
            error=error or result_type,
            next_step=getattr(state, "step", None) if state is not _KEEP else None,
            context_update={"state": state} if state is not _KEEP else None,
        )

    def end(
        self,
        message: str,
        result_type: str,
        success: bool = True,
        preserve: list[str] | None = None,
        **data: Any,
    ) -> FlowResult:
        """Terminal result; the active state is cleared."""
        return FlowResult(
            success=success,
            data=self._data(message, result_type, preserve, data),
            error=None if success else result_type,
            should_end_flow=True,
        )

    @staticmethod
    def _data(message: str, result_type: str, preserve: list[str] | None, data: dict) -> dict:
        payload = {"type": result_type, "message": message, **data}
        if preserve:
            payload["preserve"] = [str(item) for item in preserve]
        return payload

    async def ask_llm(self, prompt: str, purpose: str) -> str | None:
        """
        Sends a prompt through the request queue.

        Returns:
            Reply text, or None when the LLM is disabled, throttled or failing
        """
        if self.request_queue is None:
            return None
        try:
            return await self.request_queue.enqueue(prompt)
        except LLMError as e:
            logger.warning(
                "llm_fallback_used",
                flow=self.name,
                purpose=purpose,
                error_type=type(e).__name__,
                retry_after=getattr(e, "retry_after", None),
            )
            return None


def numbered(items: list[str]) -> str:
    return "\n".join(f"{index}. {item}" for index, item in enumerate(items, start=1))


def format_date(value) -> str:
    """Renders an ISO timestamp (or datetime) as YYYY-MM-DD."""
    if value is None:
        return "no end date"
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d")
    return str(value)[:10]


def poll_line(index: int, poll: dict) -> str:
    """One numbered poll entry: title, category, status and end date."""
    details = [poll.get("category") or "Uncategorized"]
    if poll.get("status"):
        details.append(poll["status"])
    details.append(f"ends {format_date(poll.get('end_date'))}")
    return f"{index}. {poll.get('title') or 'Untitled poll'} ({', '.join(details)})"
