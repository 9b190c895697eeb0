"""
Turns FlowResults into assistant messages.
Most replies are sent verbatim; a few kinds are rephrased by the LLM when it
keeps every preserved string intact.
"""

from src.models.domain import ChatMessage, ConversationContext, FlowResult, Intent
from src.services.llm_service import LLMError
from src.utils.logger import get_logger
from src.utils.prompts import render_prompt, response_text

logger = get_logger(__name__)

NATURALIZED_TYPES = frozenset(
    {
        "poll_list",
        "field_selection",
        "update_preview",
        "creation_preview",
        "available_polls",
        "general_chat",
    }
)

CAPABILITIES = {
    "admin": "create polls, update your polls, list active, recent or your own polls, show poll analytics",
    "user": "list active polls, show the most recent polls, show polls you voted on",
}


def preserves_in_order(text: str, preserve: list[str]) -> bool:
    """True when every preserved string appears in ``text``, in the given order."""
    position = 0
    for item in preserve:
        found = text.find(item, position)
        if found < 0:
            return False
        position = found + len(item)
    return True


class ResponseGenerator:
    """
    Renders the reply of a turn.

    Rendering never changes ``flow_result.data``; it only decides the text.
    """

    def __init__(self, request_queue=None, naturalize: bool = True):
        """
        Args:
            request_queue: RequestQueue for LLM calls (None disables rephrasing)
            naturalize: Feature flag for LLM rephrasing
        """
        self.request_queue = request_queue
        self.naturalize = naturalize

    async def render(
        self, flow_result: FlowResult, context: ConversationContext, intent: Intent | None = None
    ) -> ChatMessage:
        data = flow_result.data or {}
        template = data.get("message") or response_text("apology")
        result_type = data.get("type")

        if not self._should_naturalize(result_type):
            return ChatMessage(role="assistant", content=template)

        try:
            if result_type == "general_chat":
                text = await self._chat(data, context, intent)
            else:
                text = await self._rephrase(template, data, intent)
        except LLMError as e:
            logger.warning(
                "response_naturalization_failed",
                result_type=result_type,
                error_type=type(e).__name__,
            )
            return ChatMessage(role="assistant", content=template)

        text = (text or "").strip()
        if not text or not preserves_in_order(text, data.get("preserve") or []):
            logger.info("response_template_used", result_type=result_type)
            return ChatMessage(role="assistant", content=template)

        return ChatMessage(role="assistant", content=text)

    def _should_naturalize(self, result_type: str | None) -> bool:
        return (
            self.naturalize
            and self.request_queue is not None
            and result_type in NATURALIZED_TYPES
        )

    async def _rephrase(self, template: str, data: dict, intent: Intent | None) -> str:
        prompt = render_prompt(
            "naturalize",
            message=template,
            user_message=intent.raw_text if intent else "",
        )
        return await self.request_queue.enqueue(prompt)

    async def _chat(self, data: dict, context: ConversationContext, intent: Intent | None) -> str:
        role = context.user_profile.role
        history = "\n".join(f"{m.role}: {m.content}" for m in context.history[-6:])
        prompt = render_prompt(
            "general_chat",
            role=role,
            capabilities=CAPABILITIES[role],
            history=history or "(no previous messages)",
            message=data.get("user_message") or (intent.raw_text if intent else ""),
        )
        return await self.request_queue.enqueue(prompt)
