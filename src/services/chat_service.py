"""
Public entry point of the conversation engine.
One call to ``process_message`` is one chat turn.
"""

from src.database.supabase import DatabaseError
from src.models.domain import ChatMessage, ChatResponse, UserProfile
from src.utils.logger import get_logger, turn_context
from src.utils.metrics import TurnMetrics
from src.utils.prompts import response_text

logger = get_logger(__name__)


class ChatService:
    """
    Runs chat turns through the conversation graph.

    Turns of the same user are serialized; different users proceed
    concurrently and only share the LLM request queue.
    """

    def __init__(self, graph, context_store, repository, request_queue=None):
        """
        Args:
            graph: Compiled conversation graph
            context_store: ContextStore holding per-user contexts
            repository: Repository used for role lookups
            request_queue: RequestQueue to close on shutdown
        """
        self.graph = graph
        self.context_store = context_store
        self.repository = repository
        self.request_queue = request_queue

    async def process_message(self, user_id: str | None, text: str) -> ChatResponse:
        """
        Handles one user message and returns the assistant reply.
        Never raises: unexpected failures become an apology.

        Args:
            user_id: Authenticated user id, or None for anonymous users
            text: Raw message text

        Returns:
            ChatResponse with the reply, the intent and the updated history
        """
        with turn_context(user_id):
            metrics = TurnMetrics()
            intent = None
            try:
                async with self.context_store.lock(user_id):
                    response = await self._run_turn(user_id, text)
                intent = response.intent
                return response
            except Exception as e:
                logger.error("turn_failed", exc_info=True, error=str(e))
                return ChatResponse(
                    message=ChatMessage(role="assistant", content=response_text("apology"))
                )
            finally:
                metrics.finalize(intent=intent.type.value if intent else None)

    async def _run_turn(self, user_id: str | None, text: str) -> ChatResponse:
        role = await self.repository.get_user_role(user_id)
        context = await self.context_store.load(
            user_id, UserProfile(id=user_id, role=role)
        )
        logger.info(
            "turn_started",
            role=role,
            state=context.current_state.type.value if context.current_state else None,
            step=context.current_state.step if context.current_state else None,
        )

        context = await self.context_store.append_message(
            user_id, ChatMessage(role="user", content=text), context
        )

        result = await self.graph.ainvoke({"message": text, "context": context})
        context = result["context"]
        reply = result["reply"]

        context = await self.context_store.append_message(user_id, reply, context)
        try:
            await self.context_store.save(user_id, context)
        except DatabaseError as e:
            logger.warning("context_not_persisted", error=str(e))

        flow_result = result.get("flow_result")
        return ChatResponse(
            message=reply,
            intent=result.get("intent"),
            data=flow_result.data if flow_result else None,
            history=list(context.history),
        )

    async def aclose(self) -> None:
        if self.request_queue is not None:
            await self.request_queue.aclose()
