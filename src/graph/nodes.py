"""
Graph nodes for one chat turn.
Each node is thin and delegates business logic to services.
"""

from src.models.domain import FlowResult, IntentType, TurnState
from src.utils.logger import get_logger
from src.utils.metrics import end_node_timing, start_node_timing
from src.utils.prompts import response_text

logger = get_logger(__name__)


class TurnNodes:
    """
    Container for all graph node functions.
    Nodes read and write TurnState; the context object is shared with the
    ContextStore cache, so state changes go through the store.
    """

    def __init__(self, intent_service, context_store, flow_factory, response_generator):
        """
        Initialize graph nodes with required services.

        Args:
            intent_service: IntentService classifying each message
            context_store: ContextStore owning conversation state
            flow_factory: FlowFactory mapping intents to controllers
            response_generator: ResponseGenerator rendering the reply
        """
        self.intent_service = intent_service
        self.context_store = context_store
        self.flow_factory = flow_factory
        self.response_generator = response_generator

    async def classify_node(self, state: TurnState) -> dict:
        """Classifies the user message (patterns first, LLM when unsure)."""
        start_node_timing("classify")
        intent = await self.intent_service.recognize(state["message"], state["context"])
        end_node_timing("classify")
        return {"intent": intent}

    async def reset_node(self, state: TurnState) -> dict:
        """Drops any flow in progress and acknowledges the reset."""
        start_node_timing("reset")
        context = state["context"]
        intent = state["intent"]
        had_state = context.current_state is not None

        await self.context_store.clear(context.user_id)
        # Anonymous contexts are not cached by the store
        context.current_state = None
        context.session_data = {}
        context.entities = {}
        context.last_intent = None

        logger.info(
            "conversation_reset",
            keyword=intent.entities.get("keyword"),
            had_state=had_state,
        )
        intent = intent.model_copy(update={"notes": {**(intent.notes or {}), "had_state": had_state}})
        result = await self.flow_factory.general.handle_intent(intent, context)
        end_node_timing("reset")
        return {"intent": intent, "flow_result": result}

    async def flow_node(self, state: TurnState) -> dict:
        """Hands the intent to its flow controller."""
        start_node_timing("flow")
        intent = state["intent"]
        controller = self.flow_factory.for_intent(intent)
        try:
            result = await controller.handle_intent(intent, state["context"])
        except Exception as e:
            logger.error(
                "flow_failed",
                exc_info=True,
                flow=controller.name,
                error=str(e),
            )
            result = FlowResult(
                success=False,
                data={"type": "error", "message": response_text("apology")},
                error="unexpected_error",
            )
        end_node_timing("flow")
        logger.info(
            "flow_completed",
            flow=controller.name,
            success=result.success,
            result_type=(result.data or {}).get("type"),
            next_step=result.next_step,
            ends_flow=result.should_end_flow,
        )
        return {"flow_result": result}

    async def apply_context_node(self, state: TurnState) -> dict:
        """Applies the state transition requested by the flow result."""
        start_node_timing("apply_context")
        context = state["context"]
        intent = state["intent"]
        result = state["flow_result"]
        user_id = context.user_id

        if result.should_end_flow:
            context = await self.context_store.set_state(user_id, None) if user_id else context
            context.current_state = None
        elif result.context_update and "state" in result.context_update:
            new_state = result.context_update["state"]
            if user_id:
                context = await self.context_store.set_state(user_id, new_state)
            else:
                context.current_state = new_state
        elif intent.entities.get("topic_switch"):
            # The new task failed to start; the old one is abandoned anyway
            if user_id:
                context = await self.context_store.set_state(user_id, None)
            context.current_state = None

        if intent.type != IntentType.RESET:
            context.last_intent = intent
            if user_id:
                await self.context_store.update_last_intent(user_id, intent)

        end_node_timing("apply_context")
        return {"context": context}

    async def render_node(self, state: TurnState) -> dict:
        """Renders the assistant reply."""
        start_node_timing("render")
        reply = await self.response_generator.render(
            state["flow_result"], state["context"], state.get("intent")
        )
        end_node_timing("render")
        return {"reply": reply}
