"""
Graph builder for constructing the conversation workflow.
Assembles nodes, edges, and services into an executable graph.
"""

from langgraph.graph import StateGraph, END
from supabase import create_client

from src import config
from src.database.memory import InMemoryRepository
from src.database.supabase import PollRepository
from src.graph.edges import route_after_classifier
from src.graph.nodes import TurnNodes
from src.models.domain import TurnState
from src.services.chat_service import ChatService
from src.services.context_service import ContextStore
from src.services.flows.factory import FlowFactory
from src.services.intent_service import IntentService, PatternIntentClassifier
from src.services.llm_service import LLMService, create_llm
from src.services.request_queue import FixedWindowRateLimiter, RequestQueue
from src.services.response_generator import ResponseGenerator
from src.utils.logger import get_logger

logger = get_logger(__name__)


def build_conversation_graph(nodes: TurnNodes):
    """
    Builds and compiles the per-turn workflow.

    classify -> (reset | flow) -> apply_context -> render -> END

    Args:
        nodes: TurnNodes bound to the engine's services

    Returns:
        Compiled graph ready for execution
    """
    logger.info("graph_workflow_building")
    workflow = StateGraph(TurnState)

    workflow.add_node("classify", nodes.classify_node)
    workflow.add_node("reset", nodes.reset_node)
    workflow.add_node("flow", nodes.flow_node)
    workflow.add_node("apply_context", nodes.apply_context_node)
    workflow.add_node("render", nodes.render_node)

    workflow.set_entry_point("classify")

    workflow.add_conditional_edges(
        "classify",
        route_after_classifier,
        {"reset": "reset", "flow": "flow"},
    )

    workflow.add_edge("reset", "apply_context")
    workflow.add_edge("flow", "apply_context")
    workflow.add_edge("apply_context", "render")
    workflow.add_edge("render", END)

    logger.info("graph_compiling", checkpointer=False)
    return workflow.compile()


def _api_key_for(model_name: str, settings: config.Settings) -> str | None:
    return settings.openai_api_key if "gpt" in model_name else settings.google_api_key


def build_chat_service(
    settings: config.Settings | None = None,
    repository=None,
    llm_service: LLMService | None = None,
) -> ChatService:
    """
    Wires the full engine.

    Without Supabase credentials the in-memory repository is used; without
    an API key for the chat model every reply comes from templates.

    Args:
        settings: Settings to use (defaults to the environment)
        repository: Repository override, e.g. for tests
        llm_service: LLMService override, e.g. a mocked model

    Returns:
        ChatService ready to process messages
    """
    logger.info("engine_components_initializing")
    settings = settings or config.get_settings()

    if repository is None:
        if settings.supabase_url and settings.supabase_service_key:
            client = create_client(settings.supabase_url, settings.supabase_service_key)
            repository = PollRepository(client)
            logger.info("repository_selected", backend="supabase")
        else:
            repository = InMemoryRepository()
            logger.warning("repository_selected", backend="memory", reason="missing_supabase_credentials")

    if llm_service is None:
        api_key = _api_key_for(settings.chat_model, settings)
        if api_key:
            llm_service = LLMService(
                model=create_llm(settings.chat_model, api_key, settings.chat_temperature),
                max_retries=settings.llm_max_retries,
                timeout=settings.llm_timeout,
                retry_backoff=settings.llm_retry_backoff,
            )
        else:
            logger.warning("llm_disabled", model=settings.chat_model, reason="missing_api_key")

    request_queue = None
    if llm_service is not None:
        request_queue = RequestQueue(
            llm_service,
            FixedWindowRateLimiter(
                max_requests=settings.rate_limit_max_requests,
                window_seconds=settings.rate_limit_window_seconds,
            ),
        )

    context_store = ContextStore(
        repository,
        ttl_hours=settings.context_ttl_hours,
        history_limit=settings.history_limit,
    )
    intent_service = IntentService(
        PatternIntentClassifier(),
        request_queue=request_queue,
        confidence_threshold=settings.intent_confidence_threshold,
        ai_fallback=settings.ai_intent_fallback,
    )
    nodes = TurnNodes(
        intent_service=intent_service,
        context_store=context_store,
        flow_factory=FlowFactory(repository, request_queue, settings),
        response_generator=ResponseGenerator(
            request_queue, naturalize=settings.naturalize_responses
        ),
    )

    return ChatService(
        graph=build_conversation_graph(nodes),
        context_store=context_store,
        repository=repository,
        request_queue=request_queue,
    )
