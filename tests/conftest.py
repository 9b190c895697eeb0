"""
Shared test fixtures and configuration.
"""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, Mock
from langchain_core.messages import AIMessage

from src.config import Settings
from src.database.memory import InMemoryRepository
from src.models.domain import ConversationContext, UserProfile
from src.services.intent_service import PatternIntentClassifier
from src.services.llm_service import LLMService

ADMIN_ID = "admin-1"
OTHER_ADMIN_ID = "admin-2"
USER_ID = "user-1"


class FakeClock:
    """Manually advanced clock for TTL and rate-limit tests."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    """Timezone-aware clock for ContextStore."""

    def __init__(self):
        self.now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def repository():
    """In-memory repository with one regular user and two admins."""
    return InMemoryRepository(
        roles={ADMIN_ID: "admin", OTHER_ADMIN_ID: "admin", USER_ID: "user"}
    )


@pytest.fixture
def mock_chat_model():
    """Mock chat model returning a fixed completion."""
    model = Mock()
    model.model_name = "gemini-test"
    response = AIMessage(content="Mocked response")
    response.usage_metadata = {
        "input_tokens": 100,
        "output_tokens": 50,
        "total_tokens": 150,
    }
    model.ainvoke = AsyncMock(return_value=response)
    return model


@pytest.fixture
def mock_llm_service():
    """Mock LLM service for testing without API calls."""
    service = Mock(spec=LLMService)
    service.complete = AsyncMock(return_value="Mocked response")
    return service


@pytest.fixture
def mock_request_queue():
    """Mock request queue; tests set ``enqueue`` return values or side effects."""
    queue = Mock()
    queue.enqueue = AsyncMock(return_value="Mocked response")
    return queue


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_date_clock():
    return FakeDateClock()


@pytest.fixture
def offline_settings() -> Settings:
    """Settings with every external service disabled."""
    return Settings(
        google_api_key=None,
        openai_api_key=None,
        supabase_url=None,
        supabase_service_key=None,
        llm_retry_backoff=0.0,
    )


@pytest.fixture
def admin_context() -> ConversationContext:
    return ConversationContext(
        user_id=ADMIN_ID, user_profile=UserProfile(id=ADMIN_ID, role="admin")
    )


@pytest.fixture
def user_context() -> ConversationContext:
    return ConversationContext(
        user_id=USER_ID, user_profile=UserProfile(id=USER_ID, role="user")
    )


@pytest.fixture
def classifier() -> PatternIntentClassifier:
    return PatternIntentClassifier()


@pytest.fixture
def seed_poll(repository):
    """Returns a coroutine that stores a poll with options for a given owner."""

    async def _seed(owner: str, title: str, options: list[str], **fields) -> dict:
        poll = await repository.insert_poll(
            {
                "user_id": owner,
                "title": title,
                "question": fields.pop("question", title),
                "category": fields.pop("category", "Other"),
                "status": fields.pop("status", "active"),
                "end_date": fields.pop("end_date", "2030-01-01T23:59:59+00:00"),
                **fields,
            }
        )
        await repository.insert_options(poll["id"], options)
        return poll

    return _seed


@pytest.fixture
def drive(classifier):
    """
    Returns a coroutine that sends one message through a flow controller
    and applies the resulting state to the context, like the graph does.
    """

    async def _drive(flow, context: ConversationContext, text: str):
        intent = classifier.classify(text, context)
        result = await flow.handle_intent(intent, context)
        if result.should_end_flow:
            context.current_state = None
        elif result.context_update is not None:
            context.current_state = result.context_update["state"]
        context.last_intent = intent
        return result

    return _drive
