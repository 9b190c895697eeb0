"""
Integration tests for complete conversations.
Messages go through ChatService and the compiled graph against the
in-memory repository.
"""

import pytest

from src.config import Settings
from src.graph.builder import build_chat_service
from src.models.domain import CreationStep, IntentType, UpdateStep
from src.utils.prompts import response_text

ADMIN_ID = "admin-1"
USER_ID = "user-1"


@pytest.fixture
def chat_service(offline_settings, repository):
    return build_chat_service(offline_settings, repository=repository)


async def send_all(service, user_id, *messages):
    response = None
    for message in messages:
        response = await service.process_message(user_id, message)
    return response


async def current_state(service, user_id):
    context = await service.context_store.load(user_id)
    return context.current_state


@pytest.mark.integration
class TestPollCreationConversation:
    """End-to-end poll creation."""

    @pytest.mark.asyncio
    async def test_create_programming_language_poll(self, chat_service, repository):
        """Should create the poll with the detected category and ordered options."""
        # Act
        first = await chat_service.process_message(
            ADMIN_ID, "create a poll about best programming language"
        )
        await chat_service.process_message(ADMIN_ID, "What is the best programming language?")
        preview = await chat_service.process_message(ADMIN_ID, "Python, Rust, Go, TypeScript")
        created = await chat_service.process_message(ADMIN_ID, "confirm")

        # Assert
        assert first.intent.type == IntentType.CREATE_POLL
        assert first.data["type"] == "ask_topic"
        assert preview.data["poll"]["category"] == "Technology"
        assert created.data["type"] == "poll_created"

        [poll] = repository.polls.values()
        assert poll["user_id"] == ADMIN_ID
        assert poll["category"] == "Technology"
        assert poll["question"] == "What is the best programming language?"
        options = await repository.fetch_options(poll["id"])
        assert [o["text"] for o in options] == ["Python", "Rust", "Go", "TypeScript"]
        assert await current_state(chat_service, ADMIN_ID) is None

    @pytest.mark.asyncio
    async def test_second_confirm_does_nothing(self, chat_service, repository):
        """Should not create a second poll from a repeated confirmation."""
        await send_all(
            chat_service,
            ADMIN_ID,
            "create a poll about best programming language",
            "What is the best programming language?",
            "Python, Rust, Go, TypeScript",
            "confirm",
        )

        response = await chat_service.process_message(ADMIN_ID, "confirm")

        assert response.data["type"] == "no_pending_action"
        assert len(repository.polls) == 1

    @pytest.mark.asyncio
    async def test_history_records_both_sides(self, chat_service):
        """Should append the user message and the reply to the history."""
        response = await chat_service.process_message(ADMIN_ID, "hello")

        assert [m.role for m in response.history] == ["user", "assistant"]
        assert response.history[0].content == "hello"
        assert response.message.content == response_text("greeting_admin")

    @pytest.mark.asyncio
    async def test_regular_user_cannot_create(self, chat_service, repository):
        """Should refuse poll creation for regular users."""
        response = await chat_service.process_message(USER_ID, "create a poll about cats")

        assert response.data["type"] == "permission_denied"
        assert repository.polls == {}
        assert await current_state(chat_service, USER_ID) is None


@pytest.mark.integration
class TestPollUpdateConversation:
    """End-to-end poll updates."""

    @pytest.mark.asyncio
    async def test_add_cities_to_poll(self, chat_service, repository, seed_poll):
        """Should add options after the existing one, in order."""
        poll = await seed_poll(ADMIN_ID, "Best city to live in India", ["Chennai"])

        preview = await send_all(
            chat_service, ADMIN_ID, "edit my poll", "1", "1", "add Mumbai, Delhi"
        )
        done = await chat_service.process_message(ADMIN_ID, "yes")

        assert preview.data["type"] == "update_preview"
        assert done.data["type"] == "poll_updated"
        options = await repository.fetch_options(poll["id"])
        assert [o["text"] for o in options] == ["Chennai", "Mumbai", "Delhi"]
        assert await current_state(chat_service, ADMIN_ID) is None

    @pytest.mark.asyncio
    async def test_other_admins_poll_is_not_found(self, chat_service, repository, seed_poll):
        """Should keep waiting for a selection when given a foreign poll id."""
        await seed_poll(ADMIN_ID, "Best city to live in India", ["Chennai"])
        foreign = await seed_poll("admin-2", "Favourite season", ["Summer", "Winter"])

        response = await send_all(chat_service, ADMIN_ID, "edit my poll", foreign["id"])

        assert response.data["type"] == "poll_not_found"
        state = await current_state(chat_service, ADMIN_ID)
        assert state.step == UpdateStep.SELECT_POLL.value
        assert await repository.fetch_options(foreign["id"]) != []


@pytest.mark.integration
class TestResetAndTopicSwitch:
    """Leaving a flow in the middle."""

    @pytest.mark.asyncio
    async def test_cancel_clears_state(self, chat_service):
        """Should abandon the flow on a reset keyword."""
        await chat_service.process_message(ADMIN_ID, "create a poll")
        assert (await current_state(chat_service, ADMIN_ID)).step == CreationStep.CATEGORY.value

        response = await chat_service.process_message(ADMIN_ID, "cancel")

        assert response.intent.type == IntentType.RESET
        assert response.data["type"] == "reset"
        assert response.message.content == response_text("reset")
        assert await current_state(chat_service, ADMIN_ID) is None

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, chat_service):
        response = await chat_service.process_message(ADMIN_ID, "cancel")

        assert response.message.content == response_text("reset_idle")

    @pytest.mark.asyncio
    async def test_listing_request_leaves_flow(self, chat_service, seed_poll):
        """Should answer a listing request at the category step and drop the flow."""
        await seed_poll("admin-2", "Favourite season", ["Summer", "Winter"])
        await chat_service.process_message(ADMIN_ID, "create a poll")

        response = await chat_service.process_message(ADMIN_ID, "show active polls")

        assert response.intent.type == IntentType.LIST_POLLS
        assert response.data["type"] == "poll_list"
        assert "Favourite season" in response.message.content
        assert await current_state(chat_service, ADMIN_ID) is None

    @pytest.mark.asyncio
    async def test_state_survives_restart(self, offline_settings, repository):
        """Should resume a flow from the stored snapshot in a new engine."""
        first = build_chat_service(offline_settings, repository=repository)
        await first.process_message(ADMIN_ID, "create a poll")

        second = build_chat_service(offline_settings, repository=repository)
        response = await second.process_message(ADMIN_ID, "2")

        assert response.data["type"] == "ask_topic"
        assert "Politics" in response.message.content
        assert (await current_state(second, ADMIN_ID)).step == CreationStep.TOPIC.value


@pytest.mark.integration
class TestListingConversation:
    """Listing requests for different users."""

    @pytest.mark.asyncio
    async def test_anonymous_listing(self, chat_service, seed_poll):
        """Should list active polls for anonymous users without storing anything."""
        await seed_poll(ADMIN_ID, "Favourite season", ["Summer", "Winter"])

        response = await chat_service.process_message(None, "show active polls")

        assert response.data["type"] == "poll_list"
        assert "Favourite season" in response.message.content

    @pytest.mark.asyncio
    async def test_recent_with_count(self, chat_service, seed_poll):
        for day in range(1, 5):
            await seed_poll(ADMIN_ID, f"Poll number {day}", ["A", "B"], created_at=f"2025-05-0{day}T10:00:00+00:00")

        response = await chat_service.process_message(USER_ID, "show the 2 latest polls")

        assert [p["title"] for p in response.data["polls"]] == ["Poll number 4", "Poll number 3"]


@pytest.mark.integration
class TestLanguageModelFallbacks:
    """Behaviour with a language model behind the request queue."""

    @pytest.mark.asyncio
    async def test_free_chat_answered_by_model(self, repository, mock_llm_service):
        """Should use the model's answer for free chat."""
        settings = Settings(llm_retry_backoff=0.0, rate_limit_max_requests=10)
        service = build_chat_service(settings, repository=repository, llm_service=mock_llm_service)

        response = await service.process_message(USER_ID, "what's the weather like?")
        await service.aclose()

        assert response.data["type"] == "general_chat"
        assert response.message.content == "Mocked response"

    @pytest.mark.asyncio
    async def test_rate_limited_chat_uses_template(self, repository, mock_llm_service):
        """Should fall back to the canned reply once the quota is used up."""
        settings = Settings(llm_retry_backoff=0.0, rate_limit_max_requests=1, rate_limit_window_seconds=60)
        service = build_chat_service(settings, repository=repository, llm_service=mock_llm_service)

        response = await service.process_message(USER_ID, "what's the weather like?")
        await service.aclose()

        assert response.message.content == response_text("general_fallback")
        assert mock_llm_service.complete.await_count == 1


CREATION_STEPS = {
    CreationStep.CATEGORY: ["create a poll"],
    CreationStep.TOPIC: ["create a poll about best programming language"],
    CreationStep.OPTIONS: [
        "create a poll about best programming language",
        "What is the best programming language?",
    ],
    CreationStep.CONFIRM: [
        "create a poll about best programming language",
        "What is the best programming language?",
        "Python, Rust",
    ],
}
UPDATE_STEPS = {
    UpdateStep.SELECT_POLL: ["edit my poll"],
    UpdateStep.SELECT_FIELD: ["edit my poll", "1"],
    UpdateStep.UPDATE_OPTIONS: ["edit my poll", "1", "1"],
    UpdateStep.UPDATE_TITLE: ["edit my poll", "1", "2"],
    UpdateStep.UPDATE_END_DATE: ["edit my poll", "1", "3"],
    UpdateStep.UPDATE_CATEGORY: ["edit my poll", "1", "4"],
    UpdateStep.CONFIRM_UPDATE: ["edit my poll", "1", "2", "Most liveable city in India"],
}
RESET_MESSAGES = ["cancel", "stop", "start over", "never mind", "I want to cancel this"]


@pytest.mark.integration
class TestResetFromEveryStep:
    """A reset request leaves any step of any flow."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reset_message", RESET_MESSAGES)
    @pytest.mark.parametrize("step", list(CREATION_STEPS), ids=lambda s: s.value)
    async def test_creation_steps(self, chat_service, repository, step, reset_message):
        """Should clear the creation state without creating a poll."""
        await send_all(chat_service, ADMIN_ID, *CREATION_STEPS[step])
        assert (await current_state(chat_service, ADMIN_ID)).step == step.value

        response = await chat_service.process_message(ADMIN_ID, reset_message)

        assert response.intent.type == IntentType.RESET
        assert response.data["type"] == "reset"
        assert await current_state(chat_service, ADMIN_ID) is None
        assert repository.polls == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reset_message", RESET_MESSAGES)
    @pytest.mark.parametrize("step", list(UPDATE_STEPS), ids=lambda s: s.value)
    async def test_update_steps(self, chat_service, repository, seed_poll, step, reset_message):
        """Should clear the update state and leave the poll untouched."""
        poll = await seed_poll(ADMIN_ID, "Best city to live in India", ["Chennai", "Delhi"])
        await send_all(chat_service, ADMIN_ID, *UPDATE_STEPS[step])
        assert (await current_state(chat_service, ADMIN_ID)).step == step.value

        response = await chat_service.process_message(ADMIN_ID, reset_message)

        assert response.intent.type == IntentType.RESET
        assert await current_state(chat_service, ADMIN_ID) is None
        assert repository.polls[poll["id"]]["title"] == "Best city to live in India"
        assert [o["text"] for o in await repository.fetch_options(poll["id"])] == ["Chennai", "Delhi"]


@pytest.mark.integration
class TestSettingsWiring:
    """Settings reach the components built for a chat service."""

    @pytest.mark.asyncio
    async def test_settings_configure_components(self, repository, mock_llm_service):
        """Should hand every tunable setting to the component that uses it."""
        settings = Settings(
            history_limit=5,
            context_ttl_hours=2.0,
            rate_limit_max_requests=7,
            rate_limit_window_seconds=30.0,
            llm_retry_backoff=0.0,
        )

        service = build_chat_service(settings, repository=repository, llm_service=mock_llm_service)
        await service.aclose()

        assert service.context_store.history_limit == 5
        assert service.context_store.ttl.total_seconds() == 2 * 3600
        assert service.request_queue.limiter.max_requests == 7
        assert service.request_queue.limiter.window_seconds == 30.0
