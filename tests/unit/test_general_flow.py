"""
Unit tests for GeneralFlow.
"""

import pytest

from src.models.domain import Intent, IntentType
from src.services.flows.general import GeneralFlow
from src.utils.prompts import response_text


@pytest.fixture
def flow(repository):
    return GeneralFlow(repository)


class TestGeneralFlow:
    """Tests for greetings, help, reset acknowledgements and chat."""

    @pytest.mark.asyncio
    async def test_greeting_depends_on_role(self, flow, admin_context, user_context, classifier):
        """Should greet admins and users with their own capabilities."""
        admin = await flow.handle_intent(classifier.classify("hello", admin_context), admin_context)
        user = await flow.handle_intent(classifier.classify("hello", user_context), user_context)

        assert admin.data["message"] == response_text("greeting_admin")
        assert user.data["message"] == response_text("greeting_user")
        assert "Create a new poll" not in user.data["message"]

    @pytest.mark.asyncio
    async def test_help(self, flow, user_context, classifier):
        """Should answer capability questions with the help text."""
        intent = classifier.classify("what can you do?", user_context)

        result = await flow.handle_intent(intent, user_context)

        assert result.data["type"] == "help"
        assert result.should_end_flow

    @pytest.mark.asyncio
    async def test_reset_with_state(self, flow, admin_context):
        """Should acknowledge a reset that abandoned a flow."""
        intent = Intent(
            type=IntentType.RESET,
            confidence=1.0,
            entities={"keyword": "cancel"},
            raw_text="cancel",
            notes={"had_state": True},
        )

        result = await flow.handle_intent(intent, admin_context)

        assert result.data == {"type": "reset", "message": response_text("reset")}
        assert result.should_end_flow

    @pytest.mark.asyncio
    async def test_reset_without_state(self, flow, admin_context):
        """Should say there was nothing to cancel."""
        intent = Intent(type=IntentType.RESET, confidence=1.0, entities={"keyword": "stop"}, raw_text="stop")

        result = await flow.handle_intent(intent, admin_context)

        assert result.data["message"] == response_text("reset_idle")

    @pytest.mark.asyncio
    async def test_help_keyword_resets_and_helps(self, flow, user_context):
        """Should combine the reset acknowledgement with help text."""
        intent = Intent(
            type=IntentType.RESET,
            confidence=1.0,
            entities={"keyword": "help"},
            raw_text="help",
            notes={"had_state": True},
        )

        result = await flow.handle_intent(intent, user_context)

        assert result.data["type"] == "help"
        assert result.data["message"].startswith(response_text("reset"))
        assert result.data["message"].endswith(response_text("help_user"))

    @pytest.mark.asyncio
    async def test_stray_confirmation(self, flow, admin_context, classifier):
        """Should not act on a confirmation when nothing is pending."""
        intent = classifier.classify("yes", admin_context)

        result = await flow.handle_intent(intent, admin_context)

        assert result.data["type"] == "no_pending_action"

    @pytest.mark.asyncio
    async def test_free_chat(self, flow, user_context, classifier):
        """Should fall back to general chat and keep the user's message."""
        intent = classifier.classify("what's the weather like?", user_context)

        result = await flow.handle_intent(intent, user_context)

        assert result.data["type"] == "general_chat"
        assert result.data["user_message"] == "what's the weather like?"
        assert result.context_update is None

    @pytest.mark.asyncio
    async def test_delete_request_for_admin(self, flow, admin_context, classifier):
        """Should tell admins that deleting is not available in chat, without touching polls."""
        intent = classifier.classify("delete my poll", admin_context)

        result = await flow.handle_intent(intent, admin_context)

        assert intent.type == IntentType.DELETE_POLL
        assert result.data["type"] == "delete_unavailable"
        assert result.data["message"] == response_text("delete_unavailable")
        assert result.should_end_flow

    @pytest.mark.asyncio
    async def test_delete_request_for_user(self, flow, user_context, classifier):
        """Should refuse delete requests from regular users."""
        intent = classifier.classify("delete my poll", user_context)

        result = await flow.handle_intent(intent, user_context)

        assert not result.success
        assert result.data["type"] == "permission_denied"
        assert result.data["message"] == response_text("admin_only_delete")
