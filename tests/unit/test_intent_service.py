"""
Unit tests for intent recognition.
Tests the ordered pattern rules, state-scoped recognizers and the LLM fallback.
"""

import pytest
from pydantic import ValidationError

from src.models.domain import (
    ConversationContext,
    ConversationState,
    CreationStep,
    Intent,
    IntentType,
    StateType,
    UpdateStep,
    UserProfile,
)
from src.services.intent_service import (
    IntentService,
    PatternIntentClassifier,
    parse_classified_intent,
    resolve_field,
)
from src.services.llm_service import LLMUnavailableError


def context_in(state_type: StateType, step: str) -> ConversationContext:
    return ConversationContext(
        user_id="admin-1",
        user_profile=UserProfile(id="admin-1", role="admin"),
        current_state=ConversationState(type=state_type, step=step, data={}),
    )


@pytest.fixture
def idle_context():
    return ConversationContext(user_id="admin-1", user_profile=UserProfile(id="admin-1", role="admin"))


class TestTopLevelRules:
    """Tests for the ordered rule list."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("create a poll about climate change", IntentType.CREATE_POLL),
            ("I want to make a new poll", IntentType.CREATE_POLL),
            ("edit my poll", IntentType.UPDATE_POLL),
            ("I need to change the options of my poll", IntentType.UPDATE_POLL),
            ("delete my poll", IntentType.DELETE_POLL),
            ("can you remove the poll about lunch?", IntentType.DELETE_POLL),
            ("I want that poll deleted", IntentType.DELETE_POLL),
            ("remove the pizza option from my poll", IntentType.UPDATE_POLL),
            ("which polls have I voted on", IntentType.LIST_VOTED_POLLS),
            ("show the latest polls", IntentType.LIST_RECENT_POLLS),
            ("show my poll analytics", IntentType.POLL_ANALYTICS),
            ("show my polls", IntentType.LIST_MY_POLLS),
            ("show active polls", IntentType.LIST_POLLS),
            ("hello", IntentType.GREETING),
            ("what can you do", IntentType.HELP),
        ],
    )
    def test_rules(self, classifier, idle_context, message, expected):
        """Should pick the first matching rule."""
        intent = classifier.classify(message, idle_context)
        assert intent.type == expected
        assert intent.confidence >= 0.9

    def test_recent_polls_count(self, classifier, idle_context):
        """Should extract the requested number of polls."""
        intent = classifier.classify("show the 5 latest polls", idle_context)
        assert intent.type == IntentType.LIST_RECENT_POLLS
        assert intent.entities["count"] == 5

    def test_unmatched_is_general(self, classifier, idle_context):
        """Should fall back to a low-confidence general intent."""
        intent = classifier.classify("the weather is lovely today", idle_context)
        assert intent.type == IntentType.GENERAL
        assert intent.confidence == pytest.approx(0.3)

    def test_bare_confirmation_without_state(self, classifier, idle_context):
        """Should treat a stray confirmation as a no-op general intent."""
        intent = classifier.classify("confirm", idle_context)
        assert intent.type == IntentType.GENERAL
        assert intent.entities["confirmation"] is True

    def test_number_without_anchor(self, classifier, idle_context):
        """Should not give meaning to a bare number without a listing anchor."""
        intent = classifier.classify("3", idle_context)
        assert intent.type == IntentType.GENERAL
        assert intent.confidence == pytest.approx(0.2)

    def test_number_with_listing_anchor(self, classifier, idle_context):
        """Should reuse the previous listing intent with the number as a limit."""
        idle_context.last_intent = Intent(type=IntentType.LIST_RECENT_POLLS, confidence=0.9)
        intent = classifier.classify("4", idle_context)
        assert intent.type == IntentType.LIST_RECENT_POLLS
        assert intent.entities["count"] == 4


class TestResetKeywords:
    """Tests for reset keyword handling."""

    @pytest.mark.parametrize("message", ["cancel", "Start over!", "never mind", "stop it"])
    def test_reset(self, classifier, message):
        """Should recognise reset keywords in any state."""
        context = context_in(StateType.POLL_CREATION, CreationStep.OPTIONS.value)
        intent = classifier.classify(message, context)
        assert intent.type == IntentType.RESET
        assert intent.confidence == 1.0

    def test_help_keyword(self, classifier, idle_context):
        """Should report which keyword triggered the reset."""
        intent = classifier.classify("help", idle_context)
        assert intent.type == IntentType.RESET
        assert intent.entities["keyword"] == "help"

    def test_longer_messages_are_not_resets(self, classifier):
        """Should not swallow ordinary requests that start with a keyword."""
        context = context_in(StateType.POLL_CREATION, CreationStep.OPTIONS.value)
        intent = classifier.classify("help me suggest options", context)
        assert intent.type == IntentType.CREATE_POLL

    @pytest.mark.parametrize(
        "message,keyword",
        [
            ("I want to cancel this", "cancel"),
            ("please stop now", "stop"),
            ("let's start over", "start over"),
            ("no, just abort the whole thing", "abort"),
        ],
    )
    def test_phrased_reset_requests(self, classifier, message, keyword):
        """Should treat phrased cancel requests as resets, even at free-text steps."""
        context = context_in(StateType.POLL_CREATION, CreationStep.TOPIC.value)
        intent = classifier.classify(message, context)
        assert intent.type == IntentType.RESET
        assert intent.entities["keyword"] == keyword

    def test_question_containing_keyword_is_not_a_reset(self, classifier):
        """Should keep poll questions that mention a keyword."""
        context = context_in(StateType.POLL_CREATION, CreationStep.TOPIC.value)
        intent = classifier.classify("Should the city stop building new roads?", context)
        assert intent.type == IntentType.CREATE_POLL


class TestStateScopedRecognition:
    """Tests for recognizers used while a flow is active."""

    def test_free_text_step_keeps_flow(self, classifier):
        """Should treat any text at the topic step as the topic."""
        context = context_in(StateType.POLL_CREATION, CreationStep.TOPIC.value)
        intent = classifier.classify("show active polls", context)
        assert intent.type == IntentType.CREATE_POLL
        assert "topic_switch" not in intent.entities

    def test_topic_switch_at_category_step(self, classifier):
        """Should switch tasks when a different request arrives at a menu step."""
        context = context_in(StateType.POLL_CREATION, CreationStep.CATEGORY.value)
        intent = classifier.classify("show active polls", context)
        assert intent.type == IntentType.LIST_POLLS
        assert intent.entities["topic_switch"] is True

    def test_decision_at_confirm_is_not_a_switch(self, classifier):
        """Should read 'edit the poll' at a confirm step as an edit decision."""
        context = context_in(StateType.POLL_CREATION, CreationStep.CONFIRM.value)
        intent = classifier.classify("edit the poll", context)
        assert intent.type == IntentType.CREATE_POLL
        assert intent.entities["decision"] == "edit"

    def test_category_entity(self, classifier):
        """Should detect the category at the category step."""
        context = context_in(StateType.POLL_CREATION, CreationStep.CATEGORY.value)
        intent = classifier.classify("something about movies", context)
        assert intent.entities["category"] == "Entertainment"

    def test_field_by_digit(self, classifier):
        """Should resolve menu digits to fields."""
        context = context_in(StateType.POLL_UPDATE, UpdateStep.SELECT_FIELD.value)
        intent = classifier.classify("2", context)
        assert intent.type == IntentType.UPDATE_POLL
        assert intent.entities["field"] == "title"
        assert intent.confidence == pytest.approx(0.95)

    def test_poll_selection_number(self, classifier):
        """Should turn a bare number into a selection at select_poll."""
        context = context_in(StateType.POLL_UPDATE, UpdateStep.SELECT_POLL.value)
        intent = classifier.classify("1", context)
        assert intent.entities["selection"] == 1


class TestResolveField:
    """Tests for field resolution at the field menu."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("1", "options"),
            ("4", "category"),
            ("change the title to Best pizza in town", "title"),
            ("extend the deadline", "end_date"),
            ("the answers", "options"),
            ("title and options", None),
            ("9", None),
        ],
    )
    def test_resolve_field(self, message, expected):
        """Should map synonyms and digits to exactly one field."""
        assert resolve_field(message) == expected


class TestIntentService:
    """Tests for the LLM classification fallback."""

    @pytest.mark.asyncio
    async def test_llm_used_for_weak_matches(self, classifier, idle_context, mock_request_queue):
        """Should accept a more confident LLM classification."""
        # Arrange
        mock_request_queue.enqueue.return_value = (
            'Sure: {"intent": "list_recent_polls", "confidence": 0.9, "count": 4}'
        )
        service = IntentService(classifier, request_queue=mock_request_queue)

        # Act
        intent = await service.recognize("anything new around here lately", idle_context)

        # Assert
        assert intent.type == IntentType.LIST_RECENT_POLLS
        assert intent.entities == {"count": 4}
        mock_request_queue.enqueue.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_llm_skipped_for_confident_matches(self, classifier, idle_context, mock_request_queue):
        """Should not call the LLM when a rule is confident."""
        service = IntentService(classifier, request_queue=mock_request_queue)
        intent = await service.recognize("show active polls", idle_context)
        assert intent.type == IntentType.LIST_POLLS
        mock_request_queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_skipped_inside_flows(self, classifier, mock_request_queue):
        """Should never ask the LLM while a flow is active."""
        service = IntentService(classifier, request_queue=mock_request_queue)
        context = context_in(StateType.POLL_CREATION, CreationStep.TOPIC.value)
        await service.recognize("hmm", context)
        mock_request_queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_skipped_for_stray_confirmation(self, classifier, idle_context, mock_request_queue):
        """Should keep stray confirmations as no-ops."""
        service = IntentService(classifier, request_queue=mock_request_queue)
        intent = await service.recognize("yes", idle_context)
        assert intent.entities.get("confirmation") is True
        mock_request_queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_failure_keeps_pattern_intent(self, classifier, idle_context, mock_request_queue):
        """Should fall back to the pattern intent when the LLM fails."""
        mock_request_queue.enqueue.side_effect = LLMUnavailableError("down")
        service = IntentService(classifier, request_queue=mock_request_queue)
        intent = await service.recognize("anything new around here lately", idle_context)
        assert intent.type == IntentType.GENERAL

    @pytest.mark.asyncio
    async def test_invalid_llm_reply_keeps_pattern_intent(self, classifier, idle_context, mock_request_queue):
        """Should ignore replies that are not valid classifications."""
        mock_request_queue.enqueue.return_value = '{"intent": "reset", "confidence": 0.99}'
        service = IntentService(classifier, request_queue=mock_request_queue)
        intent = await service.recognize("anything new around here lately", idle_context)
        assert intent.type == IntentType.GENERAL

    @pytest.mark.asyncio
    async def test_disabled_fallback(self, classifier, idle_context, mock_request_queue):
        """Should not call the LLM when the feature flag is off."""
        service = IntentService(classifier, request_queue=mock_request_queue, ai_fallback=False)
        await service.recognize("anything new around here lately", idle_context)
        mock_request_queue.enqueue.assert_not_awaited()


class TestParseClassifiedIntent:
    """Tests for parsing LLM classification replies."""

    def test_no_json(self):
        """Should reject replies without JSON."""
        with pytest.raises(ValueError):
            parse_classified_intent("list_polls")

    def test_unknown_intent(self):
        """Should reject intents outside the top-level set."""
        with pytest.raises(ValidationError):
            parse_classified_intent('{"intent": "delete_everything"}')
