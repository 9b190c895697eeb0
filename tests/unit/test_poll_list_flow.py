"""
Unit tests for PollListFlow.
"""

import pytest
from unittest.mock import AsyncMock

from src.database.supabase import DatabaseError
from src.models.domain import ConversationContext, Intent, IntentType, UserProfile
from src.services.flows.poll_list import MAX_LIST_COUNT, PollListFlow


def list_intent(intent_type: IntentType, **entities) -> Intent:
    return Intent(type=intent_type, confidence=0.9, entities=entities, raw_text="")


@pytest.fixture
def flow(repository):
    return PollListFlow(repository)


class TestActivePolls:
    """Tests for the active poll listing."""

    @pytest.mark.asyncio
    async def test_lists_only_active_polls(self, flow, admin_context, seed_poll):
        """Should list active polls with their titles preserved."""
        await seed_poll("admin-1", "Best programming language", ["Python", "Rust"])
        await seed_poll("admin-2", "Closed poll", ["A", "B"], status="closed")

        result = await flow.handle_intent(list_intent(IntentType.LIST_POLLS), admin_context)

        assert result.should_end_flow
        assert result.data["type"] == "poll_list"
        assert [p["title"] for p in result.data["polls"]] == ["Best programming language"]
        assert result.data["preserve"] == ["Best programming language"]
        assert "1. Best programming language (Other, active, ends 2030-01-01)" in result.data["message"]

    @pytest.mark.asyncio
    async def test_empty_listing(self, flow, user_context):
        """Should report an empty list and end the flow."""
        result = await flow.handle_intent(list_intent(IntentType.LIST_POLLS), user_context)

        assert result.should_end_flow
        assert result.data["type"] == "empty_poll_list"
        assert result.data["polls"] == []

    @pytest.mark.asyncio
    async def test_owner_is_not_exposed(self, flow, user_context, seed_poll):
        """Should not include the owner id in listed polls."""
        await seed_poll("admin-1", "Best programming language", ["Python", "Rust"])

        result = await flow.handle_intent(list_intent(IntentType.LIST_POLLS), user_context)

        assert "user_id" not in result.data["polls"][0]

    @pytest.mark.asyncio
    async def test_lookup_failure(self, flow, user_context, repository):
        """Should turn a database error into a terminal lookup failure."""
        repository.fetch_active_polls = AsyncMock(side_effect=DatabaseError("down"))

        result = await flow.handle_intent(list_intent(IntentType.LIST_POLLS), user_context)

        assert not result.success
        assert result.should_end_flow
        assert result.data["type"] == "persistence_failure"
        assert "couldn't load the polls" in result.data["message"]


class TestMyPolls:
    """Tests for the admin's own poll listing."""

    @pytest.mark.asyncio
    async def test_admin_sees_own_polls(self, flow, admin_context, seed_poll):
        """Should list only polls owned by the caller."""
        await seed_poll("admin-1", "Mine", ["A", "B"])
        await seed_poll("admin-2", "Theirs", ["A", "B"])

        result = await flow.handle_intent(list_intent(IntentType.LIST_MY_POLLS), admin_context)

        assert [p["title"] for p in result.data["polls"]] == ["Mine"]

    @pytest.mark.asyncio
    async def test_user_is_refused(self, flow, user_context):
        """Should refuse regular users."""
        result = await flow.handle_intent(list_intent(IntentType.LIST_MY_POLLS), user_context)

        assert not result.success
        assert result.data["type"] == "permission_denied"


class TestRecentPolls:
    """Tests for the most recent poll listing."""

    async def seed_three(self, seed_poll):
        for day, title in enumerate(["First poll", "Second poll", "Third poll"], start=1):
            await seed_poll("admin-1", title, ["A", "B"], created_at=f"2025-05-0{day}T10:00:00+00:00")

    @pytest.mark.asyncio
    async def test_default_count(self, repository, user_context, seed_poll):
        """Should use the configured default count, newest first."""
        await self.seed_three(seed_poll)
        flow = PollListFlow(repository, recent_default=2)

        result = await flow.handle_intent(list_intent(IntentType.LIST_RECENT_POLLS), user_context)

        assert [p["title"] for p in result.data["polls"]] == ["Third poll", "Second poll"]
        assert result.data["message"].startswith("Here are the 2 most recent polls:")

    @pytest.mark.asyncio
    async def test_explicit_count(self, flow, user_context, seed_poll):
        """Should honour a count given in the request."""
        await self.seed_three(seed_poll)

        result = await flow.handle_intent(
            list_intent(IntentType.LIST_RECENT_POLLS, count=1), user_context
        )

        assert [p["title"] for p in result.data["polls"]] == ["Third poll"]

    @pytest.mark.asyncio
    async def test_count_is_clamped(self, flow, repository, user_context):
        """Should never ask the repository for more than the maximum."""
        repository.fetch_recent_polls = AsyncMock(return_value=[])

        await flow.handle_intent(list_intent(IntentType.LIST_RECENT_POLLS, count=500), user_context)

        repository.fetch_recent_polls.assert_awaited_once_with(MAX_LIST_COUNT)


class TestVotedPolls:
    """Tests for the polls a user voted on."""

    @pytest.mark.asyncio
    async def test_lists_voted_polls(self, flow, repository, user_context, seed_poll):
        """Should list polls the caller voted on."""
        voted = await seed_poll("admin-1", "Favourite season", ["Summer", "Winter"])
        await seed_poll("admin-1", "Not voted", ["A", "B"])
        repository.add_vote(voted["id"], "user-1")

        result = await flow.handle_intent(list_intent(IntentType.LIST_VOTED_POLLS), user_context)

        assert [p["title"] for p in result.data["polls"]] == ["Favourite season"]

    @pytest.mark.asyncio
    async def test_anonymous_must_sign_in(self, flow):
        """Should ask anonymous users to sign in."""
        context = ConversationContext(user_id=None, user_profile=UserProfile())

        result = await flow.handle_intent(list_intent(IntentType.LIST_VOTED_POLLS), context)

        assert result.data["type"] == "sign_in_required"
        assert result.should_end_flow


class TestAnalytics:
    """Tests for per-admin analytics."""

    @pytest.mark.asyncio
    async def test_summary(self, flow, repository, admin_context, seed_poll):
        """Should aggregate votes and active polls for the caller only."""
        first = await seed_poll("admin-1", "Favourite season", ["Summer", "Winter"])
        await seed_poll("admin-1", "Old poll", ["A", "B", "C"], status="closed")
        foreign = await seed_poll("admin-2", "Someone else's poll", ["A", "B"])
        repository.add_vote(first["id"], "user-1")
        repository.add_vote(first["id"], "user-2")
        repository.add_vote(foreign["id"], "user-1")

        result = await flow.handle_intent(list_intent(IntentType.POLL_ANALYTICS), admin_context)

        assert result.data["type"] == "poll_analytics"
        assert result.data["summary"] == {"total_polls": 2, "active_polls": 1, "total_votes": 2}
        assert "Favourite season: 2 votes, 2 options, active" in result.data["message"]

    @pytest.mark.asyncio
    async def test_user_is_refused(self, flow, user_context):
        """Should refuse regular users."""
        result = await flow.handle_intent(list_intent(IntentType.POLL_ANALYTICS), user_context)

        assert result.data["type"] == "permission_denied"
        assert result.data["message"] == "Sorry, only admin users can view poll analytics."
