"""
Poll creation flow: category -> topic -> options -> confirm.
The poll and its options are written only after an explicit confirmation.
"""

import re
from datetime import timedelta

from src import config
from src.database.supabase import DatabaseError
from src.models.domain import (
    CATEGORIES,
    ConversationContext,
    ConversationState,
    CreationStep,
    FlowResult,
    Intent,
    StateType,
    utcnow,
)
from src.services.category_detector import detect_category, match_category_name
from src.services.flows.base import BaseFlowController, numbered
from src.utils.logger import get_logger
from src.utils.parsing import (
    classify_decision,
    find_duplicates,
    is_suggestion_request,
    parse_number_list,
    split_options,
    strip_label,
    truncate_title,
)
from src.utils.prompts import render_prompt, response_text

logger = get_logger(__name__)

_SUBJECT_PATTERN = re.compile(r"\b(?:about|on|regarding|for)\s+(.+?)[\s.!?]*$", re.IGNORECASE)


class PollCreationFlow(BaseFlowController):
    """
    Collects category, question and options, then creates the poll.
    Only admins may create polls.
    """

    name = "poll_creation"

    def __init__(
        self,
        repository,
        request_queue=None,
        min_topic_length: int = config.MIN_TOPIC_LENGTH,
        max_title_length: int = config.MAX_TITLE_LENGTH,
        poll_duration_days: int = config.END_DATE_EXTENSION_DAYS,
    ):
        super().__init__(repository, request_queue)
        self.min_topic_length = min_topic_length
        self.max_title_length = max_title_length
        self.poll_duration_days = poll_duration_days
        self._steps = {
            CreationStep.CATEGORY.value: self._handle_category,
            CreationStep.TOPIC.value: self._handle_topic,
            CreationStep.OPTIONS.value: self._handle_options,
            CreationStep.CONFIRM.value: self._handle_confirm,
        }

    async def handle_intent(self, intent: Intent, context: ConversationContext) -> FlowResult:
        if not context.user_profile.is_admin or not context.user_id:
            return self.end(response_text("admin_only_create"), "permission_denied", success=False)

        state = context.current_state
        if state is None or state.type != StateType.POLL_CREATION:
            return await self._start(intent)

        handler = self._steps.get(state.step)
        if handler is None:
            logger.warning("unknown_creation_step", step=state.step)
            return self.error(
                "Something got mixed up, so let's start again.\n\n" + response_text("category_menu"),
                "invalid_step",
                state=self._state(CreationStep.CATEGORY, {}),
            )
        return await handler(intent, context, state)

    def _state(self, step: CreationStep, data: dict) -> ConversationState:
        return ConversationState(type=StateType.POLL_CREATION, step=step.value, data=data)

    async def _start(self, intent: Intent) -> FlowResult:
        text = intent.raw_text
        subject_match = _SUBJECT_PATTERN.search(text)
        subject = subject_match.group(1).strip() if subject_match else ""
        category = intent.entities.get("category") or detect_category(text)

        logger.info("poll_creation_started", category=category, has_subject=bool(subject))
        data = {"subject": subject} if subject else {}
        if category:
            data["category"] = category
            return self.success(
                self._topic_prompt(category, subject),
                "ask_topic",
                state=self._state(CreationStep.TOPIC, data),
            )
        return self.success(
            "Let's create a poll! " + response_text("category_menu"),
            "ask_category",
            state=self._state(CreationStep.CATEGORY, data),
        )

    def _topic_prompt(self, category: str, subject: str) -> str:
        about = f" about {subject}" if subject else ""
        return (
            f"Great, a {category} poll{about}. What question should the poll ask?\n"
            "You can type it directly, or ask me for suggestions."
        )

    # --- category ---

    async def _handle_category(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        text = intent.raw_text
        category = intent.entities.get("category")

        numbers = intent.entities.get("selection") or parse_number_list(text)
        if not category and numbers and len(numbers) == 1 and 1 <= numbers[0] <= len(CATEGORIES):
            category = CATEGORIES[numbers[0] - 1]

        if not category:
            category = detect_category(text)

        if not category and text.strip():
            reply = await self.ask_llm(render_prompt("category", message=text), "category")
            category = match_category_name(reply) if reply else None

        if not category:
            category = "Other"

        data = {**state.data, "category": category}
        return self.success(
            self._topic_prompt(category, data.get("subject", "")),
            "ask_topic",
            state=self._state(CreationStep.TOPIC, data),
        )

    # --- topic ---

    async def _handle_topic(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        text = strip_label(intent.raw_text, "poll question", "question", "topic")
        suggestions = state.data.get("suggested_topics") or []

        numbers = parse_number_list(text)
        if numbers and suggestions:
            if len(numbers) != 1 or not 1 <= numbers[0] <= len(suggestions):
                return self.error(
                    f"Please pick a number between 1 and {len(suggestions)}, or type your own question.",
                    "invalid_selection",
                )
            text = suggestions[numbers[0] - 1]
        elif is_suggestion_request(text):
            return await self._suggest_topics(state)

        topic = text.strip().strip("\"'")
        if len(topic) < self.min_topic_length:
            return self.error(
                f"That question is a bit short. Please write a poll question of at least "
                f"{self.min_topic_length} characters, or ask me for suggestions.",
                "invalid_topic",
            )

        data = {
            **state.data,
            "topic": topic,
            "title": truncate_title(topic, self.max_title_length),
        }
        data.pop("suggested_topics", None)
        return self.success(
            f'Your question: "{topic}"\n\n'
            "Now give me the answer options, separated by commas "
            "(for example: Option A, Option B, Option C). "
            "You can also ask me to suggest some.",
            "ask_options",
            state=self._state(CreationStep.OPTIONS, data),
        )

    async def _suggest_topics(self, state: ConversationState) -> FlowResult:
        category = state.data.get("category", "Other")
        subject = state.data.get("subject") or category
        reply = await self.ask_llm(
            render_prompt("topic_suggestions", count=5, category=category, subject=subject),
            "topic_suggestions",
        )
        suggestions = _parse_suggestions(reply, min_length=self.min_topic_length)[:5]
        if len(suggestions) < 3:
            suggestions = _fallback_topics(subject)

        return self.success(
            f"Here are some question ideas:\n{numbered(suggestions)}\n\n"
            "Reply with a number to pick one, or type your own question.",
            "topic_suggestions",
            state=self._state(CreationStep.TOPIC, {**state.data, "suggested_topics": suggestions}),
            preserve=suggestions,
            suggestions=suggestions,
        )

    # --- options ---

    async def _handle_options(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        text = strip_label(intent.raw_text, "options", "choices")
        suggestions = state.data.get("suggested_options") or []

        numbers = parse_number_list(text)
        if numbers and suggestions:
            if any(not 1 <= n <= len(suggestions) for n in numbers):
                return self.error(
                    f"Please use numbers between 1 and {len(suggestions)}.",
                    "invalid_selection",
                )
            options = [suggestions[n - 1] for n in numbers]
        else:
            options = split_options(text)
            if len(options) < 2 and is_suggestion_request(text):
                return await self._suggest_options(state)

        if len(options) < 2:
            return self.error(
                "A poll needs at least 2 options. Please send them separated by commas, "
                "for example: Yes, No, Maybe.",
                "too_few_options",
            )

        duplicates = find_duplicates(options)
        if duplicates:
            return self.error(
                "Each option must be different. These appear more than once: "
                + ", ".join(f'"{d}"' for d in duplicates)
                + ". Please send the options again.",
                "duplicate_options",
                duplicates=duplicates,
            )

        data = {**state.data, "options": options}
        data.pop("suggested_options", None)
        return self.success(
            self._preview(data),
            "creation_preview",
            state=self._state(CreationStep.CONFIRM, data),
            preserve=[data["title"], *options],
            poll=self._preview_payload(data),
        )

    async def _suggest_options(self, state: ConversationState) -> FlowResult:
        question = state.data.get("topic", "")
        reply = await self.ask_llm(
            render_prompt(
                "option_suggestions",
                count=4,
                question=question,
                category=state.data.get("category", "Other"),
            ),
            "option_suggestions",
        )
        suggestions = _parse_suggestions(reply)[:6]
        if len(suggestions) < 2 or find_duplicates(suggestions):
            suggestions = ["Yes", "No", "Not sure"]

        return self.success(
            f"Here are some options you could use:\n{numbered(suggestions)}\n\n"
            'Reply with the numbers you want (for example "1, 2, 3") or type your own options.',
            "option_suggestions",
            state=self._state(CreationStep.OPTIONS, {**state.data, "suggested_options": suggestions}),
            preserve=suggestions,
            suggestions=suggestions,
        )

    def _preview(self, data: dict) -> str:
        return (
            "Here's your poll:\n\n"
            f"Title: {data['title']}\n"
            f"Question: {data['topic']}\n"
            f"Category: {data['category']}\n"
            f"Options:\n{numbered(data['options'])}\n"
            f"Ends: in {self.poll_duration_days} days\n\n"
            'Reply "confirm" to create it, "edit" to start over, or "cancel" to discard it.'
        )

    @staticmethod
    def _preview_payload(data: dict) -> dict:
        return {
            "title": data["title"],
            "question": data["topic"],
            "category": data["category"],
            "options": list(data["options"]),
        }

    # --- confirm ---

    async def _handle_confirm(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        decision = intent.entities.get("decision") or classify_decision(intent.raw_text)

        if decision == "cancel":
            logger.info("poll_creation_cancelled")
            return self.end(
                "Poll creation cancelled. How else can I help you?", "creation_cancelled"
            )

        if decision == "edit":
            return self.success(
                "Let's edit your poll. " + response_text("category_menu"),
                "ask_category",
                state=self._state(CreationStep.CATEGORY, dict(state.data)),
            )

        if decision != "confirm":
            return self.error(
                self._preview(state.data),
                "creation_preview",
                error="awaiting_confirmation",
                preserve=[state.data["title"], *state.data["options"]],
            )

        return await self._create_poll(context, state)

    async def _create_poll(
        self, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        data = state.data
        poll_row = {
            "user_id": context.user_id,
            "title": data["title"],
            "question": data["topic"],
            "category": data["category"],
            "end_date": (utcnow() + timedelta(days=self.poll_duration_days)).isoformat(),
            "status": "active",
        }

        try:
            poll = await self.repository.insert_poll(poll_row)
        except DatabaseError:
            return self.error(response_text("persistence_failure"), "persistence_failure")

        try:
            await self.repository.insert_options(poll["id"], data["options"])
        except DatabaseError:
            await self._delete_orphan(poll["id"])
            return self.error(response_text("persistence_failure"), "persistence_failure")

        logger.info(
            "poll_created",
            poll_id=poll["id"],
            category=data["category"],
            option_count=len(data["options"]),
        )
        return self.end(
            f'Your poll "{data["title"]}" has been created with {len(data["options"])} options '
            f"and is open for {self.poll_duration_days} days.",
            "poll_created",
            preserve=[data["title"]],
            poll_id=poll["id"],
            poll=self._preview_payload(data),
        )

    async def _delete_orphan(self, poll_id: str) -> None:
        try:
            await self.repository.delete_poll(poll_id)
            logger.warning("orphan_poll_deleted", poll_id=poll_id)
        except DatabaseError:
            logger.error("orphan_poll_delete_failed", exc_info=True, poll_id=poll_id)


def _parse_suggestions(reply: str | None, min_length: int = 1) -> list[str]:
    if not reply:
        return []
    items = []
    for line in reply.splitlines():
        cleaned = re.sub(r"^\s*(?:[-*•]\s*|\d+[.)]\s*)", "", line).strip().strip("\"'")
        if len(cleaned) >= min_length and cleaned.casefold() not in {i.casefold() for i in items}:
            items.append(cleaned)
    return items


def _fallback_topics(subject: str) -> list[str]:
    subject = subject.strip() or "this topic"
    return [
        f"What is your favorite {subject}?",
        f"How important is {subject} to you?",
        f"Which {subject} would you recommend to a friend?",
    ]
