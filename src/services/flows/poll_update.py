"""
Poll update flow.

select_poll -> select_field -> update_title | update_options |
update_category | update_end_date -> confirm_update

Polls are always looked up together with their owner; a poll owned by
someone else is reported exactly like a poll that does not exist.
"""

import re
from datetime import timedelta

from src import config
from src.database.supabase import DatabaseError
from src.models.domain import (
    CATEGORIES,
    ConversationContext,
    ConversationState,
    FlowResult,
    Intent,
    StateType,
    UpdateStep,
    utcnow,
)
from src.services.category_detector import detect_category
from src.services.flows.base import BaseFlowController, format_date, numbered, poll_line
from src.services.intent_service import resolve_field
from src.utils.logger import get_logger
from src.utils.parsing import (
    classify_decision,
    dedupe_case_insensitive,
    extract_uuid,
    find_duplicates,
    normalize,
    parse_end_date,
    parse_number_list,
    split_options,
    strip_label,
    truncate_title,
)
from src.utils.prompts import response_text

logger = get_logger(__name__)

_POLL_NUMBER = re.compile(r"\bpoll\s*(?:#|number|no\.?)?\s*(\d{1,3})\b", re.IGNORECASE)
_INLINE_VALUE = re.compile(
    r"\b(?:title|name|question|category|deadline|end ?date|date)\b.*?\bto\s+[\"']?(.+?)[\"']?\s*[.!]?$",
    re.IGNORECASE,
)
_FIELD_VERB = re.compile(r"\b(change|update|edit|modify|rename|extend|add|replace)\b", re.IGNORECASE)
_EXTEND_WORDS = re.compile(
    r"\b(extend|extension|longer|more time|push (it )?back|default|another week)\b", re.IGNORECASE
)

_ADD_WORDS = re.compile(r"\b(add|include|append|also|plus)\b", re.IGNORECASE)
_REPLACE_WORDS = re.compile(r"\b(replace|instead|swap|new options|change (them |it )?to)\b", re.IGNORECASE)
_NEGATED_MODE = re.compile(r"\b(?:not|don'?t|no)\s+(?:to\s+|want to\s+)?(add|replace)\b", re.IGNORECASE)
_LEADING_NO = re.compile(r"^\s*(no|nope|nah)\b", re.IGNORECASE)
_OPTION_COMMAND = re.compile(
    r"^\s*(?:please\s+)?(?:(?:also\s+)?add|include|append|"
    r"replace(?:\s+(?:them|it|all(?:\s+options)?|the\s+options))?(?:\s+with)?|"
    r"change\s+(?:them\s+|it\s+|the\s+options\s+)?to|new\s+options|options)\b\s*[:\-]?\s*",
    re.IGNORECASE,
)
_OPTION_TAIL = re.compile(r"\s+(?:to\s+(?:the|my)\s+poll|as\s+well|too)\s*[.!]*$", re.IGNORECASE)
_PRONOUNS = frozenset({"it", "that", "this", "them", "those", "these"})

_STOPWORDS = frozenset(
    "about also change could edit from have into like modify please poll polls "
    "that the their this title update want with would".split()
)

FIELD_LABELS = {
    "options": "options",
    "title": "title",
    "end_date": "end date",
    "category": "category",
}
FIELD_STEPS = {
    "options": UpdateStep.UPDATE_OPTIONS,
    "title": UpdateStep.UPDATE_TITLE,
    "end_date": UpdateStep.UPDATE_END_DATE,
    "category": UpdateStep.UPDATE_CATEGORY,
}


class PollUpdateFlow(BaseFlowController):
    """
    Lets an admin change the title, options, end date or category of one
    of their polls. Changes are buffered and applied on confirmation.
    """

    name = "poll_update"

    def __init__(
        self,
        repository,
        request_queue=None,
        min_title_length: int = config.MIN_TOPIC_LENGTH,
        max_title_length: int = config.MAX_TITLE_LENGTH,
        extension_days: int = config.END_DATE_EXTENSION_DAYS,
    ):
        super().__init__(repository, request_queue)
        self.min_title_length = min_title_length
        self.max_title_length = max_title_length
        self.extension_days = extension_days
        self._steps = {
            UpdateStep.SELECT_POLL.value: self._handle_select_poll,
            UpdateStep.SELECT_FIELD.value: self._handle_select_field,
            UpdateStep.UPDATE_TITLE.value: self._handle_title,
            UpdateStep.UPDATE_OPTIONS.value: self._handle_options,
            UpdateStep.UPDATE_CATEGORY.value: self._handle_category,
            UpdateStep.UPDATE_END_DATE.value: self._handle_end_date,
            UpdateStep.CONFIRM_UPDATE.value: self._handle_confirm,
        }

    async def handle_intent(self, intent: Intent, context: ConversationContext) -> FlowResult:
        if not context.user_profile.is_admin or not context.user_id:
            return self.end(response_text("admin_only_update"), "permission_denied", success=False)

        state = context.current_state
        try:
            if state is None or state.type != StateType.POLL_UPDATE:
                return await self._start(intent, context)

            handler = self._steps.get(state.step)
            if handler is None:
                logger.warning("unknown_update_step", step=state.step)
                return await self._start(intent, context, note="Something got mixed up, so let's start again.")
            return await handler(intent, context, state)
        except DatabaseError:
            return self.error(response_text("lookup_failure"), "persistence_failure")

    def _state(self, step: UpdateStep, data: dict) -> ConversationState:
        return ConversationState(type=StateType.POLL_UPDATE, step=step.value, data=data)

    # --- select_poll ---

    async def _start(
        self, intent: Intent, context: ConversationContext, note: str = ""
    ) -> FlowResult:
        polls = await self.repository.fetch_polls_by_owner(context.user_id)
        if not polls:
            return self.end(
                "You don't have any polls to update yet. Would you like to create one?",
                "no_polls",
            )

        listed = [{"id": p["id"], "title": p.get("title") or "Untitled poll"} for p in polls]
        text = intent.raw_text

        poll_id = intent.entities.get("poll_id") or extract_uuid(text)
        if poll_id is None:
            number = _POLL_NUMBER.search(text)
            if number and 1 <= int(number.group(1)) <= len(listed):
                poll_id = listed[int(number.group(1)) - 1]["id"]
        if poll_id is None:
            matches = _match_titles(text, listed, opening=True)
            if len(matches) == 1:
                poll_id = matches[0]["id"]

        if poll_id is not None:
            result = await self._select(poll_id, context, text)
            if result.success:
                return result

        logger.info("poll_update_started", poll_count=len(listed))
        prefix = f"{note}\n\n" if note else ""
        return self.success(
            f"{prefix}Which poll would you like to update?\n"
            + "\n".join(poll_line(i, p) for i, p in enumerate(polls, start=1))
            + "\n\nReply with the number or the title of the poll.",
            "available_polls",
            state=self._state(UpdateStep.SELECT_POLL, {"polls": listed}),
            preserve=[p["title"] for p in listed],
            polls=polls,
        )

    async def _handle_select_poll(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        listed = state.data.get("polls") or []
        text = intent.raw_text

        poll_id = intent.entities.get("poll_id") or extract_uuid(text)
        if poll_id is None:
            selection = intent.entities.get("selection")
            if selection is None:
                numbers = parse_number_list(text)
                selection = numbers[0] if numbers else None
            if selection is not None:
                if not 1 <= selection <= len(listed):
                    return self.error(
                        f"Please pick a number between 1 and {len(listed)}.",
                        "invalid_selection",
                    )
                poll_id = listed[selection - 1]["id"]

        if poll_id is None:
            matches = _match_titles(text, listed)
            if len(matches) > 1:
                return self.error(
                    "More than one of your polls matches that. Which one do you mean?\n"
                    + numbered([m["title"] for m in matches]),
                    "ambiguous_poll",
                    preserve=[m["title"] for m in matches],
                )
            if not matches:
                return self.error(
                    "I couldn't find a poll with that title among your polls. "
                    "Please reply with its number from the list.\n"
                    + numbered([p["title"] for p in listed]),
                    "poll_not_found",
                )
            poll_id = matches[0]["id"]

        return await self._select(poll_id, context, text)

    async def _select(
        self, poll_id: str, context: ConversationContext, text: str
    ) -> FlowResult:
        poll = await self.repository.fetch_poll_by_id_and_owner(poll_id, context.user_id)
        if poll is None:
            logger.info("poll_not_found_for_owner")
            return self.error(
                "I couldn't find that poll among your polls. Please choose one from your list.",
                "poll_not_found",
            )

        options = await self.repository.fetch_options(poll["id"])
        selected = {
            "poll_id": poll["id"],
            "poll_title": poll.get("title") or "Untitled poll",
            "poll_question": poll.get("question") or poll.get("title"),
            "category": poll.get("category"),
            "end_date": poll.get("end_date"),
            "current_options": [o["text"] for o in options],
        }
        logger.info("poll_selected_for_update", poll_id=poll["id"])

        # "Change the title of X to Y" may name the field in the same message
        field_name = resolve_field(text) if _FIELD_VERB.search(text) else None
        if field_name:
            return await self._choose_field(field_name, text, selected)

        return self.success(
            f'You selected "{selected["poll_title"]}". ' + response_text("field_menu"),
            "field_selection",
            state=self._state(UpdateStep.SELECT_FIELD, selected),
            preserve=[selected["poll_title"]],
        )

    # --- select_field ---

    async def _handle_select_field(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        field_name = intent.entities.get("field") or resolve_field(intent.raw_text)
        if field_name is None:
            return self.error(
                "Sorry, I didn't catch which part to change. " + response_text("field_menu"),
                "field_selection",
                error="ambiguous_field",
                preserve=[state.data["poll_title"]],
            )
        return await self._choose_field(field_name, intent.raw_text, dict(state.data))

    async def _choose_field(self, field_name: str, text: str, data: dict) -> FlowResult:
        data.pop("pending", None)
        data.pop("mode_hint", None)
        data.pop("pending_items", None)
        inline = _inline_value(text)

        if field_name == "title":
            if inline and len(inline) >= self.min_title_length:
                return self._preview(data, {"field": "title", "value": inline})
            return self.success(
                f'The current title is "{data["poll_title"]}". What should the new title be?',
                "ask_title",
                state=self._state(UpdateStep.UPDATE_TITLE, data),
            )

        if field_name == "category":
            category = detect_category(inline) if inline else None
            if category:
                return self._preview(data, {"field": "category", "value": category})
            return self.success(
                f"The current category is {data.get('category') or 'not set'}. "
                + response_text("category_menu"),
                "ask_category",
                state=self._state(UpdateStep.UPDATE_CATEGORY, data),
            )

        if field_name == "end_date":
            change = self._end_date_change(text)
            if change:
                return self._preview(data, change)
            return self.success(
                f"The poll currently ends on {format_date(data.get('end_date'))}. "
                "When should it end? You can give a date (2025-12-31), a duration "
                f'("in 10 days"), or say "extend" to move it to {self.extension_days} days from now.',
                "ask_end_date",
                state=self._state(UpdateStep.UPDATE_END_DATE, data),
            )

        current = data.get("current_options") or []
        listing = numbered(current) if current else "(no options yet)"
        return self.success(
            f"Current options:\n{listing}\n\n"
            'Say "add X, Y" to add options, or send a full list like "X, Y, Z" to replace them.',
            "ask_options",
            state=self._state(UpdateStep.UPDATE_OPTIONS, data),
            preserve=current,
        )

    # --- field steps ---

    async def _handle_title(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        title = strip_label(intent.raw_text, "new title", "title").strip().strip("\"'")
        if len(title) < self.min_title_length:
            return self.error(
                f"Titles need at least {self.min_title_length} characters. Please send a longer title.",
                "invalid_title",
            )
        return self._preview(dict(state.data), {"field": "title", "value": title})

    async def _handle_category(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        category = intent.entities.get("category")
        numbers = parse_number_list(intent.raw_text)
        if not category and numbers and len(numbers) == 1 and 1 <= numbers[0] <= len(CATEGORIES):
            category = CATEGORIES[numbers[0] - 1]
        category = category or detect_category(intent.raw_text)
        if not category:
            return self.error(
                "I didn't recognise that category. " + response_text("category_menu"),
                "invalid_category",
            )
        return self._preview(dict(state.data), {"field": "category", "value": category})

    async def _handle_end_date(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        change = self._end_date_change(intent.raw_text)
        if change is None:
            return self.error(
                'Please give a date like 2025-12-31, a duration like "in 10 days", '
                f'or say "extend" to end it {self.extension_days} days from now.',
                "invalid_end_date",
            )
        if change.get("error"):
            return self.error(change["error"], "invalid_end_date")
        return self._preview(dict(state.data), change)

    def _end_date_change(self, text: str) -> dict | None:
        now = utcnow()
        end_date = parse_end_date(text, now=now)
        if end_date is not None:
            if end_date <= now:
                return {"error": "The end date must be in the future. Please choose a later date."}
            return {"field": "end_date", "value": end_date.isoformat(), "is_default": False}
        if _EXTEND_WORDS.search(text):
            default = now + timedelta(days=self.extension_days)
            return {"field": "end_date", "value": default.isoformat(), "is_default": True}
        return None

    async def _handle_options(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        data = dict(state.data)
        text = intent.raw_text
        current = data.get("current_options") or []

        negated = {m.group(1).lower() for m in _NEGATED_MODE.finditer(text)}
        mentions_mode = bool(_ADD_WORDS.search(text) or _REPLACE_WORDS.search(text))
        if negated or (_LEADING_NO.match(text) and mentions_mode):
            mentioned = set()
            if _ADD_WORDS.search(text):
                mentioned.add("add")
            if _REPLACE_WORDS.search(text):
                mentioned.add("replace")
            hint = mentioned - negated
            data["mode_hint"] = hint.pop() if len(hint) == 1 else None
            if data["mode_hint"] == "add":
                question = "Got it, you want to add options. Which options should I add?"
            elif data["mode_hint"] == "replace":
                question = "Got it, you want to replace the options. What should the new options be?"
            else:
                question = (
                    "Sorry for the confusion. Do you want to add options to the current ones, "
                    'or replace all of them? For example "add X, Y" or "replace with X, Y".'
                )
            return self.success(
                question,
                "clarify_options",
                state=self._state(UpdateStep.UPDATE_OPTIONS, data),
            )

        if _ADD_WORDS.search(text):
            mode = "add"
        elif _REPLACE_WORDS.search(text):
            mode = "replace"
        else:
            mode = data.get("mode_hint")

        items = [
            item
            for item in split_options(_OPTION_TAIL.sub("", _OPTION_COMMAND.sub("", text)), allow_and=True)
            if item.lower() not in _PRONOUNS
        ]
        if not items:
            items = data.get("pending_items") or []
        if not items:
            return self.error(
                "Which options should I use? Please send them separated by commas.",
                "too_few_options",
            )

        if mode is None and len(items) == 1:
            data["pending_items"] = items
            return self.success(
                f'Do you want to add "{items[0]}" to the current options, or replace all options with it?',
                "clarify_options",
                state=self._state(UpdateStep.UPDATE_OPTIONS, data),
            )

        if mode == "add":
            final = dedupe_case_insensitive([*current, *items])
            added = final[len(dedupe_case_insensitive(current)):]
            if not added:
                return self.error(
                    "Those options are already in the poll. Which new options should I add?",
                    "duplicate_options",
                )
            if len(final) < 2:
                return self.error("A poll needs at least 2 options. Please add more.", "too_few_options")
            change = {"field": "options", "mode": "add", "value": final, "added": added}
        else:
            if len(items) < 2:
                return self.error(
                    f'I only see one option: "{items[0]}". A poll needs at least 2 options.',
                    "too_few_options",
                )
            duplicates = find_duplicates(items)
            if duplicates:
                return self.error(
                    "Each option must be different. These appear more than once: "
                    + ", ".join(f'"{d}"' for d in duplicates),
                    "duplicate_options",
                    duplicates=duplicates,
                )
            change = {"field": "options", "mode": "replace", "value": items}

        data.pop("mode_hint", None)
        data.pop("pending_items", None)
        return self._preview(data, change)

    # --- confirm_update ---

    def _preview(self, data: dict, change: dict) -> FlowResult:
        data = {**data, "pending": change}
        title = data["poll_title"]
        field_name = change["field"]

        if field_name == "options":
            verb = "add " + ", ".join(f'"{o}"' for o in change["added"]) + " to" if change["mode"] == "add" else "replace the options of"
            body = f"I'll {verb} \"{title}\".\n\nUpdated options will be:\n{numbered(change['value'])}"
            preserve = [title, *change["value"]]
        elif field_name == "end_date":
            new_date = format_date(change["value"])
            note = f" (default: {self.extension_days} days from now)" if change.get("is_default") else ""
            body = (
                f'I\'ll change the end date of "{title}" from '
                f"{format_date(data.get('end_date'))} to {new_date}{note}."
            )
            preserve = [title, new_date]
        elif field_name == "title":
            body = f'I\'ll rename "{title}" to "{change["value"]}".'
            preserve = [title, change["value"]]
        else:
            body = (
                f'I\'ll change the category of "{title}" from '
                f"{data.get('category') or 'not set'} to {change['value']}."
            )
            preserve = [title, change["value"]]

        return self.success(
            body + '\n\nReply "yes" to apply this change, "edit" to pick another field, or "cancel" to discard it.',
            "update_preview",
            state=self._state(UpdateStep.CONFIRM_UPDATE, data),
            preserve=preserve,
            change=change,
            poll_id=data["poll_id"],
        )

    async def _handle_confirm(
        self, intent: Intent, context: ConversationContext, state: ConversationState
    ) -> FlowResult:
        decision = intent.entities.get("decision") or classify_decision(intent.raw_text)
        data = dict(state.data)

        if decision == "cancel":
            logger.info("poll_update_cancelled", poll_id=data.get("poll_id"))
            return self.end("Update cancelled. No changes were made.", "update_cancelled")

        if decision == "edit":
            data.pop("pending", None)
            return self.success(
                response_text("field_menu"),
                "field_selection",
                state=self._state(UpdateStep.SELECT_FIELD, data),
                preserve=[data["poll_title"]],
            )

        if decision != "confirm" or not data.get("pending"):
            if not data.get("pending"):
                return self.error(response_text("field_menu"), "field_selection")
            preview = self._preview(data, data["pending"]).data
            return self.error(
                preview["message"],
                "update_preview",
                error="awaiting_confirmation",
                preserve=preview["preserve"],
            )

        return await self._apply(context, data)

    async def _apply(self, context: ConversationContext, data: dict) -> FlowResult:
        change = data["pending"]
        poll_id = data["poll_id"]

        poll = await self.repository.fetch_poll_by_id_and_owner(poll_id, context.user_id)
        if poll is None:
            return self.end(
                "I couldn't find that poll among your polls anymore.", "poll_not_found", success=False
            )

        try:
            if change["field"] == "options":
                await self._replace_options(poll_id, data.get("current_options") or [], change["value"])
            else:
                fields = _column_changes(change, self.max_title_length)
                updated = await self.repository.update_poll_fields(poll_id, context.user_id, fields)
                if updated is None:
                    return self.end(
                        "I couldn't find that poll among your polls anymore.",
                        "poll_not_found",
                        success=False,
                    )
        except DatabaseError:
            return self.error(response_text("persistence_failure"), "persistence_failure")

        logger.info("poll_updated", poll_id=poll_id, field=change["field"], mode=change.get("mode"))
        label = FIELD_LABELS[change["field"]]
        if change["field"] == "options":
            summary = f"The options are now:\n{numbered(change['value'])}"
            preserve = [data["poll_title"], *change["value"]]
        else:
            shown = format_date(change["value"]) if change["field"] == "end_date" else change["value"]
            summary = f"The {label} is now {shown}."
            preserve = [data["poll_title"], str(shown)]
        return self.end(
            f'Done! "{data["poll_title"]}" has been updated. {summary}',
            "poll_updated",
            preserve=preserve,
            poll_id=poll_id,
            change=change,
        )

    async def _replace_options(self, poll_id: str, previous: list[str], options: list[str]) -> None:
        """Swaps the option set, putting the previous options back if the insert fails."""
        await self.repository.delete_options_by_poll(poll_id)
        try:
            await self.repository.insert_options(poll_id, options)
        except DatabaseError:
            if previous:
                try:
                    await self.repository.insert_options(poll_id, previous)
                    logger.warning("poll_options_restored", poll_id=poll_id)
                except DatabaseError:
                    logger.error("poll_options_restore_failed", exc_info=True, poll_id=poll_id)
            raise


def _column_changes(change: dict, max_title_length: int) -> dict:
    if change["field"] == "title":
        return {
            "title": truncate_title(change["value"], max_title_length),
            "question": change["value"],
        }
    if change["field"] == "end_date":
        return {"end_date": change["value"]}
    return {"category": change["value"]}


def _inline_value(text: str) -> str | None:
    match = _INLINE_VALUE.search(text)
    return match.group(1).strip() if match else None


def _title_words(text: str) -> set[str]:
    return {
        w for w in re.findall(r"[a-z0-9]+", normalize(text)) if len(w) > 3 and w not in _STOPWORDS
    }


def _match_titles(text: str, polls: list[dict], opening: bool = False) -> list[dict]:
    """
    Fuzzy title match: exact, then containment, then best keyword overlap.
    Opening requests only use keyword overlap, since they hold other words.
    """
    needle = normalize(text).strip(" \"'?.!")
    if not needle:
        return []

    if not opening:
        exact = [p for p in polls if normalize(p["title"]) == needle]
        if exact:
            return exact
        contained = [
            p for p in polls if needle in normalize(p["title"]) or normalize(p["title"]) in needle
        ]
        if contained:
            return contained

    words = _title_words(needle)
    if not words:
        return []
    scored = [(len(words & _title_words(p["title"])), p) for p in polls]
    best = max(score for score, _ in scored)
    if best == 0:
        return []
    return [p for score, p in scored if score == best]
