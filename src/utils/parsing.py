"""
Text helpers shared by the intent classifier and the flow controllers.
All functions are pure and deterministic.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Literal

Decision = Literal["confirm", "cancel", "edit"]

_LEADING_CONFIRM = re.compile(
    r"^\s*(yes|yeah|yep|yup|sure|ok|okay|confirm(ed)?|looks good|sounds good|"
    r"looks great|go ahead|perfect|correct|that works|do it|proceed|"
    r"(create|save|apply|submit|update) it)\b",
    re.IGNORECASE,
)
_LEADING_CANCEL = re.compile(
    r"^\s*(no|nope|nah|cancel|abort|discard|don'?t|do not|never ?mind|forget it|stop)\b",
    re.IGNORECASE,
)
_CANCEL_PATTERN = re.compile(
    r"\b(cancel|abort|discard|don'?t|do not|never ?mind|forget it)\b",
    re.IGNORECASE,
)
_EDIT_PATTERN = re.compile(
    r"\b(edit|change|modify|go back|start again|redo|fix)\b", re.IGNORECASE
)
_CONFIRM_PATTERN = re.compile(
    r"\b(confirm|confirmed|yes|yeah|yep|yup|sure|ok|okay|go ahead|sounds good|"
    r"looks good|that works|proceed|create( it| the poll| poll)?|do it|"
    r"save( it)?|submit|update( it)?|apply( it)?|correct|perfect)\b",
    re.IGNORECASE,
)
_BUT = re.compile(r"\bbut\b", re.IGNORECASE)

# A request must name what to suggest, so "which movie would you suggest?" stays a question
_SUGGESTION_TARGETS = r"(ideas?|polls?|suggestions?|questions?|topics?|options?|choices?|examples?)"
_SUGGESTION_PATTERN = re.compile(
    rf"\b(suggest|recommend|propose|give me|come up with|think of)\b.*\b{_SUGGESTION_TARGETS}\b"
    rf"|\b{_SUGGESTION_TARGETS}\b.*\b(suggest|recommend|propose)\b"
    r"|\b(any|some|more|no)\s+(ideas?|suggestions)\b"
    r"|^\s*(please\s+)?(suggest(\s+(some|one|a few|something))?|ideas|i'?m not sure|not sure|"
    r"you (choose|pick|decide)|surprise me)\s*[.!?]*$",
    re.IGNORECASE,
)

_NUMBER_LIST_PATTERN = re.compile(r"^\s*#?\d+(\s*(,|and|&|\s)\s*#?\d+)*\s*\.?\s*$")

_UUID_PATTERN = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)

_RELATIVE_DATE_PATTERN = re.compile(
    r"\b(?:in|for|by|add|extend(?: it)?(?: by)?)?\s*(\d{1,3})\s*(day|days|week|weeks)\b",
    re.IGNORECASE,
)
_ISO_DATE_PATTERN = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")


def classify_decision(text: str) -> Decision | None:
    """
    Maps a reply at a confirmation step to a decision.

    The opening words decide first: "looks good, no changes needed" is a
    confirmation and "no, don't create it" a cancellation. An affirmative
    followed by "but" asks for changes. Only replies without a leading
    decision word are searched for cancel, edit and confirm words, in
    that order.

    Args:
        text: Raw user reply

    Returns:
        "cancel", "edit", "confirm", or None when the reply is not a decision
    """
    if _LEADING_CONFIRM.match(text):
        return "edit" if _BUT.search(text) else "confirm"
    if _LEADING_CANCEL.match(text):
        return "cancel"
    if _CANCEL_PATTERN.search(text):
        return "cancel"
    if _EDIT_PATTERN.search(text):
        return "edit"
    if _CONFIRM_PATTERN.search(text):
        return "confirm"
    return None


def is_confirmation(text: str) -> bool:
    """True when the whole reply is a short affirmative."""
    return len(text.split()) <= 4 and classify_decision(text) == "confirm"


def is_suggestion_request(text: str) -> bool:
    """True when the user asks the bot to propose topics or options."""
    return bool(_SUGGESTION_PATTERN.search(text))


def strip_label(text: str, *labels: str) -> str:
    """
    Removes a leading "label:" marker such as "options:" or "topic:".

    Args:
        text: Raw user text
        *labels: Labels to strip, case-insensitive

    Returns:
        Text without the marker, trimmed
    """
    cleaned = text.strip()
    for label in labels:
        match = re.match(rf"^\s*{re.escape(label)}\s*[:\-]\s*", cleaned, re.IGNORECASE)
        if match:
            return cleaned[match.end():].strip()
    return cleaned


def split_options(text: str, allow_and: bool = False) -> list[str]:
    """
    Splits a free-text option list.

    Delimiters are tried in order: commas, asterisks, newlines and,
    when ``allow_and`` is set, the word "and". A text without any
    delimiter is a single option.

    Args:
        text: Option text such as "Python, Rust, Go"
        allow_and: Also split "Mumbai and Delhi"

    Returns:
        Trimmed, non-empty option strings in the order supplied
    """
    if "," in text:
        parts = re.split(r",|\band\b(?=[^,]*$)", text) if allow_and else text.split(",")
    elif "*" in text:
        parts = text.split("*")
    elif "\n" in text:
        parts = text.split("\n")
    elif allow_and and re.search(r"\band\b", text, re.IGNORECASE):
        parts = re.split(r"\band\b", text, flags=re.IGNORECASE)
    else:
        parts = [text]

    options = []
    for part in parts:
        cleaned = re.sub(r"^\s*(?:[-•]\s*|\d+[.)]\s+)", "", part).strip().strip(".\"'")
        if cleaned:
            options.append(cleaned)
    return options


def dedupe_case_insensitive(items: list[str]) -> list[str]:
    """Order-preserving de-duplication; the first spelling seen wins."""
    seen: set[str] = set()
    result = []
    for item in items:
        key = item.strip().casefold()
        if key not in seen:
            seen.add(key)
            result.append(item.strip())
    return result


def find_duplicates(items: list[str]) -> list[str]:
    """Returns the repeated entries of ``items`` (case-insensitive), once each."""
    seen: set[str] = set()
    reported: set[str] = set()
    duplicates = []
    for item in items:
        key = item.strip().casefold()
        if key in seen and key not in reported:
            duplicates.append(item.strip())
            reported.add(key)
        seen.add(key)
    return duplicates


def parse_number_list(text: str) -> list[int] | None:
    """
    Parses replies made only of numbers, e.g. "2", "1, 3" or "1 and 4".

    Returns:
        The numbers in order, or None when the text contains anything else
    """
    if not _NUMBER_LIST_PATTERN.match(text):
        return None
    return [int(n) for n in re.findall(r"\d+", text)]


def extract_number(text: str) -> int | None:
    """Returns the first integer mentioned in the text, if any."""
    match = re.search(r"\b(\d{1,3})\b", text)
    return int(match.group(1)) if match else None


def extract_uuid(text: str) -> str | None:
    """Returns the first UUID found in the text."""
    match = _UUID_PATTERN.search(text)
    return match.group(0).lower() if match else None


def truncate_title(text: str, max_length: int = 60) -> str:
    """Shortens a poll question into a title, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def parse_end_date(text: str, now: datetime | None = None) -> datetime | None:
    """
    Reads an end date from "2025-06-30", "in 10 days" or "extend by 2 weeks".

    Args:
        text: User text
        now: Reference time for relative dates (defaults to current UTC time)

    Returns:
        Timezone-aware end date, or None when no date is given
    """
    now = now or datetime.now(timezone.utc)

    iso = _ISO_DATE_PATTERN.search(text)
    if iso:
        try:
            year, month, day = (int(part) for part in iso.groups())
            return datetime(year, month, day, 23, 59, 59, tzinfo=timezone.utc)
        except ValueError:
            return None

    relative = _RELATIVE_DATE_PATTERN.search(text)
    if relative:
        amount = int(relative.group(1))
        unit = relative.group(2).lower()
        days = amount * 7 if unit.startswith("week") else amount
        return now + timedelta(days=days)

    return None


def normalize(text: str) -> str:
    """Lowercases and collapses whitespace for keyword matching."""
    return re.sub(r"\s+", " ", text.strip().lower())
