"""
Keyword-based poll category detection.
Maps free text to one of the fixed poll categories, or None when unsure.
"""

import re
from typing import NamedTuple

from src.models.domain import CATEGORIES


class KeywordFamily(NamedTuple):
    name: str
    category: str
    pattern: re.Pattern


def _family(name: str, category: str, keywords: list[str]) -> KeywordFamily:
    alternation = "|".join(re.escape(k).replace(r"\ ", r"\s+") for k in keywords)
    return KeywordFamily(name, category, re.compile(rf"\b(?:{alternation})s?\b", re.IGNORECASE))


_EXPLICIT = [
    ("Technology", re.compile(r"\b(?:tech|technology|technological)\b", re.IGNORECASE)),
    ("Politics", re.compile(r"\b(?:politics|political)\b", re.IGNORECASE)),
    ("Entertainment", re.compile(r"\bentertainment\b", re.IGNORECASE)),
    ("Other", re.compile(r"^\s*other\b|\bother\s+category\b|\bcategory\s*(?:is|:)?\s*other\b", re.IGNORECASE)),
]

# Evaluated in order; the first family with a match wins
KEYWORD_FAMILIES: list[KeywordFamily] = [
    _family("transport", "Other", [
        "transport", "transportation", "railway", "train", "metro", "subway", "bus",
        "car", "automobile", "vehicle", "aircraft", "airplane", "aeroplane", "plane",
        "aviation", "airline", "flight", "airport", "pilot", "runway", "passenger",
        "cargo", "freight", "traffic", "highway", "commute",
    ]),
    _family("real_estate", "Other", [
        "real estate", "property", "housing", "apartment", "rent", "lease",
        "condominium", "condo", "townhouse", "landlord", "tenant",
    ]),
    _family("technology", "Technology", [
        "software", "hardware", "app", "application", "computer", "device", "gadget",
        "programming", "programming language", "code", "coding", "developer",
        "internet", "web", "digital", "mobile", "smartphone", "phone", "laptop",
        "data", "ai", "artificial intelligence", "machine learning", "algorithm",
        "blockchain", "crypto", "robotics", "automation", "startup", "cybersecurity",
        "cloud", "database", "network", "server", "electronics", "framework",
        "python", "javascript", "typescript", "rust", "java", "golang", "linux",
        "operating system", "browser", "chip", "semiconductor",
    ]),
    _family("politics", "Politics", [
        "government", "election", "president", "prime minister", "minister",
        "democrat", "republican", "parliament", "congress", "senate", "legislation",
        "candidate", "campaign", "democracy", "liberal", "conservative",
        "governance", "diplomacy", "constitution", "supreme court", "referendum",
        "mayor", "governor", "policy", "party",
    ]),
    _family("entertainment", "Entertainment", [
        "movie", "film", "cinema", "music", "song", "album", "artist", "actor",
        "actress", "celebrity", "tv show", "series", "television", "netflix",
        "disney", "video game", "gaming", "book", "novel", "theater", "theatre",
        "concert", "festival", "comedy", "drama", "anime", "podcast", "band",
        "singer", "director", "oscar", "grammy",
    ]),
    _family("sports", "Entertainment", [
        "sport", "athlete", "team", "championship", "tournament", "league",
        "olympics", "world cup", "super bowl", "cricket", "football", "soccer",
        "basketball", "baseball", "tennis", "golf", "hockey", "rugby", "volleyball",
        "badminton", "marathon", "boxing", "formula 1", "f1", "player", "coach",
    ]),
    _family("education", "Other", [
        "education", "school", "college", "university", "campus", "classroom",
        "course", "curriculum", "student", "teacher", "professor", "degree",
        "exam", "homework", "scholarship",
    ]),
    _family("health", "Other", [
        "health", "healthcare", "medical", "medicine", "hospital", "clinic",
        "doctor", "nurse", "patient", "therapy", "disease", "vaccine", "wellness",
        "fitness", "nutrition", "exercise", "mental health",
    ]),
    _family("finance", "Other", [
        "finance", "financial", "economy", "economic", "money", "currency", "bank",
        "banking", "investment", "stock", "stock market", "bond", "insurance",
        "mortgage", "loan", "budget", "savings", "tax", "inflation", "salary",
    ]),
    _family("food", "Other", [
        "food", "cuisine", "cooking", "baking", "recipe", "dish", "meal",
        "breakfast", "lunch", "dinner", "snack", "dessert", "restaurant", "cafe",
        "coffee", "tea", "pizza", "burger", "chef",
    ]),
]


def detect_category(text: str) -> str | None:
    """
    Detects the poll category mentioned or implied by the text.

    Explicit category names win over topical keywords; keyword families
    are then tried in order.

    Args:
        text: Free user text

    Returns:
        One of Technology, Politics, Entertainment, Other; or None when
        no family matches
    """
    if not text or not text.strip():
        return None

    for category, pattern in _EXPLICIT:
        if pattern.search(text):
            return category

    for family in KEYWORD_FAMILIES:
        if family.pattern.search(text):
            return family.category

    return None


def match_category_name(text: str) -> str | None:
    """Returns the category whose exact name appears in the text (e.g. in an LLM reply)."""
    for category in CATEGORIES:
        if re.search(rf"\b{category}\b", text, re.IGNORECASE):
            return category
    return None
