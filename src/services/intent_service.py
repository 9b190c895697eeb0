"""
Intent recognition for chat turns.
Fast ordered pattern rules first, state-scoped recognizers while a flow is
active, and an LLM classification only when the rules are unsure.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Callable

from pydantic import ValidationError

from src.models.domain import (
    LIST_INTENTS,
    ConversationContext,
    ConversationState,
    CreationStep,
    Intent,
    IntentType,
    StateType,
    UpdateStep,
)
from src.models.schemas import ClassifiedIntent
from src.services.category_detector import detect_category
from src.services.llm_service import LLMError
from src.utils.logger import get_logger
from src.utils.parsing import (
    classify_decision,
    extract_number,
    extract_uuid,
    is_confirmation,
    normalize,
    parse_number_list,
)
from src.utils.prompts import render_prompt

logger = get_logger(__name__)

RESET_KEYWORDS = (
    "start over",
    "start fresh",
    "new conversation",
    "begin again",
    "never mind",
    "nevermind",
    "cancel",
    "stop",
    "exit",
    "quit",
    "restart",
    "clear",
    "reset",
    "help",
    "abort",
)
MAX_RESET_WORDS = 3
# "I want to cancel this", "please stop", "let's start over"
_RESET_REQUEST = re.compile(
    r"^(?:(?:please|just|ok|okay|actually|no|i want to|i'd like to|i wanna|i need to|let's|lets|can we|can you|could you)[\s,]+)*"
    r"(cancel|stop|quit|exit|abort|reset|restart|start over|start fresh|begin again|never ?mind)"
    r"(?:\s+(?:this|it|that|everything|all|the poll|this poll|the whole thing|now|please))*$"
)

# Steps whose replies are free text and must not be read as a new request
FREE_TEXT_STEPS = frozenset(
    {
        CreationStep.TOPIC.value,
        CreationStep.OPTIONS.value,
        UpdateStep.SELECT_POLL.value,
        UpdateStep.UPDATE_TITLE.value,
        UpdateStep.UPDATE_OPTIONS.value,
    }
)
CONFIRM_STEPS = frozenset({CreationStep.CONFIRM.value, UpdateStep.CONFIRM_UPDATE.value})

FIELD_KEYWORDS = {
    "options": re.compile(r"\b(options?|choices?|answers?|alternatives?)\b", re.IGNORECASE),
    "title": re.compile(r"\b(title|name|question|heading|rename)\b", re.IGNORECASE),
    "end_date": re.compile(
        r"\b(end ?date|deadline|expir\w*|extend|extension|closing|close date|duration|date)\b",
        re.IGNORECASE,
    ),
    "category": re.compile(r"\b(category|categories|topic area|genre)\b", re.IGNORECASE),
}
FIELD_MENU = {1: "options", 2: "title", 3: "end_date", 4: "category"}


@dataclass(frozen=True)
class IntentRule:
    """
    One pattern rule: if any pattern matches, the intent type is produced
    with the given confidence.
    """

    name: str
    intent_type: IntentType
    confidence: float
    patterns: tuple[re.Pattern, ...]
    entities: dict = field(default_factory=dict)

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.patterns)


def _rule(name: str, intent_type: IntentType, confidence: float, *patterns: str, **entities) -> IntentRule:
    return IntentRule(
        name=name,
        intent_type=intent_type,
        confidence=confidence,
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        entities=entities,
    )


# Evaluated top to bottom. Creation phrases are anchored on the verb right
# before "poll" so that "a poll about climate change" is not an update.
DEFAULT_RULES: list[IntentRule] = [
    _rule(
        "create_poll",
        IntentType.CREATE_POLL,
        0.95,
        r"\b(create|make|build|start|launch|set up|setup)\s+(a\s+|an\s+|the\s+|new\s+|another\s+)*poll\b",
        r"^\s*(a\s+)?new poll\b",
        r"\b(i want|i need|i'd like|can you|could you)\b.*\b(create|make|build)\b.*\bpoll\b",
        action="create",
    ),
    _rule(
        "update_poll",
        IntentType.UPDATE_POLL,
        0.95,
        r"\b(update|edit|modify|change|rename)\s+(a\s+|the\s+|my\s+|one of my\s+)?polls?\b",
        r"\bpolls?\b.*\b(update|edit|modify|change|rename)\b",
        r"\b(can you|could you|help me|i want to|i need to|i'd like to)\b.*\b(update|edit|modify|change)\b.*\bpoll\b",
        r"\b(add|include|remove)\b.*\boptions?\b.*\b(to|in|from)\b.*\bpoll\b",
        r"\bextend\b.*\bpoll\b",
        action="update",
    ),
    _rule(
        "delete_poll",
        IntentType.DELETE_POLL,
        0.9,
        r"\b(delete|remove|erase)\s+(a\s+|the\s+|my\s+|this\s+|that\s+|one of my\s+)?polls?\b",
        r"\bpolls?\b.*\b(delete|deleted|erase|erased)\b",
        action="delete",
    ),
    _rule(
        "list_voted_polls",
        IntentType.LIST_VOTED_POLLS,
        0.9,
        r"\b(voted|my votes|participated)\b",
    ),
    _rule(
        "list_recent_polls",
        IntentType.LIST_RECENT_POLLS,
        0.9,
        r"\b(recent|latest|newest|last\s+\d+)\b.*\bpolls?\b",
        r"\bpolls?\b.*\b(recent|latest|newest)\b",
    ),
    _rule(
        "poll_analytics",
        IntentType.POLL_ANALYTICS,
        0.9,
        r"\b(analytics|statistics|stats|insights)\b",
        r"\bpolls?\b.*\bperform\w*\b",
    ),
    _rule(
        "list_my_polls",
        IntentType.LIST_MY_POLLS,
        0.9,
        r"\b(my|mine)\b.*\bpolls?\b",
        r"\bpolls?\b.*\b(i (have )?(created|made|own)|mine)\b",
    ),
    _rule(
        "list_polls",
        IntentType.LIST_POLLS,
        0.9,
        r"\b(show|list|display|view|see|browse)\b.*\bpolls?\b",
        r"\bpolls?\b.*\b(available|active|open)\b",
        r"\b(what|which|any)\b.*\bpolls\b",
        r"^\s*(all\s+)?polls?\s*\??$",
    ),
    _rule(
        "greeting",
        IntentType.GREETING,
        0.9,
        r"^(hi|hello|hey|hiya|howdy|greetings|good (morning|afternoon|evening)|yo)\b[\s!.,]*(there|pollbot|bot)?[\s!.]*$",
        r"^(what's up|whats up|sup|how are you|how's it going)[\s!?.]*$",
    ),
    _rule(
        "help",
        IntentType.HELP,
        0.9,
        r"\bwhat can you do\b",
        r"\bhow (do|does) (this|it|you) work\b",
        r"\b(commands|capabilities)\b",
    ),
]


class PatternIntentClassifier:
    """
    Deterministic intent classifier.

    Reset keywords always win. While a flow is active, a recognizer scoped
    to the state's type interprets the message; otherwise the ordered rule
    list decides. Unmatched input becomes a low-confidence general intent.
    """

    def __init__(self, rules: list[IntentRule] | None = None):
        self.rules = rules if rules is not None else DEFAULT_RULES
        self._state_recognizers: dict[
            StateType, Callable[[str, ConversationContext, ConversationState], Intent]
        ] = {
            StateType.POLL_CREATION: self._recognize_creation,
            StateType.POLL_UPDATE: self._recognize_update,
        }

    def classify(self, message: str, context: ConversationContext) -> Intent:
        """
        Classifies one user message.

        Args:
            message: Raw user text
            context: Current conversation context

        Returns:
            Intent; never raises for unmatched input
        """
        text = normalize(message)

        keyword = self.match_reset_keyword(text)
        if keyword:
            return Intent(
                type=IntentType.RESET,
                confidence=1.0,
                entities={"keyword": keyword},
                raw_text=message,
            )

        state = context.current_state
        if state is not None:
            recognizer = self._state_recognizers.get(state.type)
            if recognizer is not None:
                return recognizer(message, context, state)

        return self._match_rules(message, context)

    @staticmethod
    def match_reset_keyword(text: str) -> str | None:
        """
        Returns the reset keyword a message consists of, if any.

        Phrased requests such as "I want to cancel this" count as well.
        Other longer messages that merely begin with a keyword are
        ordinary requests.
        """
        text = normalize(text).strip(" !.?")
        if not text:
            return None
        request = _RESET_REQUEST.match(text)
        if request:
            return request.group(1)
        if len(text.split()) > MAX_RESET_WORDS:
            return None
        for keyword in RESET_KEYWORDS:
            if text == keyword or re.match(rf"^{re.escape(keyword)}\b", text):
                return keyword
        return None

    def match_top_level(self, message: str) -> Intent | None:
        """Returns the first matching rule's intent, ignoring any state."""
        for rule in self.rules:
            if rule.matches(message):
                return Intent(
                    type=rule.intent_type,
                    confidence=rule.confidence,
                    entities=dict(rule.entities),
                    raw_text=message,
                    notes={"rule": rule.name},
                )
        return None

    def _match_rules(self, message: str, context: ConversationContext) -> Intent:
        intent = self.match_top_level(message)
        if intent is not None:
            if intent.type in (IntentType.LIST_RECENT_POLLS, IntentType.LIST_VOTED_POLLS):
                count = extract_number(message)
                if count:
                    intent.entities["count"] = count
            return intent

        numbers = parse_number_list(message)
        if numbers:
            anchor = context.last_intent
            if anchor is not None and anchor.type in LIST_INTENTS:
                return Intent(
                    type=anchor.type,
                    confidence=0.8,
                    entities={"selection": numbers[0], "count": numbers[0]},
                    raw_text=message,
                    notes={"rule": "numeric_selection", "anchor": anchor.type.value},
                )
            return Intent(
                type=IntentType.GENERAL,
                confidence=0.2,
                entities={"selection": numbers[0]},
                raw_text=message,
                notes={"rule": "numeric_selection"},
            )

        if is_confirmation(message):
            # No flow is waiting for this confirmation
            return Intent(
                type=IntentType.GENERAL,
                confidence=0.7,
                entities={"confirmation": True},
                raw_text=message,
                notes={"rule": "confirmation"},
            )

        return Intent(type=IntentType.GENERAL, confidence=0.3, raw_text=message)

    def _topic_switch(self, message: str, state: ConversationState, flow_type: IntentType) -> Intent | None:
        """Detects a request for a different task while a flow is waiting on a non-free-text step."""
        if state.step in FREE_TEXT_STEPS:
            return None
        if state.step in CONFIRM_STEPS and classify_decision(message):
            return None
        intent = self.match_top_level(message)
        if intent is None or intent.type == flow_type:
            return None
        if intent.type not in LIST_INTENTS and intent.type not in (
            IntentType.CREATE_POLL,
            IntentType.UPDATE_POLL,
        ):
            return None
        intent.entities["topic_switch"] = True
        return intent

    def _recognize_creation(
        self, message: str, context: ConversationContext, state: ConversationState
    ) -> Intent:
        switched = self._topic_switch(message, state, IntentType.CREATE_POLL)
        if switched is not None:
            return switched

        entities: dict = {"step": state.step}
        numbers = parse_number_list(message)
        if numbers:
            entities["selection"] = numbers
        if state.step == CreationStep.CATEGORY.value:
            category = detect_category(message)
            if category:
                entities["category"] = category
        elif state.step == CreationStep.CONFIRM.value:
            decision = classify_decision(message)
            if decision:
                entities["decision"] = decision

        return Intent(
            type=IntentType.CREATE_POLL,
            confidence=0.9,
            entities=entities,
            raw_text=message,
            notes={"state": state.type.value},
        )

    def _recognize_update(
        self, message: str, context: ConversationContext, state: ConversationState
    ) -> Intent:
        switched = self._topic_switch(message, state, IntentType.UPDATE_POLL)
        if switched is not None:
            return switched

        entities: dict = {"step": state.step}
        confidence = 0.9
        numbers = parse_number_list(message)

        if state.step == UpdateStep.SELECT_POLL.value:
            poll_id = extract_uuid(message)
            if poll_id:
                entities["poll_id"] = poll_id
            elif numbers:
                entities["selection"] = numbers[0]
        elif state.step == UpdateStep.SELECT_FIELD.value:
            field_name = resolve_field(message)
            if field_name:
                entities["field"] = field_name
                confidence = 0.95
        elif state.step == UpdateStep.UPDATE_CATEGORY.value:
            category = detect_category(message)
            if category:
                entities["category"] = category
        elif state.step == UpdateStep.CONFIRM_UPDATE.value:
            decision = classify_decision(message)
            if decision:
                entities["decision"] = decision

        return Intent(
            type=IntentType.UPDATE_POLL,
            confidence=confidence,
            entities=entities,
            raw_text=message,
            notes={"state": state.type.value},
        )


def resolve_field(message: str) -> str | None:
    """
    Maps a field reference to options, title, end_date or category.

    Args:
        message: Reply at the field menu, e.g. "2" or "change the deadline"

    Returns:
        Field name, or None when no field or more than one field is referenced
    """
    numbers = parse_number_list(message)
    if numbers:
        return FIELD_MENU.get(numbers[0]) if len(numbers) == 1 else None

    # In "change the title to ..." only the part before "to" names the field
    head = re.split(r"\bto\b", message, maxsplit=1, flags=re.IGNORECASE)[0]
    matched = {name for name, pattern in FIELD_KEYWORDS.items() if pattern.search(head)}
    if not matched:
        matched = {name for name, pattern in FIELD_KEYWORDS.items() if pattern.search(message)}
    if len(matched) == 1:
        return matched.pop()
    return None


class IntentService:
    """
    Combines pattern classification with an LLM fallback.
    The LLM is consulted only for weak, stateless classifications.
    """

    def __init__(
        self,
        classifier: PatternIntentClassifier,
        request_queue=None,
        confidence_threshold: float = 0.8,
        ai_fallback: bool = True,
    ):
        """
        Args:
            classifier: Pattern classifier
            request_queue: RequestQueue used for LLM calls (None disables the fallback)
            confidence_threshold: Pattern confidence at or above which no LLM call is made
            ai_fallback: Feature flag for the LLM fallback
        """
        self.classifier = classifier
        self.request_queue = request_queue
        self.confidence_threshold = confidence_threshold
        self.ai_fallback = ai_fallback

    async def recognize(self, message: str, context: ConversationContext) -> Intent:
        """
        Classifies a message, asking the LLM when the rules are unsure.

        Args:
            message: Raw user text
            context: Current conversation context

        Returns:
            The more confident of the pattern and LLM intents
        """
        intent = self.classifier.classify(message, context)
        logger.info(
            "intent_classified",
            intent=intent.type.value,
            confidence=intent.confidence,
            rule=(intent.notes or {}).get("rule"),
        )

        if not self._should_ask_llm(intent, context):
            return intent

        try:
            prompt = render_prompt(
                "intent_classification",
                message=message,
                history=_format_history(context),
            )
            reply = await self.request_queue.enqueue(prompt)
            classified = parse_classified_intent(reply)
        except (LLMError, ValidationError, ValueError) as e:
            logger.warning("intent_llm_fallback_failed", error=str(e))
            return intent

        if classified.confidence <= intent.confidence:
            return intent

        entities = {"count": classified.count} if classified.count else {}
        logger.info(
            "intent_classified_by_llm",
            intent=classified.intent,
            confidence=classified.confidence,
        )
        return Intent(
            type=IntentType(classified.intent),
            confidence=classified.confidence,
            entities=entities,
            raw_text=message,
            notes={"source": "llm"},
        )

    def _should_ask_llm(self, intent: Intent, context: ConversationContext) -> bool:
        if not self.ai_fallback or self.request_queue is None:
            return False
        if context.current_state is not None:
            return False
        if intent.confidence >= self.confidence_threshold:
            return False
        # Bare confirmations and numbers without an anchor stay no-ops
        return (intent.notes or {}).get("rule") not in ("confirmation", "numeric_selection")


def parse_classified_intent(reply: str) -> ClassifiedIntent:
    """
    Extracts and validates the JSON object of an LLM classification reply.

    Raises:
        ValueError: If the reply holds no JSON object
        ValidationError: If the object does not match ClassifiedIntent
    """
    match = re.search(r"\{.*\}", reply, re.DOTALL)
    if not match:
        raise ValueError("LLM reply did not contain a JSON object")
    return ClassifiedIntent.model_validate(json.loads(match.group(0)))


def _format_history(context: ConversationContext, limit: int = 6) -> str:
    lines = [f"{m.role}: {m.content}" for m in context.history[-limit:]]
    return "\n".join(lines) if lines else "(no previous messages)"
