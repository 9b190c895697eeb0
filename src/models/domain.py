"""
Domain models for the conversation engine.
ConversationContext is the per-user record carried across turns;
TurnState is the LangGraph state of a single turn.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import TypedDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntentType(str, Enum):
    """Purpose of a single user utterance."""

    GREETING = "greeting"
    HELP = "help"
    RESET = "reset"
    CREATE_POLL = "create_poll"
    UPDATE_POLL = "update_poll"
    DELETE_POLL = "delete_poll"
    LIST_POLLS = "list_polls"
    LIST_MY_POLLS = "list_my_polls"
    LIST_RECENT_POLLS = "list_recent_polls"
    LIST_VOTED_POLLS = "list_voted_polls"
    POLL_ANALYTICS = "poll_analytics"
    GENERAL = "general"


LIST_INTENTS = frozenset(
    {
        IntentType.LIST_POLLS,
        IntentType.LIST_MY_POLLS,
        IntentType.LIST_RECENT_POLLS,
        IntentType.LIST_VOTED_POLLS,
        IntentType.POLL_ANALYTICS,
    }
)


class StateType(str, Enum):
    POLL_CREATION = "poll_creation"
    POLL_UPDATE = "poll_update"
    VOTING = "voting"
    IDLE = "idle"


class CreationStep(str, Enum):
    CATEGORY = "category"
    TOPIC = "topic"
    OPTIONS = "options"
    CONFIRM = "confirm"


class UpdateStep(str, Enum):
    SELECT_POLL = "select_poll"
    SELECT_FIELD = "select_field"
    UPDATE_TITLE = "update_title"
    UPDATE_OPTIONS = "update_options"
    UPDATE_CATEGORY = "update_category"
    UPDATE_END_DATE = "update_end_date"
    CONFIRM_UPDATE = "confirm_update"


STEP_ENUMS: dict[StateType, type[Enum]] = {
    StateType.POLL_CREATION: CreationStep,
    StateType.POLL_UPDATE: UpdateStep,
}

CATEGORIES = ("Technology", "Politics", "Entertainment", "Other")


class ChatMessage(BaseModel):
    """A single immutable entry of the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class Intent(BaseModel):
    """
    Classified purpose of one utterance.
    Produced fresh every turn; only the latest one is remembered.
    """

    type: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    entities: dict[str, Any] = Field(default_factory=dict)
    raw_text: str = ""
    notes: Optional[dict[str, Any]] = None


class UserProfile(BaseModel):
    id: Optional[str] = None
    role: Literal["admin", "user"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class ConversationState(BaseModel):
    """
    Active multi-turn task of a user.

    Attributes:
        type: Which flow owns the state
        step: Current step; always a member of the flow's step enumeration
        data: Slots collected so far (category, topic, options, poll id, ...)
        expires_at: Moment after which the state is discarded on load
    """

    type: StateType
    step: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _step_belongs_to_flow(self) -> "ConversationState":
        step_enum = STEP_ENUMS.get(self.type)
        if step_enum is None:
            return self
        if isinstance(self.step, Enum):
            self.step = self.step.value
        valid = {member.value for member in step_enum}
        if self.step not in valid:
            raise ValueError(
                f"Step '{self.step}' is not valid for state '{self.type.value}'"
            )
        return self

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at


class ConversationContext(BaseModel):
    """Everything the engine knows about a user between turns."""

    user_id: Optional[str] = None
    user_profile: UserProfile = Field(default_factory=UserProfile)
    history: list[ChatMessage] = Field(default_factory=list)
    current_state: Optional[ConversationState] = None
    session_data: dict[str, Any] = Field(default_factory=dict)
    entities: dict[str, Any] = Field(default_factory=dict)
    last_intent: Optional[Intent] = None


class FlowResult(BaseModel):
    """
    Outcome of handling one intent inside a flow controller.

    ``data["type"]`` names the kind of reply and ``data["message"]`` carries
    the deterministic text rendering. ``context_update`` holds the next
    ConversationState (or None) and is applied only when present.
    """

    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    next_step: Optional[str] = None
    should_end_flow: bool = False
    context_update: Optional[dict[str, Any]] = None


class ChatResponse(BaseModel):
    """Reply returned to the messaging transport."""

    message: ChatMessage
    intent: Optional[Intent] = None
    data: Optional[dict[str, Any]] = None
    history: list[ChatMessage] = Field(default_factory=list)


class TurnState(TypedDict, total=False):
    """
    LangGraph state for processing one user message.

    Attributes:
        message: Raw user text
        context: Conversation context loaded before the turn
        intent: Intent produced by the classifier node
        flow_result: Result produced by the flow node
        reply: Rendered assistant message
    """

    message: str
    context: ConversationContext
    intent: Intent
    flow_result: FlowResult
    reply: ChatMessage
