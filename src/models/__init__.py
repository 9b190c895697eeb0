"""
Models package exports for domain objects and LLM schemas.
"""

from src.models.domain import (
    CATEGORIES,
    ChatMessage,
    ChatResponse,
    ConversationContext,
    ConversationState,
    CreationStep,
    FlowResult,
    Intent,
    IntentType,
    StateType,
    TurnState,
    UpdateStep,
    UserProfile,
)
from src.models.schemas import ClassifiedIntent

__all__ = [
    "CATEGORIES",
    "ChatMessage",
    "ChatResponse",
    "ConversationContext",
    "ConversationState",
    "CreationStep",
    "FlowResult",
    "Intent",
    "IntentType",
    "StateType",
    "TurnState",
    "UpdateStep",
    "UserProfile",
    "ClassifiedIntent",
]
