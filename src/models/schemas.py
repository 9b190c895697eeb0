"""
Schemas for structured LLM replies.
All models use Field() with descriptions for clarity and LLM context.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field, ConfigDict


class ClassifiedIntent(BaseModel):
    """
    Intent classification returned by the LLM when pattern rules are unsure.
    Only top-level intents may be produced; flow steps are never LLM-driven.
    """

    intent: Literal[
        "greeting",
        "help",
        "create_poll",
        "update_poll",
        "delete_poll",
        "list_polls",
        "list_my_polls",
        "list_recent_polls",
        "list_voted_polls",
        "poll_analytics",
        "general",
    ] = Field(description="Primary intent of the user's message")

    confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="How certain the classification is",
    )

    count: Optional[int] = Field(
        default=None,
        ge=1,
        le=50,
        description="Number of polls requested, for listing intents",
    )

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "intent": "list_recent_polls",
                "confidence": 0.85,
                "count": 3,
            }
        },
    )

