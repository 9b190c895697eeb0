"""
Services package exports for business logic layer.
"""

from src.services.llm_service import (
    LLMService,
    create_llm,
    LLMError,
    LLMTimeoutError,
    LLMThrottledError,
    LLMUnavailableError,
)
from src.services.request_queue import (
    RequestQueue,
    FixedWindowRateLimiter,
    QuotaExceededError,
    QueueClosedError,
)
from src.services.category_detector import detect_category
from src.services.intent_service import IntentService, PatternIntentClassifier
from src.services.context_service import ContextStore
from src.services.response_generator import ResponseGenerator
from src.services.chat_service import ChatService

__all__ = [
    "LLMService",
    "create_llm",
    "LLMError",
    "LLMTimeoutError",
    "LLMThrottledError",
    "LLMUnavailableError",
    "RequestQueue",
    "FixedWindowRateLimiter",
    "QuotaExceededError",
    "QueueClosedError",
    "detect_category",
    "IntentService",
    "PatternIntentClassifier",
    "ContextStore",
    "ResponseGenerator",
    "ChatService",
]
