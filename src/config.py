import os
from pydantic_settings import BaseSettings
from pydantic import Field



class Settings(BaseSettings):
    """
    Application settings with validation.
    Uses Pydantic Settings for automatic env var loading and type validation.
    """

    # --- Model Configuration ---
    chat_model: str = Field(
        default="gemini-2.5-flash",
        description="LLM used for classification fallback, suggestions and naturalization",
    )
    chat_temperature: float = Field(
        default=0.3,
        description="Sampling temperature for the chat model",
        ge=0.0,
        le=1.0,
    )

    # --- LLM Service Configuration ---
    llm_timeout: int = Field(
        default=30,
        description="Timeout in seconds for LLM calls",
        ge=5,
        le=120,
    )
    llm_max_retries: int = Field(
        default=3,
        description="Maximum attempts for throttled or timed-out LLM calls",
        ge=1,
        le=5,
    )
    llm_retry_backoff: float = Field(
        default=1.0,
        description="Base multiplier in seconds for exponential retry backoff",
        ge=0.0,
        le=10.0,
    )

    # --- Request Queue / Rate Limiting ---
    rate_limit_max_requests: int = Field(
        default=60,
        description="Maximum LLM requests accepted per window",
        ge=1,
        le=1000,
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        description="Length of the fixed rate-limit window in seconds",
        gt=0,
        le=3600,
    )

    # --- Conversation Configuration ---
    context_ttl_hours: float = Field(
        default=24.0,
        description="Hours after which an unfinished flow is discarded",
        gt=0,
    )
    history_limit: int = Field(
        default=20,
        description="Number of chat messages loaded into a conversation context",
        ge=0,
        le=200,
    )
    end_date_extension_days: int = Field(
        default=7,
        description="Days added to now for new polls and default end-date extensions",
        ge=1,
        le=365,
    )
    min_topic_length: int = Field(
        default=10,
        description="Minimum characters for a poll question or title",
        ge=1,
    )
    max_title_length: int = Field(
        default=60,
        description="Maximum characters of a poll title derived from its question",
        ge=10,
    )
    recent_polls_default: int = Field(
        default=3, description="Default count for 'recent polls' listings", ge=1
    )
    voted_polls_default: int = Field(
        default=5, description="Default count for 'polls I voted on' listings", ge=1
    )
    intent_confidence_threshold: float = Field(
        default=0.8,
        description="Pattern confidence below which the LLM classifier is consulted",
        ge=0.0,
        le=1.0,
    )

    # --- Feature Flags ---
    ai_intent_fallback: bool = Field(
        default=True, description="Ask the LLM when pattern classification is weak"
    )
    naturalize_responses: bool = Field(
        default=True, description="Rephrase menus and previews through the LLM"
    )

    # --- API Keys (Optional for tests and offline runs) ---
    google_api_key: str | None = Field(default=None, description="Google API key for Gemini")
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    supabase_url: str | None = Field(default=None, description="Supabase project URL")
    supabase_service_key: str | None = Field(
        default=None, description="Supabase service key"
    )

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Root log level")
    structured_logging: bool = Field(
        default=True, description="Emit JSON log lines instead of plain text"
    )

    class Config:
        """Pydantic config."""

        env_file = os.getenv("DOTENV_PATH", ".env")
        case_sensitive = False
        extra = "ignore"


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get or create settings instance.
    Singleton pattern for consistent configuration.

    Returns:
        Settings instance

    Raises:
        ValidationError: If env vars are invalid
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Expose settings as module-level variables
# Only expose non-sensitive configuration values
settings = get_settings()

# Flow defaults read by the controllers at import time
END_DATE_EXTENSION_DAYS = settings.end_date_extension_days
MIN_TOPIC_LENGTH = settings.min_topic_length
MAX_TITLE_LENGTH = settings.max_title_length
RECENT_POLLS_DEFAULT = settings.recent_polls_default
VOTED_POLLS_DEFAULT = settings.voted_polls_default
