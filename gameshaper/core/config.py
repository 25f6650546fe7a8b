"""Application configuration using Pydantic Settings.

Environment variables are loaded with the GAMESHAPER_ prefix, e.g.
GAMESHAPER_LLM_BASE_URL or GAMESHAPER_PIPELINE_MAX_LOOPS.
"""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Session settings loaded from environment variables.

    Pattern: Pydantic Settings with Environment Variables
    """

    # Service configuration
    service_name: str = "gameshaper"
    port: int = 8090
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Logging level")

    # LLM completion endpoint (OpenAI-compatible)
    llm_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the chat completion API",
    )
    llm_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for the chat completion API",
    )
    default_model: str = Field(
        default="gpt-4o",
        description="Model used when a call type has no override",
    )
    llm_timeout_seconds: float = Field(default=120.0, description="LLM request timeout")

    # Web search endpoint
    search_base_url: str = Field(
        default="https://api.search.brave.com/res/v1",
        description="Base URL of the web search API",
    )
    search_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for the web search API",
    )
    search_timeout_seconds: float = Field(default=30.0, description="Search request timeout")
    search_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between the broad and precise searches (provider rate limit)",
    )
    max_search_results: int = Field(default=5, ge=1, le=50)

    # Image endpoint
    image_base_url: str = Field(
        default="http://localhost:7860",
        description="Base URL of the image generation API",
    )
    image_api_key: SecretStr = Field(default=SecretStr(""))
    image_timeout_seconds: float = Field(default=180.0)
    image_batch_limit: int = Field(
        default=10,
        ge=1,
        description="Maximum number of images regenerated for a single patch",
    )

    # Retry policy applied at the dispatch boundary
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_initial_delay: float = Field(default=1.0, ge=0.0, le=60.0)
    retry_backoff_factor: float = Field(default=2.0, ge=1.0, le=10.0)
    retry_max_delay: float = Field(default=30.0, ge=0.0)

    # Call ledger
    ledger_truncate_length: int = Field(
        default=5000,
        ge=100,
        description="Prompts and responses longer than this are truncated in the ledger",
    )

    # Feedback memory
    feedback_recent_limit: int = Field(default=5, ge=1)
    feedback_consolidation_threshold: int = Field(
        default=3,
        ge=1,
        description="Pending insights that trigger a general synthesis task",
    )
    feedback_max_document_length: int = Field(default=15000, ge=1000)
    include_feedback_context: bool = Field(
        default=True,
        description="Prepend the feedback document to non-internal LLM calls",
    )

    # Generation pipeline
    pipeline_max_loops: int = Field(default=3, ge=1, le=20)

    # Entity graph
    prune_links_after_patch: bool = Field(
        default=True,
        description="Reconcile parent/child links after every applied patch",
    )

    # Persistence
    snapshot_path: str = Field(
        default="gameshaper_snapshot.json",
        description="File used by the JSON snapshot store",
    )

    model_config = SettingsConfigDict(
        env_prefix="GAMESHAPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings singleton
    """
    return Settings()
