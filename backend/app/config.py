"""
Application configuration using Pydantic Settings.
All config is loaded from environment variables / .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "study-qa-core"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Supabase ─────────────────────────────────────────
    SUPABASE_URL: str
    SUPABASE_KEY: str  # anon/public key
    SUPABASE_SERVICE_KEY: str = ""  # service_role key (for admin ops)

    # ── Embedding ────────────────────────────────────────
    # Pinned for the lifetime of an index: changing model or dimensions
    # requires re-embedding every chunk.
    EMBEDDING_PROVIDER: str = "openai"  # openai | gemini
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 1536
    EMBEDDING_API_KEY: str = ""
    EMBEDDING_TIMEOUT_SECONDS: float = 20.0

    # ── LLM backends (fast / deep) ───────────────────────
    FAST_LLM_PROVIDER: str = "deepseek"  # deepseek | openai | gemini | groq
    FAST_LLM_MODEL: str = "deepseek-chat"
    FAST_LLM_API_KEY: str = ""
    FAST_LLM_BASE_URL: str = "https://api.deepseek.com"
    FAST_LLM_TEMPERATURE: float = 0.5
    FAST_LLM_MAX_TOKENS: int = 1200

    DEEP_LLM_PROVIDER: str = "deepseek"
    DEEP_LLM_MODEL: str = "deepseek-reasoner"
    DEEP_LLM_API_KEY: str = ""
    DEEP_LLM_BASE_URL: str = "https://api.deepseek.com"
    DEEP_LLM_TEMPERATURE: float = 0.7
    DEEP_LLM_MAX_TOKENS: int = 1500

    LLM_TIMEOUT_SECONDS: float = 90.0

    # ── Retrieval ────────────────────────────────────────
    RETRIEVAL_TOP_N: int = 5
    RETRIEVAL_TIMEOUT_SECONDS: float = 30.0

    # ── Temporary data lifecycle ─────────────────────────
    TEMP_RETENTION_HOURS: float = 2.0
    CLEANUP_INTERVAL_MINUTES: int = 30
    CLEANUP_INITIAL_DELAY_SECONDS: int = 60
    CRASH_RECOVERY_DELAY_SECONDS: int = 5
    UPLOAD_DIR: str = "uploads"
    CLEAN_SHUTDOWN_MARKER: str = ".clean_shutdown"

    # ── Embedding backfill ───────────────────────────────
    EMBEDDING_BACKFILL_INTERVAL_MINUTES: int = 10
    EMBEDDING_BACKFILL_BATCH_SIZE: int = 100

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
