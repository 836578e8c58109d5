"""
Configuration module for the chat relay service.
Loads environment variables and provides centralized config access.
"""

from pathlib import Path
from typing import List, Optional, Tuple
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

# ============================================================
# Centralized Data Paths
# ============================================================
# All persisted data lives under <project>/data/ for easy backup/deletion.
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database (sessions, messages, users)
SQLITE_DB_PATH = DATA_DIR / "app.db"

# Placeholder secret shipped in the defaults; startup warns while it is in use
DEFAULT_JWT_SECRET = "change-me-to-a-random-secret-key"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Provide clear, accurate, and helpful responses.\n"
    "Be concise but thorough. If you're unsure about something, say so.\n"
    "Format your responses with markdown when appropriate."
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ============================================================
    # JWT Authentication
    # ============================================================
    jwt_secret_key: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24

    # ============================================================
    # Completion Provider (OpenAI-compatible API)
    # ============================================================
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o-mini"
    allowed_models: List[str] = ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"]
    # Cheap model used for best-effort session titles
    title_model: str = "gpt-4o-mini"
    title_max_tokens: int = 20
    # Connect/read timeout for a single provider HTTP call
    provider_timeout_seconds: float = 120.0

    # ============================================================
    # Relay
    # ============================================================
    max_message_length: int = 10000
    # Most recent messages replayed to the provider (older ones are dropped)
    context_window: int = 20
    # Upper bound on how long one turn may hold a provider stream open
    stream_timeout_seconds: float = 300.0
    default_session_title: str = "New Chat"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # ============================================================
    # Storage
    # ============================================================
    sqlite_db_path: str = str(SQLITE_DB_PATH)

    # ============================================================
    # Rate limits: "max_requests/window_seconds"
    # ============================================================
    chat_rate_limit: str = "20/60"
    login_rate_limit: str = "5/900"
    register_rate_limit: str = "3/300"

    # ============================================================
    # Server Configuration
    # ============================================================
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # Comma-separated browser origins allowed by CORS
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse the comma-separated CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @staticmethod
    def parse_rate_limit(value: str) -> Tuple[int, int]:
        """Parse a "max/window" rate limit string into (max_requests, window_seconds)."""
        max_requests, _, window = value.partition("/")
        return int(max_requests), int(window or 60)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reloading env vars on every call.
    """
    return Settings()
