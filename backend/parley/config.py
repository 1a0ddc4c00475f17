from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from project root (parent of backend/)
_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=str(_ENV_FILE), env_file_encoding="utf-8", extra="ignore")

    # App
    ENVIRONMENT: str = "dev"
    LOG_LEVEL: str = "DEBUG"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Local conversation store
    DATABASE_URL: str = "sqlite+aiosqlite:///./parley.db"
    LEGACY_HISTORY_PATH: str = "./auraxpro_ai_history_v1.json"
    LEGACY_HISTORY_LIMIT: int = 200
    PREVIEW_CHARS: int = 100

    # Context collaborators
    KNOWLEDGE_PACK_PATH: str = "./data/auraxpro-kb.json"
    PROJECTS_PATH: str = "./data/experience.json"
    PROJECTS_FALLBACK_PATH: str = "./data/projects.json"

    # Relay (client side)
    RELAY_URL: str = "http://localhost:8000"
    RELAY_TIMEOUT: int = 120  # seconds
    CONTEXT_WINDOW_MESSAGES: int = 50  # most recent turns replayed to the relay

    # Provider (relay side, OpenAI-compatible API)
    OPENAI_API_KEY: SecretStr | None = None
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_MODEL: str = "gpt-4o"
    LLM_COMPLETE_MODEL: str = "gpt-4o-mini"
    LLM_STREAM_TIMEOUT: int = 120  # seconds

    # Rate limiting
    RATE_LIMIT_DEFAULT: str = "60/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    def model_post_init(self, __context: object) -> None:
        """Normalise URLs that are joined with request paths."""
        object.__setattr__(self, "RELAY_URL", self.RELAY_URL.rstrip("/"))
        object.__setattr__(self, "LLM_BASE_URL", self.LLM_BASE_URL.rstrip("/"))


settings = Settings()
