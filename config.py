"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

from curriculum import default_curriculum_path

load_dotenv()


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    JSON_SORT_KEYS = False

    # LLM provider: "claude" (default), "openai" or "gemini"
    LLM_PROVIDER = os.environ.get("LLM_PROVIDER", "claude")
    LLM_MODEL = os.environ.get("LLM_MODEL", "claude-3-5-haiku-20241022")
    LLM_MAX_TOKENS = int(os.environ.get("LLM_MAX_TOKENS", "180"))
    # 1 = single attempt, no retry on transient provider errors
    LLM_RETRY_ATTEMPTS = int(os.environ.get("LLM_RETRY_ATTEMPTS", "1"))

    # AI provider keys (CLAUDE_API_KEY is accepted as an alias)
    ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "") or os.environ.get("CLAUDE_API_KEY", "")
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY", "")

    # Curriculum document
    CURRICULUM_PATH = os.environ.get("CURRICULUM_PATH", str(default_curriculum_path()))
    DEFAULT_YEAR_LEVEL = int(os.environ.get("DEFAULT_YEAR_LEVEL", "7"))
    DEFAULT_CURRICULUM = os.environ.get("DEFAULT_CURRICULUM", "NSW")

    # Conversation store
    CONTINUITY_WINDOW_SECONDS = int(os.environ.get("CONTINUITY_WINDOW_SECONDS", "300"))
    RETENTION_DAYS = int(os.environ.get("RETENTION_DAYS", "7"))
    MAX_CONVERSATIONS_PER_USER = int(os.environ.get("MAX_CONVERSATIONS_PER_USER", "50"))
    SWEEP_INTERVAL_HOURS = int(os.environ.get("SWEEP_INTERVAL_HOURS", "1"))

    # Token accounting
    MAX_INPUT_TOKENS = int(os.environ.get("MAX_INPUT_TOKENS", "1000"))
    USER_TOKEN_LIMIT = int(os.environ.get("USER_TOKEN_LIMIT", "5000"))

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Browser client origin for CORS
    CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")

    # Rate limiting (in-memory unless a storage URI is given)
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "") or "memory://"
    CHAT_RATE_LIMIT = os.environ.get("CHAT_RATE_LIMIT", "30 per minute")

    # Shared secret for the cron sweep endpoint
    CRON_SECRET = os.environ.get("CRON_SECRET", "")

    DEBUG_ENDPOINT_ENABLED = True


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    DEBUG_ENDPOINT_ENABLED = False

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if cls.LLM_PROVIDER not in ("claude", "openai", "gemini"):
            errors.append(f"LLM_PROVIDER must be claude, openai or gemini (got {cls.LLM_PROVIDER!r}).")

        if not Path(cls.CURRICULUM_PATH).exists():
            errors.append(f"CURRICULUM_PATH does not exist: {cls.CURRICULUM_PATH}")

        if not provider_api_key(cls.LLM_PROVIDER, vars_of(cls)):
            warnings.warn("No API key set for the LLM provider — tutor replies will use fallback text.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    ANTHROPIC_API_KEY = ""
    OPENAI_API_KEY = ""
    GOOGLE_API_KEY = ""


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


_PROVIDER_KEYS = {
    "claude": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GOOGLE_API_KEY",
}


def vars_of(cfg) -> dict:
    """Upper-case attributes of a config class as a dict."""
    return {k: getattr(cfg, k) for k in dir(cfg) if k.isupper()}


def provider_api_key(provider: str, config) -> str:
    """Return the API key configured for ``provider`` ('' when missing)."""
    name = _PROVIDER_KEYS.get(provider)
    if not name:
        return ""
    return config.get(name, "") or ""
