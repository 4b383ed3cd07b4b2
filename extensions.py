"""
Singleton management for the shared tutor services and rate limiter.

The conversation store, token ledger and curriculum live for the whole
process; ``ServiceManager.init_app`` rebuilds them from app config.
"""

from __future__ import annotations

import logging

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=["200 per hour"])


class ServiceManager:
    """Process-wide ConversationStore, TokenLedger and Curriculum."""

    _store = None
    _ledger = None
    _curriculum = None

    @classmethod
    def init_app(cls, app) -> None:
        from curriculum import load_curriculum
        from session_store import ConversationStore
        from token_usage import TokenLedger

        cls._curriculum = load_curriculum(app.config["CURRICULUM_PATH"])
        cls._store = ConversationStore(
            continuity_window_seconds=app.config.get("CONTINUITY_WINDOW_SECONDS", 300),
            retention_days=app.config.get("RETENTION_DAYS", 7),
            max_per_user=app.config.get("MAX_CONVERSATIONS_PER_USER", 50),
        )
        cls._ledger = TokenLedger(default_limit=app.config.get("USER_TOKEN_LIMIT", 5000))
        app.extensions["tutor_services"] = cls
        logger.info(
            "Tutor services ready: %d curriculum topics, continuity window %ss",
            len(cls._curriculum.topic_catalog),
            app.config.get("CONTINUITY_WINDOW_SECONDS", 300),
        )

    @classmethod
    def get_store(cls):
        if cls._store is None:
            from session_store import ConversationStore
            cls._store = ConversationStore()
        return cls._store

    @classmethod
    def get_ledger(cls):
        if cls._ledger is None:
            from token_usage import TokenLedger
            cls._ledger = TokenLedger()
        return cls._ledger

    @classmethod
    def get_curriculum(cls):
        if cls._curriculum is None:
            from curriculum import load_curriculum
            cls._curriculum = load_curriculum()
        return cls._curriculum

    @classmethod
    def reset(cls):
        """Drop all singletons (tests and reloads)."""
        cls._store = None
        cls._ledger = None
        cls._curriculum = None
