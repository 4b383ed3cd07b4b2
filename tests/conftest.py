"""
Test fixtures for the StudyBuddy tutor.

Provides app and client fixtures backed by fresh in-memory services, plus a
parsed curriculum. No LLM key is configured, so chat turns use fallback text
unless a test patches the provider call.
"""

from __future__ import annotations

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Fresh circuit breaker and service singletons for every test."""
    from ai_resilience import get_circuit_breaker
    from extensions import ServiceManager

    get_circuit_breaker().reset()
    ServiceManager.reset()
    yield
    get_circuit_breaker().reset()
    ServiceManager.reset()


@pytest.fixture
def app():
    from app import create_app

    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "CRON_SECRET": "test-cron-secret",
        "ANTHROPIC_API_KEY": "",
        "DEBUG_ENDPOINT_ENABLED": True,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def curriculum():
    from curriculum import load_curriculum
    return load_curriculum()


@pytest.fixture
def store():
    from session_store import ConversationStore
    return ConversationStore()
