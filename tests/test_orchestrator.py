"""Tests for the chat turn orchestrator."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from ai_resilience import LLMResult, ProviderUnavailableError
from orchestrator import ChatOrchestrator, ChatRequest
from session_store import ConversationStore
from token_usage import TokenLedger
from tutor import INPUT_TOO_LONG_REPLY, NO_PROVIDER_REPLY, OFF_TOPIC_REPLY, PROVIDER_ERROR_REPLY, TutorSession

T0 = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def ledger():
    return TokenLedger()


@pytest.fixture
def offline(store, ledger, curriculum):
    return ChatOrchestrator(store, ledger, TutorSession(curriculum))


@pytest.fixture
def online(store, ledger, curriculum):
    return ChatOrchestrator(store, ledger, TutorSession(curriculum, api_key="test-key"))


def _req(message, user_id="u1", **kwargs):
    return ChatRequest(message=message, user_id=user_id, **kwargs)


# ── Request parsing ─────────────────────────────────────────


class TestChatRequest:
    def test_defaults(self):
        req = ChatRequest.from_json({"message": "hi"})
        assert req.user_id == "anonymous"
        assert req.year_level == 7
        assert req.curriculum == "NSW"
        assert req.reset_context is False

    def test_tolerates_non_dict_body(self):
        assert ChatRequest.from_json(None).message == ""
        assert ChatRequest.from_json(["not", "a", "dict"]).message == ""

    def test_year_level_coerced(self):
        assert ChatRequest.from_json({"message": "hi", "yearLevel": "7"}).year_level == 7


# ── Turn outcomes ───────────────────────────────────────────


class TestOfflineTurns:
    def test_first_turn_creates_record(self, offline, store):
        body = offline.handle(_req("solve 2x + 5 = 15"), now=T0)

        assert body["conversationId"] == "u1_Equations_7"
        assert body["detectedTopic"] == "Equations"
        assert body["response"] == NO_PROVIDER_REPLY.format(topic="Equations")
        assert body["fallback"] is True
        assert "error" not in body
        assert body["conversationLength"] == 2
        assert body["curriculumScope"] == {"topicInScope": True, "detectedTopic": "Equations"}
        assert body["tokens"]["input"] == 0
        assert [m.role for m in store.get("u1_Equations_7").messages] == ["user", "assistant"]

    def test_follow_up_continues_conversation(self, offline):
        offline.handle(_req("solve 2x + 5 = 15"), now=T0)
        body = offline.handle(_req("x = 5"), now=T0 + timedelta(seconds=20))
        assert body["conversationId"] == "u1_Equations_7"
        assert body["conversationLength"] == 4

    def test_topic_change_within_window_migrates(self, offline, store):
        offline.handle(_req("solve 2x + 5 = 15"), now=T0)
        body = offline.handle(_req("find the mean of 3, 4 and 8 please"), now=T0 + timedelta(seconds=60))

        assert body["conversationId"] == "u1_Analysing Data_7"
        assert body["conversationLength"] == 4
        assert store.get("u1_Equations_7") is None

    def test_topic_change_after_window_starts_fresh(self, offline, store):
        offline.handle(_req("solve 2x + 5 = 15"), now=T0)
        body = offline.handle(_req("find the mean of 3, 4 and 8 please"), now=T0 + timedelta(minutes=10))

        assert body["conversationLength"] == 2
        assert store.get("u1_Equations_7") is not None

    def test_definition_short_circuit(self, offline, store):
        body = offline.handle(_req("define coefficient"), now=T0)

        assert body["definitionProvided"] == "coefficient"
        assert "3x + 5" in body["response"]
        assert body["conversationId"] == "u1_Algebra & Equations_7"
        record = store.get("u1_Algebra & Equations_7")
        assert record.curriculum_loaded is True
        assert len(record.messages) == 2

    def test_out_of_scope_leaves_store_untouched(self, offline, store):
        body = offline.handle(_req("tell me about the weather"), now=T0)
        assert body["error"] == "out_of_scope"
        assert body["detectedTopic"] == "Mathematics"
        assert len(store) == 0

    def test_input_too_long(self, offline, store):
        message = "solve " + "7" * 4100
        body = offline.handle(_req(message), now=T0)

        assert body["error"] == "input_too_long"
        assert body["response"] == INPUT_TOO_LONG_REPLY
        record = store.get("u1_Equations_7")
        assert [m.role for m in record.messages] == ["user"]
        assert record.messages[0].rejected is True
        assert len(record.messages[0].content) <= 203

    def test_off_topic(self, offline, store):
        body = offline.handle(_req("let's talk about movies with a big area"), now=T0)
        assert body["error"] == "off_topic"
        assert body["response"] == OFF_TOPIC_REPLY
        assert len(store.get(body["conversationId"]).messages) == 1

    def test_reset_context_starts_over(self, offline):
        offline.handle(_req("solve 2x + 5 = 15"), now=T0)
        body = offline.handle(_req("solve 2x + 5 = 15", reset_context=True), now=T0 + timedelta(seconds=10))
        assert body["conversationLength"] == 2


class TestProviderTurns:
    @patch("tutor.resilient_llm_call")
    def test_success_records_tokens(self, mock_call, online, store, ledger):
        mock_call.return_value = LLMResult("What could you undo first?", 120, 30, "claude", "m")

        body = online.handle(_req("solve 2x + 5 = 15"), now=T0)

        assert body["response"] == "What could you undo first?"
        assert body["tokens"] == {
            "input": 120, "output": 30, "conversationTotal": 150, "totalUsed": 150, "limit": 5000,
        }
        assert "fallback" not in body
        assert ledger.get("u1").used == 150
        record = store.get("u1_Equations_7")
        assert record.total_tokens == 150
        assert record.curriculum_loaded is True

    @patch("tutor.resilient_llm_call", side_effect=ProviderUnavailableError("down"))
    def test_failure_uses_fallback(self, mock_call, online, store, ledger):
        body = online.handle(_req("solve 2x + 5 = 15"), now=T0)

        assert body["response"] == PROVIDER_ERROR_REPLY
        assert body["error"] == "provider_unavailable"
        assert body["fallback"] is True
        assert body["conversationLength"] == 2
        assert ledger.get("u1").used == 0

    @patch("tutor.resilient_llm_call")
    def test_rejected_input_never_reaches_provider(self, mock_call, online, store):
        mock_call.return_value = LLMResult("What is x on its own?", 40, 8, "claude", "m")
        long_message = "solve " + "7" * 8000

        assert online.handle(_req(long_message), now=T0)["error"] == "input_too_long"
        mock_call.assert_not_called()

        body = online.handle(_req("solve 2x + 5 = 15"), now=T0 + timedelta(seconds=20))
        assert body["conversationId"] == "u1_Equations_7"

        sent = mock_call.call_args.kwargs["messages"]
        assert all(len(m["content"]) < 4000 for m in sent)
        assert not any("7777777777" in m["content"] for m in sent)
        assert sent[-1]["content"] == "solve 2x + 5 = 15"

    @patch("tutor.resilient_llm_call")
    def test_users_do_not_share_records(self, mock_call, online, store):
        mock_call.return_value = LLMResult("Which step comes first?", 10, 5, "claude", "m")
        online.handle(_req("solve 2x + 5 = 15", user_id="amy"), now=T0)
        online.handle(_req("solve 2x + 5 = 15", user_id="ben"), now=T0)

        assert len(store.get("amy_Equations_7").messages) == 2
        assert len(store.get("ben_Equations_7").messages) == 2


class TestOpportunisticSweep:
    def test_turn_sweeps_only_its_user(self, curriculum, ledger):
        store = ConversationStore()
        orchestrator = ChatOrchestrator(store, ledger, TutorSession(curriculum))
        orchestrator.handle(_req("solve 2x + 5 = 15", user_id="amy"), now=T0)
        orchestrator.handle(_req("solve 2x + 5 = 15", user_id="ben"), now=T0)

        later = T0 + timedelta(days=8)
        orchestrator.handle(_req("find the mean of 3, 4 and 8 please", user_id="amy"), now=later)

        assert store.get("amy_Equations_7") is None
        assert store.get("ben_Equations_7") is not None
