"""Tests for tutor message preparation, fallback replies and the LLM hand-off."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from ai_resilience import LLMResult
from session_store import ConversationRecord, Message
from tutor import (
    EMPTY_COMPLETION_REPLY,
    KEEP_RECENT,
    NO_PROVIDER_REPLY,
    SUMMARY_PREFIX,
    TutorSession,
    clean_for_provider,
    current_scaffold_step,
    detect_fraction_to_decimal,
    fraction_scaffold_question,
    summarize_old_context,
)

T0 = datetime(2026, 3, 2, 9, 0, 0)


def _record(subject="Equations", turns=1):
    record = ConversationRecord(user_id="u1", subject=subject)
    for i in range(turns):
        record.messages.append(Message("user", f"student message number {i}", T0 + timedelta(seconds=i)))
        record.messages.append(Message("assistant", f"tutor question {i}?", T0 + timedelta(seconds=i)))
    return record


@pytest.fixture
def tutor(curriculum):
    return TutorSession(curriculum, api_key="test-key")


# ── Helpers ─────────────────────────────────────────────────


class TestHelpers:
    def test_summary_keeps_substantive_turns(self):
        messages = [
            {"role": "user", "content": "ok"},
            {"role": "user", "content": "how do I solve 2x + 5 = 15?"},
            {"role": "assistant", "content": "What could you do to both sides?"},
        ]
        summary = summarize_old_context(messages)
        assert summary.startswith(SUMMARY_PREFIX)
        assert "Student asked: how do I solve" in summary
        assert "I guided: What could you do" in summary
        assert "ok." not in summary

    def test_summary_empty(self):
        assert summarize_old_context([{"role": "user", "content": "ok"}]) == ""

    def test_clean_for_provider(self):
        cleaned = clean_for_provider([
            {"role": "system", "content": "[Y7 Equations: two step equations]"},
            {"role": "system", "content": "internal note"},
            {"role": "user", "content": "hi"},
        ])
        assert cleaned == [
            {"role": "user", "content": "[Context: [Y7 Equations: two step equations]]"},
            {"role": "user", "content": "hi"},
        ]


# ── Fraction-to-decimal scaffold ────────────────────────────


class TestFractionScaffold:
    @pytest.mark.parametrize("message", [
        "convert 1/3 to a decimal",
        "what is 3/8 as a decimal",
        "change 2/7 into decimal form",
    ])
    def test_detects_fraction(self, message):
        assert detect_fraction_to_decimal(message) is not None

    def test_no_fraction(self):
        assert detect_fraction_to_decimal("solve 2x + 5 = 15") is None

    def test_step_from_last_student_reply(self):
        record = _record()
        record.messages.append(Message("user", "we need to divide", T0))
        assert current_scaffold_step(record) == 2

    def test_step_questions(self):
        assert "make it 10, 100, or 1000" in fraction_scaffold_question("1/3", 0)
        assert "3 with remainder 1" in fraction_scaffold_question("1/3", 4)
        assert fraction_scaffold_question("1/3", 99) == fraction_scaffold_question("1/3", 0)


# ── Message preparation ─────────────────────────────────────


class TestPrepareMessages:
    def test_injects_context_once(self, tutor):
        record = _record()
        messages = tutor.prepare_messages(record, "Equations")
        assert messages[0]["content"].startswith("[Context: [Y7 Equations")
        assert record.curriculum_loaded is True
        assert record.last_curriculum_topic == "Equations"

        again = tutor.prepare_messages(record, "Equations")
        assert not again[0]["content"].startswith("[Context:")

    def test_no_context_for_unknown_label(self, tutor):
        record = _record(subject="Algebra & Equations")
        messages = tutor.prepare_messages(record, "Algebra & Equations")
        assert messages[0] == {"role": "user", "content": "student message number 0"}
        assert record.curriculum_loaded is True

    def test_long_history_summarized(self, tutor):
        record = _record(turns=10)
        record.curriculum_loaded = True
        record.last_curriculum_topic = "Equations"
        messages = tutor.prepare_messages(record, "Equations")
        assert len(messages) == KEEP_RECENT + 1
        assert messages[0]["content"].startswith(f"[Context: {SUMMARY_PREFIX}")
        assert messages[-1]["content"] == "tutor question 9?"

    def test_rejected_messages_skipped(self, tutor):
        record = _record(subject="Algebra & Equations")
        record.messages.insert(0, Message("user", "solve " + "9" * 200 + "...", T0, rejected=True))
        messages = tutor.prepare_messages(record, "Algebra & Equations")
        assert messages == [
            {"role": "user", "content": "student message number 0"},
            {"role": "assistant", "content": "tutor question 0?"},
        ]


# ── Provider hand-off ───────────────────────────────────────


class TestRespond:
    @patch("tutor.resilient_llm_call")
    def test_passes_prompt_and_settings(self, mock_call, tutor):
        mock_call.return_value = LLMResult("What is the first step?", 100, 20, "claude", "m")
        record = _record()
        result = tutor.respond(record, "Equations", "solve 2x + 5 = 15")

        assert result.text == "What is the first step?"
        kwargs = mock_call.call_args.kwargs
        assert kwargs["provider"] == "claude"
        assert kwargs["max_tokens"] == 180
        assert kwargs["api_key"] == "test-key"
        assert "TOPIC: Equations" in kwargs["system"]

    @patch("tutor.resilient_llm_call")
    def test_empty_completion_replaced(self, mock_call, tutor):
        mock_call.return_value = LLMResult("   ", 100, 0, "claude", "m")
        assert tutor.respond(_record(), "Equations").text == EMPTY_COMPLETION_REPLY

    @patch("tutor.resilient_llm_call", side_effect=RuntimeError("boom"))
    def test_provider_errors_propagate(self, mock_call, tutor):
        with pytest.raises(RuntimeError):
            tutor.respond(_record(), "Equations")


class TestOfflineReply:
    def test_generic_reply_names_topic(self, curriculum):
        tutor = TutorSession(curriculum)
        assert not tutor.configured
        assert tutor.offline_reply(_record(), "Equations", "solve 2x + 5 = 15") == \
            NO_PROVIDER_REPLY.format(topic="Equations")

    def test_fraction_request_gets_scaffold_question(self, curriculum):
        tutor = TutorSession(curriculum)
        reply = tutor.offline_reply(_record(), "Fractions, Decimals and Percentages",
                                    "convert 1/3 to a decimal")
        assert "convert 1/3 to a decimal" in reply.lower()

    def test_from_config(self, curriculum):
        tutor = TutorSession.from_config(
            {"LLM_PROVIDER": "openai", "LLM_MODEL": "gpt-4o-mini", "OPENAI_API_KEY": "sk-test"},
            curriculum,
        )
        assert tutor.provider == "openai"
        assert tutor.api_key == "sk-test"
        assert tutor.configured
