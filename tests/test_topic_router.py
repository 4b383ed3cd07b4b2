"""Tests for topic routing, scope gating and the off-topic filter."""

from __future__ import annotations

from session_store import ConversationRecord
from topic_router import (
    DEFAULT_TOPIC,
    check_scope,
    get_definition,
    is_follow_up,
    is_on_topic,
    resolve_topic,
)


# ── Follow-up detection ─────────────────────────────────────


class TestIsFollowUp:
    def test_short_reply(self):
        assert is_follow_up("I think it's 5")

    def test_leading_continuation_word(self):
        assert is_follow_up("can you explain how the whole thing works in detail")

    def test_arithmetic_only(self):
        assert is_follow_up("12 + 30 = 42 - 2 = 40 / 2 * 3")

    def test_new_question_is_not_follow_up(self):
        assert not is_follow_up("Tell me about solving equations with brackets")


# ── resolve_topic ───────────────────────────────────────────


class TestResolveTopic:
    def test_catalog_match(self, curriculum):
        assert resolve_topic("solve 2x + 5 = 15", curriculum) == "Equations"

    def test_catalog_first_match_wins(self, curriculum):
        # "percentage" (Fractions...) appears before "mean" (Analysing Data) in the catalog
        assert resolve_topic("the mean percentage score for our class", curriculum) == \
            "Fractions, Decimals and Percentages"

    def test_follow_up_keeps_prior_topic(self, curriculum):
        prior = ConversationRecord(user_id="u", subject="Equations")
        assert resolve_topic("5", curriculum, prior) == "Equations"

    def test_follow_up_ignores_default_prior(self, curriculum):
        prior = ConversationRecord(user_id="u", subject=DEFAULT_TOPIC)
        assert resolve_topic("ok", curriculum, prior) == DEFAULT_TOPIC

    def test_fallback_table(self, curriculum):
        assert resolve_topic("what are prime numbers", curriculum) == "Number Theory"

    def test_fallback_tie_keeps_first_declared(self, curriculum):
        assert resolve_topic("divide the fraction", curriculum) == "Fractions & Percentages"

    def test_nothing_matches(self, curriculum):
        assert resolve_topic("tell me about the weather", curriculum) == DEFAULT_TOPIC

    def test_empty_message(self, curriculum):
        assert resolve_topic("", curriculum) == DEFAULT_TOPIC


# ── check_scope ─────────────────────────────────────────────


class TestCheckScope:
    def test_catalog_topic_in_scope(self, curriculum):
        result = check_scope("solve 2x + 5 = 15", "Equations", curriculum)
        assert result.in_scope
        assert result.refusal is None

    def test_fallback_label_matched_by_subtopic(self, curriculum):
        assert check_scope("solve for x", "Algebra & Equations", curriculum).in_scope

    def test_out_of_scope_topic_refused(self, curriculum):
        result = check_scope("what are prime numbers", "Number Theory", curriculum)
        assert not result.in_scope
        assert "basic Year 7 concepts" in result.refusal
        assert "fractions or basic algebra" in result.refusal

    def test_default_topic_out_of_scope(self, curriculum):
        assert not check_scope("tell me about the weather", DEFAULT_TOPIC, curriculum).in_scope

    def test_definition_request(self, curriculum):
        result = check_scope("define coefficient", DEFAULT_TOPIC, curriculum)
        assert result.in_scope
        assert result.definition_request == "coefficient"

    def test_glossary_verbs_checked_first(self, curriculum):
        result = check_scope("explain what evaluate means for a term", DEFAULT_TOPIC, curriculum)
        assert result.definition_request == "evaluate"


# ── Definitions and off-topic filter ────────────────────────


class TestDefinitions:
    def test_known_term(self):
        definition = get_definition("Coefficient")
        assert definition is not None
        assert "3x + 5" in definition.socratic

    def test_unknown_term(self):
        assert get_definition("mean") is None
        assert get_definition("") is None


class TestIsOnTopic:
    def test_math_question(self):
        assert is_on_topic("solve 3x = 9")

    def test_off_topic_phrase(self):
        assert not is_on_topic("tell me about movies")

    def test_homework_phrase_wins(self):
        assert is_on_topic("i need help with movies homework")

    def test_chatter_rejected(self):
        assert not is_on_topic("hello there")

    def test_short_follow_up_word(self):
        assert is_on_topic("what about it")
