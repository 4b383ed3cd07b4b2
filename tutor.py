"""
AI Tutor — Socratic teaching mode for NSW Year 7 mathematics.

Builds the message list sent to the LLM from a stored conversation
(curriculum context on first use of a topic, summary of older turns) and
provides the canned replies used when no provider is available.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from ai_resilience import LLMResult, resilient_llm_call
from config import provider_api_key

if TYPE_CHECKING:
    from curriculum import Curriculum
    from session_store import ConversationRecord

logger = logging.getLogger(__name__)

SUMMARY_THRESHOLD = 14
KEEP_RECENT = 10
SUMMARY_PREFIX = "Earlier in our conversation"
CONTEXT_PREFIX = "[Y7"

NO_PROVIDER_REPLY = (
    "Great question about {topic}! What do you think might be the first step? "
    "What comes to mind when you look at this problem? (Add an LLM API key for AI responses)"
)
PROVIDER_ERROR_REPLY = (
    "I'm having a technical hiccup right now. While I sort this out, can you tell me what you "
    "were thinking about that problem? What approach were you considering?"
)
EMPTY_COMPLETION_REPLY = "What do you think we should try next? What comes to mind?"
INPUT_TOO_LONG_REPLY = (
    "That's quite a lot to work with! Can you break that down and ask me about just one part of "
    "your problem? What's the main thing you're stuck on?"
)
OFF_TOPIC_REPLY = (
    "I'm here to help you discover answers in Year 7 mathematics! What specific math problem or "
    "concept would you like to explore? What are you curious about?"
)


def summarize_old_context(messages: list[dict], max_items: int = 4, snippet: int = 40) -> str:
    """Compress older turns into one line of context.

    Keeps assistant turns and substantive (> 10 chars) student turns.
    """
    parts = []
    for m in messages:
        if m["role"] == "assistant" or (m["role"] == "user" and len(m["content"]) > 10):
            content = m["content"][:snippet]
            parts.append(f"Student asked: {content}" if m["role"] == "user" else f"I guided: {content}")
        if len(parts) >= max_items:
            break
    return f"{SUMMARY_PREFIX}: {'. '.join(parts)}..." if parts else ""


def clean_for_provider(messages: list[dict]) -> list[dict]:
    """Drop stray system messages and turn context/summary into user notes."""
    cleaned = []
    for m in messages:
        if m["role"] == "system":
            if not (m["content"].startswith(SUMMARY_PREFIX) or m["content"].startswith(CONTEXT_PREFIX)):
                continue
            cleaned.append({"role": "user", "content": f"[Context: {m['content']}]"})
        else:
            cleaned.append({"role": m["role"], "content": m["content"]})
    return cleaned


# ── Fraction-to-decimal scaffold ──────────────────────────

_FRACTION_TO_DECIMAL = [
    re.compile(r"convert.*?(\d+/\d+).*decimal", re.I),
    re.compile(r"(\d+/\d+).*to.*decimal", re.I),
    re.compile(r"change.*?(\d+/\d+).*decimal", re.I),
    re.compile(r"turn.*?(\d+/\d+).*decimal", re.I),
    re.compile(r"(\d+/\d+).*as.*decimal", re.I),
    re.compile(r"decimal.*form.*?(\d+/\d+)", re.I),
]


def detect_fraction_to_decimal(message: str) -> str | None:
    """Return the fraction (e.g. '1/3') in a fraction-to-decimal request."""
    for pattern in _FRACTION_TO_DECIMAL:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return None


def current_scaffold_step(record: ConversationRecord) -> int:
    """Which long-division step the student has reached, from their last reply."""
    recent_user = [m for m in record.messages[-4:] if m.role == "user"]
    last = recent_user[-1].content.lower() if recent_user else ""
    if "division" in last or "divide" in last:
        return 2
    if "carry" in last or "remainder" in last:
        return 4
    if "pattern" in last or "repeat" in last:
        return 5
    return 0


def fraction_scaffold_question(fraction: str, step: int) -> str:
    numerator, denominator = fraction.split("/")
    d = int(denominator)
    questions = {
        0: f"Let's convert {fraction} to a decimal! First, can you try multiplying the denominator "
           f"{denominator} by something to make it 10, 100, or 1000? What happens when you try?",
        1: f"Since we can't easily make {denominator} into 10, 100, or 1000, we'll use long division. "
           f"Can you set up a division bracket like this: {denominator}){numerator}.000000 - where do "
           f"you think the decimal point in the answer should go?",
        2: f"Perfect! Now, since {denominator} is bigger than {numerator}, we can't divide yet. What "
           f"should we do to the {numerator} to make it bigger so we can divide by {denominator}?",
        3: f"Right! We add the first zero. Now, what's 10 divided by {denominator}? What's the quotient "
           f"and what's the remainder?",
        6: "You're discovering a pattern! What do you think will happen if we keep dividing? What "
           "does this tell us about the decimal?",
    }
    if d > 0:
        quotient, remainder = divmod(10, d)
        questions[4] = (
            f"Great! So we get {quotient} with remainder {remainder}. Now what do we do with that "
            f"remainder {remainder}? What's the next step?"
        )
        questions[5] = (
            f"Exactly! We bring down the next zero to make {remainder}0 again. What do you notice? "
            f"Are we getting the same division problem again?"
        )
    return questions.get(step, questions[0])


# ── Tutor session ─────────────────────────────────────────

class TutorSession:
    """One LLM-backed tutoring reply over a stored conversation."""

    def __init__(
        self,
        curriculum: Curriculum,
        provider: str = "claude",
        model: str = "claude-3-5-haiku-20241022",
        api_key: str = "",
        max_tokens: int = 180,
        attempts: int = 1,
    ) -> None:
        self.curriculum = curriculum
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.attempts = attempts

    @classmethod
    def from_config(cls, config, curriculum: Curriculum) -> TutorSession:
        provider = config.get("LLM_PROVIDER", "claude")
        return cls(
            curriculum=curriculum,
            provider=provider,
            model=config.get("LLM_MODEL", "claude-3-5-haiku-20241022"),
            api_key=provider_api_key(provider, config),
            max_tokens=config.get("LLM_MAX_TOKENS", 180),
            attempts=config.get("LLM_RETRY_ATTEMPTS", 1),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def prepare_messages(self, record: ConversationRecord, topic: str) -> list[dict]:
        """Provider-ready messages for ``record``.

        Injects the topic's curriculum context the first time the topic is
        seen (and marks it loaded on the record); summarizes everything but
        the last KEEP_RECENT messages once the list exceeds SUMMARY_THRESHOLD.
        Messages rejected by the input gate are never sent.
        """
        to_send = [{"role": m.role, "content": m.content} for m in record.messages if not m.rejected]

        if not record.curriculum_loaded or record.last_curriculum_topic != topic:
            context = self.curriculum.context_for(topic)
            if context:
                to_send.insert(0, {"role": "system", "content": f"[{context}]"})
                logger.debug("Added curriculum context: %s", context)
            record.curriculum_loaded = True
            record.last_curriculum_topic = topic

        if len(to_send) > SUMMARY_THRESHOLD:
            old = to_send[:-KEEP_RECENT]
            to_send = to_send[-KEEP_RECENT:]
            summary = summarize_old_context(old)
            if summary:
                to_send.insert(0, {"role": "system", "content": summary})
            logger.debug("Summarized %d old messages, keeping %d", len(old), len(to_send))

        return clean_for_provider(to_send)

    def system_prompt(self, subject: str, message: str = "") -> str:
        return self.curriculum.build_system_prompt(subject, message)

    def respond(self, record: ConversationRecord, topic: str, message: str = "") -> LLMResult:
        """Call the provider for the next tutor turn. Provider errors propagate."""
        messages = self.prepare_messages(record, topic)
        logger.info(
            "Sending %d messages to %s for %s", len(messages), self.provider, record.subject,
        )
        result = resilient_llm_call(
            provider=self.provider,
            model=self.model,
            messages=messages,
            system=self.system_prompt(record.subject, message),
            max_tokens=self.max_tokens,
            api_key=self.api_key,
            attempts=self.attempts,
        )
        if not result.text.strip():
            result.text = EMPTY_COMPLETION_REPLY
        return result

    def offline_reply(self, record: ConversationRecord, topic: str, message: str) -> str:
        """Reply used when no provider key is configured."""
        fraction = detect_fraction_to_decimal(message)
        if fraction:
            return fraction_scaffold_question(fraction, current_scaffold_step(record))
        return NO_PROVIDER_REPLY.format(topic=topic)
