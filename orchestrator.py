"""Orchestrator — The Head Tutor.

Runs one chat turn end to end: topic routing, the curriculum scope gate,
conversation resolution, input gates, the LLM call and persistence. Every
outcome is a response body; provider failures degrade to canned tutor text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ai_resilience import CostTracker
from session_store import ConversationRecord, ConversationStore, conversation_key
from token_usage import TokenLedger
from topic_router import (
    DEFAULT_TOPIC,
    DEFINITION_TOPIC,
    check_scope,
    get_definition,
    is_on_topic,
    resolve_topic,
)
from tutor import INPUT_TOO_LONG_REPLY, OFF_TOPIC_REPLY, PROVIDER_ERROR_REPLY, TutorSession

logger = logging.getLogger(__name__)

# Over-long inputs are kept on the record as a preview of this many characters.
REJECTED_PREVIEW_CHARS = 200


def _coerce_year(value: Any, default: int) -> int | str:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return str(value)


@dataclass
class ChatRequest:
    message: str
    user_id: str = "anonymous"
    subject: str = DEFAULT_TOPIC
    year_level: int | str = 7
    curriculum: str = "NSW"
    reset_context: bool = False

    @classmethod
    def from_json(cls, data: dict | None, default_year: int = 7, default_curriculum: str = "NSW") -> ChatRequest:
        """Build a request from a JSON body, tolerating missing or odd fields."""
        data = data if isinstance(data, dict) else {}
        message = data.get("message")
        return cls(
            message="" if message is None else str(message),
            user_id=str(data.get("userId") or "anonymous"),
            subject=str(data.get("subject") or DEFAULT_TOPIC),
            year_level=_coerce_year(data.get("yearLevel"), default_year),
            curriculum=str(data.get("curriculum") or default_curriculum),
            reset_context=bool(data.get("resetContext", False)),
        )


class ChatOrchestrator:
    """Central routing engine for a single tutoring turn."""

    def __init__(
        self,
        store: ConversationStore,
        ledger: TokenLedger,
        tutor: TutorSession,
        max_input_tokens: int = 1000,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.tutor = tutor
        self.curriculum = tutor.curriculum
        self.max_input_tokens = max_input_tokens

    def handle(self, req: ChatRequest, now: datetime | None = None) -> dict:
        """Process ``req``; turns for the same user run one at a time."""
        with self.store.user_lock(req.user_id):
            return self._handle_turn(req, now)

    # ── Turn ────────────────────────────────────────────────

    def _handle_turn(self, req: ChatRequest, now: datetime | None) -> dict:
        message = req.message
        logger.info("Chat message from %s (%d chars)", req.user_id, len(message))

        prior = self.store.find_most_recent(req.user_id)
        topic = resolve_topic(message, self.curriculum, prior)
        scope = check_scope(message, topic, self.curriculum)
        logger.info("Detected topic: %s (in scope: %s)", topic, scope.in_scope)

        if scope.definition_request:
            definition = get_definition(scope.definition_request)
            if definition is not None:
                return self._definition_turn(req, scope.definition_request, definition.socratic, now)

        if not scope.in_scope:
            logger.info("Out of Year %s scope: %s", req.year_level, topic)
            return {
                "response": scope.refusal,
                "error": "out_of_scope",
                "detectedTopic": topic,
                "yearLevel": req.year_level,
                "curriculum": req.curriculum,
            }

        record = self.store.resolve(
            req.user_id, topic, req.year_level,
            reset_requested=req.reset_context,
            curriculum=req.curriculum,
            now=now,
        )

        input_estimate = CostTracker.estimate_tokens(message)
        if input_estimate > self.max_input_tokens:
            logger.info("Input too long: ~%d tokens", input_estimate)
            preview = message[:REJECTED_PREVIEW_CHARS] + "..."
            return self._rejected_turn(record, req, topic, preview, INPUT_TOO_LONG_REPLY, "input_too_long",
                                       now, exclude_from_context=True)

        if not is_on_topic(message):
            return self._rejected_turn(record, req, topic, message, OFF_TOPIC_REPLY, "off_topic", now)

        self.store.append(record, "user", message, now=now)
        extra: dict[str, Any] = {}
        input_tokens = output_tokens = 0

        if not self.tutor.configured:
            reply = self.tutor.offline_reply(record, topic, message)
            extra["fallback"] = True
        else:
            try:
                result = self.tutor.respond(record, topic, message)
            except Exception as exc:
                logger.warning("LLM call failed for %s: %s", record.key, exc, exc_info=True,
                               extra={"user_id": req.user_id, "conversation_id": record.key})
                reply = PROVIDER_ERROR_REPLY
                extra.update({"error": "provider_unavailable", "fallback": True})
            else:
                reply = result.text
                input_tokens, output_tokens = result.input_tokens, result.output_tokens
                record.add_tokens(result.total_tokens)

        self.store.append(record, "assistant", reply, now=now)
        usage = self.ledger.record(req.user_id, input_tokens + output_tokens)

        self.store.put(record)
        self.store.sweep(now=now, user_id=req.user_id)

        body = self._turn_body(record, req, topic, reply, now)
        body["tokens"] = {
            "input": input_tokens,
            "output": output_tokens,
            "conversationTotal": record.total_tokens,
            "totalUsed": usage.used,
            "limit": usage.limit,
        }
        body["curriculumScope"] = {"topicInScope": scope.in_scope, "detectedTopic": topic}
        body.update(extra)
        logger.info(
            "Turn complete for %s: %d messages", record.key, len(record.messages),
            extra={"user_id": req.user_id, "conversation_id": record.key,
                   "topic": topic, "tokens": input_tokens + output_tokens},
        )
        return body

    # ── Short-circuit turns ─────────────────────────────────

    def _definition_turn(self, req: ChatRequest, term: str, reply: str, now: datetime | None) -> dict:
        key = conversation_key(req.user_id, DEFINITION_TOPIC, req.year_level)
        record = self.store.get(key)
        if record is None:
            ts = now or datetime.now()
            record = ConversationRecord(
                user_id=req.user_id,
                subject=DEFINITION_TOPIC,
                year_level=req.year_level,
                curriculum=req.curriculum,
                created_at=ts,
                last_active=ts,
                curriculum_loaded=True,
                last_curriculum_topic=DEFINITION_TOPIC,
            )
        self.store.append(record, "user", req.message, now=now)
        self.store.append(record, "assistant", reply, now=now)
        self.store.put(record)
        logger.info("Provided Socratic definition for: %s", term)

        body = self._turn_body(record, req, DEFINITION_TOPIC, reply, now)
        body["definitionProvided"] = term
        return body

    def _rejected_turn(
        self,
        record: ConversationRecord,
        req: ChatRequest,
        topic: str,
        message: str,
        reply: str,
        error: str,
        now: datetime | None,
        exclude_from_context: bool = False,
    ) -> dict:
        """Keep the student's message on the record but skip the LLM.

        With ``exclude_from_context`` the message is flagged so later turns
        never forward it to the provider.
        """
        self.store.append(record, "user", message, now=now, rejected=exclude_from_context)
        self.store.put(record)
        return {
            "response": reply,
            "error": error,
            "detectedTopic": topic,
            "conversationId": record.key,
            "yearLevel": req.year_level,
            "curriculum": req.curriculum,
        }

    @staticmethod
    def _turn_body(record: ConversationRecord, req: ChatRequest, topic: str, reply: str,
                   now: datetime | None) -> dict:
        return {
            "response": reply,
            "subject": record.subject,
            "detectedTopic": topic,
            "yearLevel": req.year_level,
            "curriculum": req.curriculum,
            "conversationId": record.key,
            "conversationLength": len(record.messages),
            "conversationAge": record.age_minutes(now),
        }
