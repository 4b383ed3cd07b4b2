"""Chat routes — tutoring turns, conversation reset/status, token usage."""

from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from extensions import ServiceManager, limiter
from orchestrator import ChatOrchestrator, ChatRequest
from session_store import conversation_key
from topic_router import DEFAULT_TOPIC
from tutor import TutorSession

logger = logging.getLogger(__name__)

bp = Blueprint("chat", __name__)


def _chat_rate_limit() -> str:
    return current_app.config.get("CHAT_RATE_LIMIT", "30 per minute")


def _orchestrator() -> ChatOrchestrator:
    cfg = current_app.config
    return ChatOrchestrator(
        store=ServiceManager.get_store(),
        ledger=ServiceManager.get_ledger(),
        tutor=TutorSession.from_config(cfg, ServiceManager.get_curriculum()),
        max_input_tokens=cfg.get("MAX_INPUT_TOKENS", 1000),
    )


# ── Tutoring turn ─────────────────────────────────────

@bp.route("/api/chat", methods=["POST"])
@limiter.limit(_chat_rate_limit)
def api_chat():
    req = ChatRequest.from_json(
        request.get_json(silent=True),
        default_year=current_app.config.get("DEFAULT_YEAR_LEVEL", 7),
        default_curriculum=current_app.config.get("DEFAULT_CURRICULUM", "NSW"),
    )
    return jsonify(_orchestrator().handle(req))


@bp.route("/api/chat/reset", methods=["POST"])
def api_chat_reset():
    data = request.get_json(silent=True)
    data = data if isinstance(data, dict) else {}
    user_id = str(data.get("userId") or "anonymous")
    key = conversation_key(
        user_id,
        data.get("subject") or DEFAULT_TOPIC,
        data.get("yearLevel") or current_app.config.get("DEFAULT_YEAR_LEVEL", 7),
    )

    store = ServiceManager.get_store()
    with store.user_lock(user_id):
        existed = store.delete(key)
    logger.info("Conversation reset requested for %s (existed: %s)", key, existed)

    return jsonify({
        "success": True,
        "message": ("Conversation context reset - ready for a fresh start!"
                    if existed else "No existing conversation found"),
        "conversationId": key,
    })


# ── Introspection ─────────────────────────────────────

@bp.route("/api/chat/status/<user_id>")
def api_chat_status(user_id):
    store = ServiceManager.get_store()
    now = datetime.now()
    conversations = [r.summary(now) for r in store.list_for_user(user_id)]
    return jsonify({
        "conversations": conversations,
        "totalConversations": len(conversations),
        "totalActiveConversations": len(store),
    })


@bp.route("/api/user/<user_id>/tokens")
def api_user_tokens(user_id):
    usage = ServiceManager.get_ledger().get(user_id)
    return jsonify({
        "tokensUsed": usage.used,
        "tokensLimit": usage.limit,
        "percentage": usage.percentage,
    })
