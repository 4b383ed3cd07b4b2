"""Core routes — service banner, health checks, debug info, cron."""

from __future__ import annotations

import logging
import time
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from config import provider_api_key
from extensions import ServiceManager

logger = logging.getLogger(__name__)

bp = Blueprint("core", __name__)


def _llm_configured() -> bool:
    cfg = current_app.config
    return bool(provider_api_key(cfg.get("LLM_PROVIDER", "claude"), cfg))


@bp.route("/")
def index():
    return jsonify({
        "message": "StudyBuddy tutor backend is running!",
        "llmConfigured": _llm_configured(),
        "timestamp": datetime.now().isoformat(),
        "activeConversations": len(ServiceManager.get_store()),
        "curriculumLoaded": bool(ServiceManager.get_curriculum().topic_catalog),
    })


# ── Health checks ─────────────────────────────────────────

_start_time = time.time()


@bp.route("/health")
def health():
    uptime = int(time.time() - _start_time)
    return jsonify({"status": "ok", "uptime_seconds": uptime})


@bp.route("/live")
def live():
    return jsonify({"status": "alive"}), 200


@bp.route("/debug")
def debug():
    cfg = current_app.config
    if not cfg.get("DEBUG_ENDPOINT_ENABLED", False):
        return jsonify({"error": "Not found"}), 404

    from ai_resilience import get_circuit_breaker

    provider = cfg.get("LLM_PROVIDER", "claude")
    curriculum = ServiceManager.get_curriculum()
    return jsonify({
        "provider": provider,
        "model": cfg.get("LLM_MODEL"),
        "llmConfigured": _llm_configured(),
        "circuit": get_circuit_breaker().get_state(provider),
        "conversations": ServiceManager.get_store().stats(),
        "curriculum": {
            "loaded": bool(curriculum.topic_catalog),
            "topics": len(curriculum.topic_catalog),
            "version": curriculum.meta.get("version", "unknown"),
        },
    })


# ── Cron endpoints ────────────────────────────────────────
# For hosts without a long-running scheduler. Authenticated via CRON_SECRET.

def _verify_cron_secret():
    """Verify the request carries a valid CRON_SECRET header."""
    expected = current_app.config.get("CRON_SECRET", "")
    if not expected:
        return False
    return request.headers.get("Authorization") == f"Bearer {expected}"


@bp.route("/api/cron/sweep-conversations", methods=["GET", "POST"])
def cron_sweep_conversations():
    if not _verify_cron_secret():
        return jsonify({"error": "Unauthorized"}), 401
    try:
        from scheduler import sweep_conversations
        removed = sweep_conversations(current_app._get_current_object())
        return jsonify({"status": "ok", "job": "sweep-conversations", "removed": removed})
    except Exception as e:
        logger.error("Cron sweep-conversations failed: %s", e, exc_info=True)
        return jsonify({"error": "Cron job failed."}), 500
