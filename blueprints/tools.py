"""Tool routes — diagram suggestions and worksheet generation."""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from config import provider_api_key
from diagram_detector import detect_math_diagram
from extensions import ServiceManager
from worksheet import WorksheetRequest, generate_worksheet_latex, latex_to_plain_text

logger = logging.getLogger(__name__)

bp = Blueprint("tools", __name__)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.route("/api/diagram/detect", methods=["POST"])
def api_diagram_detect():
    message = _json_body().get("message") or ""
    return jsonify({"detection": detect_math_diagram(str(message))})


@bp.route("/api/generate-worksheet", methods=["POST"])
def api_generate_worksheet():
    req = WorksheetRequest.from_json(_json_body())
    cfg = current_app.config
    provider = cfg.get("LLM_PROVIDER", "claude")
    try:
        latex = generate_worksheet_latex(
            req,
            curriculum=ServiceManager.get_curriculum(),
            provider=provider,
            model=cfg.get("LLM_MODEL", "claude-3-5-haiku-20241022"),
            api_key=provider_api_key(provider, cfg),
            attempts=cfg.get("LLM_RETRY_ATTEMPTS", 1),
        )
    except Exception as e:
        logger.error("Worksheet generation failed: %s", e, exc_info=True)
        return jsonify({"error": "Failed to generate worksheet."}), 502

    return jsonify({
        "topic": req.topic,
        "difficulty": req.difficulty,
        "latex": latex,
        "questions": latex_to_plain_text(latex),
    })
