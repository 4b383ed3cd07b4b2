"""
StudyBuddy Tutor — Flask Web Application

Socratic mathematics tutor backend for NSW Year 7: curriculum-scoped topic
routing, per-user conversation memory and an LLM-backed tutor.
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response

from blueprints import register_blueprints
from extensions import ServiceManager, limiter


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import TestingConfig, config_by_name
    if test_config is not None:
        app.config.from_object(TestingConfig)
        app.config.update(test_config)
    else:
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    app.secret_key = app.config.get("SECRET_KEY", "dev-key-change-in-production")
    app.json.sort_keys = app.config.get("JSON_SORT_KEYS", False)

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Curriculum, conversation store and token ledger
    ServiceManager.init_app(app)

    # Rate limiter (disabled in testing)
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    register_blueprints(app)

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # CORS for the browser client (OPTIONS preflight is answered by Flask)
    @app.after_request
    def set_cors_headers(response: Response) -> Response:
        response.headers["Access-Control-Allow-Origin"] = app.config.get("CORS_ORIGIN", "*")
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, X-Request-ID"
        return response

    # Hourly conversation sweep; hosts without a long-running process use the cron endpoint
    if not app.config.get("TESTING"):
        try:
            from scheduler import init_scheduler
            app.extensions["scheduler"] = init_scheduler(app)
        except Exception as e:
            app.logger.warning("Scheduler not started: %s", e)

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=int(os.environ.get("PORT", "3001")))
