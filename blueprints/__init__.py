"""
Blueprint registration for the StudyBuddy tutor API.

All blueprints are registered without URL prefixes; routes carry their full paths.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.chat import bp as chat_bp
    from blueprints.core import bp as core_bp
    from blueprints.tools import bp as tools_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(tools_bp)
