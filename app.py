"""
Study Rank — Flask Web Application

Tiered rank and XP progression for study profiles, with inactivity decay,
rank notifications and a periodic decay sweep.
"""

from __future__ import annotations

import atexit
import os
from typing import Any

from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException

import database
from blueprints import register_blueprints
from extensions import SchedulerManager, limiter


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    if test_config is not None:
        from config import TestingConfig
        app.config.from_object(TestingConfig)
        app.config.update(test_config)
    else:
        from config import config_by_name
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown
    database.init_app(app)

    # Rate limiter (disabled in testing unless a test opts in)
    limiter.init_app(app)
    limiter.enabled = not app.config.get("TESTING") or bool(app.config.get("RATELIMIT_IN_TESTS"))

    register_blueprints(app)

    # JSON errors for the API
    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description or exc.name}), exc.code

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    # Periodic decay sweep
    if not app.config.get("TESTING"):
        from scheduler import init_scheduler
        SchedulerManager.set(init_scheduler(app))
        atexit.register(SchedulerManager.shutdown)

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
