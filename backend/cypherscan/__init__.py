# cypherscan/__init__.py
"""
App factory.

    - Settings read once from the environment (cypherscan.config)
    - CORS origins from CORS_ORIGINS; https origins mean production
    - Production-appropriate logging levels
    - JSON error bodies, never tracebacks
    - Background schedulers only when SCHEDULER_ENABLED is true
"""

from __future__ import annotations

import logging
import re
import traceback
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS

from .config import ScanSettings
from .extensions import init_extensions
from .scans import scans_bp
from .scanner import ScanOrchestrator
from .scheduler import init_scheduler

error_logger = logging.getLogger("cypherscan.errors")


def create_app(
    settings: Optional[ScanSettings] = None,
    orchestrator: Optional[ScanOrchestrator] = None,
) -> Flask:
    app = Flask(__name__)
    settings = settings or ScanSettings.from_env()

    # ── Logging ──────────────────────────────────────────────────────
    if settings.is_production:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        app.logger.setLevel(logging.INFO)
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
        app.logger.setLevel(logging.DEBUG)

    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Quieten noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    # ─────────────────────────────────────────────────────────────────

    # ── CORS ────────────────────────────────────────────────────────
    # Dev: falls back to localhost origins if CORS_ORIGINS is not set
    if settings.cors_origins:
        cors_origins = list(settings.cors_origins)
    else:
        cors_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            re.compile(r"http://192\.168\.\d+\.\d+:3000"),
        ]

    CORS(app, resources={
        r"/*": {
            "origins": cors_origins,
            "allow_headers": ["Content-Type", "Authorization"],
            "methods": ["GET", "POST", "OPTIONS"],
        }
    })

    # ── Extensions ───────────────────────────────────────────────────
    init_extensions(app, settings, orchestrator=orchestrator)

    # ── Blueprints ───────────────────────────────────────────────────
    app.register_blueprint(scans_bp)

    # ── Global Error Handlers ────────────────────────────────────────
    # Return clean JSON for all errors, never tracebacks.

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({
            "error": "Bad request",
            "message": str(e.description) if hasattr(e, "description") else "The request was malformed or invalid.",
        }), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested resource was not found.",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "Method not allowed",
            "message": "This HTTP method is not allowed for this endpoint.",
        }), 405

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error(
            "500 Internal Server Error:\n%s", traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    @app.errorhandler(Exception)
    def catch_all(e):
        """Catch-all for any unhandled exception."""
        error_logger.error(
            "Unhandled exception: %s\n%s", str(e), traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    # ─────────────────────────────────────────────────────────────────

    # Health check
    @app.get("/health")
    def health():
        return jsonify(status="up and running"), 200

    # ── Background Schedulers ────────────────────────────────────────
    # Under Gunicorn with several workers, set SCHEDULER_ENABLED=true on
    # exactly one of them.
    if settings.scheduler_enabled:
        init_scheduler(app)
    else:
        logging.getLogger(__name__).info(
            "Schedulers disabled for this worker (SCHEDULER_ENABLED != true)"
        )
    # ─────────────────────────────────────────────────────────────────

    return app
