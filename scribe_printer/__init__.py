"""
Scribe Printer package

This module provides the application factory for the backend service:
- Configures logging (scribe_printer.core.logging)
- Creates a Flask app with JSON error handling for the Scribe error taxonomy
- Registers the dispatch, member API, change feed and health blueprints
- Wires the SQLite connection teardown
"""

from __future__ import annotations

import importlib
import os
import uuid
from collections.abc import Sequence
from typing import Optional

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException

from scribe_printer.core.errors import ScribeError

__version__ = "0.1.0"

DEFAULT_BLUEPRINTS = [
    ("scribe_printer.web.dispatch_api", "dispatch_bp"),  # printer claim/ack
    ("scribe_printer.web.api", "api_bp"),  # member JSON API
    ("scribe_printer.web.changes", "changes_bp"),  # SSE change feed
    ("scribe_printer.web.health", "health_bp"),  # health endpoint
]


def _default_secret_key() -> str:
    return os.environ.get("SCRIBE_SECRET_KEY", "scribe_dev_secret_key")


def _register_blueprint(app: Flask, import_path: str, attr: str) -> None:
    mod = importlib.import_module(import_path)
    app.register_blueprint(getattr(mod, attr))
    app.logger.debug(f"Registered blueprint: {import_path}.{attr}")


def _set_request_id() -> None:
    g.request_id = getattr(g, "request_id", uuid.uuid4().hex)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ScribeError)
    def _scribe_error(e: ScribeError):
        if e.http_status >= 500:
            app.logger.error(f"{type(e).__name__}: {e}")
        else:
            app.logger.info(f"{e.http_status} {e.code}: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"error": e.description, "code": (e.name or "error").lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def _unexpected(e: Exception):
        app.logger.exception("Unhandled error")
        return jsonify({"error": "internal_error", "code": "internal_error"}), 500


def create_app(
    config_overrides: Optional[dict] = None,
    blueprints: Optional[Sequence[tuple[str, str]]] = None,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
      (DB_PATH, JWT_SECRET, TESTING, FEED_KEEPALIVE_SECONDS, STUCK_AFTER_SECONDS, ...)
    - blueprints: optional list of (import_path, attribute) tuples to register
      instead of the default set

    Returns:
    - Flask app instance
    """
    from scribe_printer.core import db as _db
    from scribe_printer.core.logging import configure_logging

    app = Flask("scribe_printer")

    app.secret_key = _default_secret_key()
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("SCRIBE_MAX_CONTENT_LENGTH", 256 * 1024))
    app.config["JSON_SORT_KEYS"] = False

    _db.init_app(app)

    configure_logging()
    app.logger.info("Scribe app created")

    app.url_map.strict_slashes = False

    @app.before_request
    def _before_request():
        _set_request_id()

    _register_error_handlers(app)

    for import_path, attr in blueprints or DEFAULT_BLUEPRINTS:
        _register_blueprint(app, import_path, attr)

    if config_overrides:
        app.config.update(config_overrides)

    return app


__all__ = ["DEFAULT_BLUEPRINTS", "__version__", "create_app"]
