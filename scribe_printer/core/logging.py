"""
Logging setup shared by the Scribe service, the printer agent and the client.

Every record gets a `request_id` and a `household` attribute. Inside a Flask
request they come from g.request_id and the authenticated g.ctx; in agent and
client threads they default to "-". SCRIBE_JSON_LOGS=true switches to one JSON
object per line; SCRIBE_LOG_LEVEL sets the root level. When systemd-python is
installed (the "journald" extra) records go to the journal.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

from flask import g, has_request_context, request

PLAIN_FORMAT = "[%(asctime)s] %(levelname)s %(name)s [%(request_id)s %(household)s] %(message)s"


class ScribeContextFilter(logging.Filter):
    """
    Stamp request_id, household and path on each record.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.request_id = "-"
        record.household = "-"
        record.path = "-"
        if has_request_context():
            record.request_id = getattr(g, "request_id", "-")
            ctx = getattr(g, "ctx", None)
            if ctx is not None:
                record.household = getattr(ctx, "household_id", "-")
            record.path = request.path
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record. Extra keys: request_id, household, path, exc.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        entry: Dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "household": getattr(record, "household", "-"),
        }
        path = getattr(record, "path", "-")
        if path != "-":
            entry["path"] = path
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() in ("1", "true", "yes")


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("SCRIBE_LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _make_handler() -> logging.Handler:
    try:
        from systemd.journal import JournalHandler  # type: ignore
    except ImportError:
        return logging.StreamHandler()
    return JournalHandler(SYSLOG_IDENTIFIER="scribe")


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> logging.Logger:
    """
    Install a single handler on the root logger and return it.

    Safe to call repeatedly (app factory in tests, agent restarts): existing
    root handlers are replaced. Flask's app logger is made to propagate so
    app.logger output goes through the same handler.
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(level))
    root.handlers = []

    use_json = _env_flag("SCRIBE_JSON_LOGS") if json_logs is None else json_logs
    handler = _make_handler()
    handler.setFormatter(JsonFormatter() if use_json else logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(ScribeContextFilter())
    root.addHandler(handler)

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    # urllib3 logs every pooled connection at DEBUG; the agent polls constantly
    logging.getLogger("urllib3").setLevel(max(root.level, logging.INFO))
    return root


__all__ = ["PLAIN_FORMAT", "JsonFormatter", "ScribeContextFilter", "configure_logging"]
