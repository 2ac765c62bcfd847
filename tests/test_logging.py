import json
import logging

from flask import g

from scribe_printer.core.logging import JsonFormatter, ScribeContextFilter, configure_logging
from scribe_printer.printing.producer import RequestContext


def _record(msg="hello"):
    return logging.LogRecord("scribe_printer.test", logging.INFO, __file__, 1, msg, None, None)


def test_context_defaults_outside_requests():
    record = _record()
    assert ScribeContextFilter().filter(record) is True
    assert record.request_id == "-"
    assert record.household == "-"


def test_json_lines_carry_request_and_household(app):
    with app.test_request_context("/api/v1/jobs"):
        g.request_id = "req-1"
        g.ctx = RequestContext(user_id="user-1", household_id="home-1")
        record = _record("queued")
        ScribeContextFilter().filter(record)

    entry = json.loads(JsonFormatter().format(record))
    assert entry["msg"] == "queued"
    assert entry["request_id"] == "req-1"
    assert entry["household"] == "home-1"
    assert entry["path"] == "/api/v1/jobs"


def test_configure_logging_replaces_handlers(monkeypatch):
    monkeypatch.delenv("SCRIBE_JSON_LOGS", raising=False)
    root = configure_logging(level="warning")
    configure_logging(level="warning")
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING

    root = configure_logging(json_logs=True)
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
