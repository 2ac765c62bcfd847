"""
Change feed over Server-Sent Events.

GET /api/v1/changes?table=list_items&list_id=<id>[&limit=N]

Streams every committed row change matching the table and column filters:

    event: change
    data: {"table": ..., "type": "INSERT|UPDATE|DELETE", "record": {...}, "old": {...}, "commit_timestamp": ...}

A `: keepalive` comment is sent when nothing happened for
SCRIBE_FEED_KEEPALIVE_SECONDS. Streams are household-scoped: lists and
print_jobs are forced to the caller's household, list_items require a
list_id of the caller's household. Only the text columns in FILTER_COLUMNS
can be filtered on; any other query argument is a 400.
"""

from __future__ import annotations

import json
import queue
from typing import Any, Dict, Iterator, Optional, Tuple

from flask import Blueprint, Response, current_app, g, request

from scribe_printer.core import db as dbh
from scribe_printer.core.auth import member_required
from scribe_printer.core.config import env_float
from scribe_printer.core.errors import NotFoundError, ValidationError
from scribe_printer.core.feed import FEED, ChangeEvent

changes_bp = Blueprint("changes", __name__, url_prefix="/api/v1")

STREAMABLE_TABLES = ("lists", "list_items", "print_jobs")
_RESERVED_ARGS = ("table", "limit", "access_token")
FILTER_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "lists": ("id", "household_id", "name", "created_by"),
    "list_items": ("id", "list_id", "text", "created_by"),
    "print_jobs": ("id", "household_id", "printer_id", "list_id", "type", "status", "created_by"),
}


def format_sse(event: ChangeEvent) -> str:
    return f"event: change\ndata: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


def _scoped_filters(table: str) -> Dict[str, Any]:
    filters = {k: v for k, v in request.args.items() if k not in _RESERVED_ARGS}
    unknown = sorted(set(filters) - set(FILTER_COLUMNS[table]))
    if unknown:
        raise ValidationError(
            f"Cannot filter {table} on: {', '.join(unknown)}", {"allowed": list(FILTER_COLUMNS[table])}
        )
    if table == "list_items":
        list_id = filters.get("list_id")
        if not list_id:
            raise ValidationError("list_id filter required for list_items")
        lst = dbh.get_list(list_id)
        if lst is None or lst["household_id"] != g.ctx.household_id:
            raise NotFoundError("List not found", {"list_id": list_id})
    else:
        filters["household_id"] = g.ctx.household_id
    return filters


def _stream(events: "queue.Queue[ChangeEvent]", sub, keepalive: float, limit: Optional[int]) -> Iterator[str]:
    sent = 0
    try:
        yield ": connected\n\n"
        while limit is None or sent < limit:
            try:
                event = events.get(timeout=keepalive)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event)
            sent += 1
    finally:
        sub.close()


@changes_bp.get("/changes")
@member_required
def stream_changes():
    table = (request.args.get("table") or "").strip()
    if table not in STREAMABLE_TABLES:
        raise ValidationError(f"table must be one of: {', '.join(STREAMABLE_TABLES)}")
    limit = request.args.get("limit", type=int)
    if limit is not None and limit < 1:
        raise ValidationError("limit must be positive")
    filters = _scoped_filters(table)

    keepalive = float(
        current_app.config.get("FEED_KEEPALIVE_SECONDS") or env_float("SCRIBE_FEED_KEEPALIVE_SECONDS", 15.0)
    )
    events: "queue.Queue[ChangeEvent]" = queue.Queue()
    # Subscribe before the response starts so no change between request and stream is lost.
    sub = FEED.subscribe(table, events.put, filters)
    current_app.logger.info(f"Change stream opened on {table} filters={filters} (sub {sub.id})")

    resp = Response(
        _stream(events, sub, keepalive, limit),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
    resp.call_on_close(sub.close)
    return resp


__all__ = ["FILTER_COLUMNS", "STREAMABLE_TABLES", "changes_bp", "format_sse"]
