"""
Row-level change feed.

Database helpers publish one ChangeEvent per affected row after their
transaction commits. Subscribers register for a table, optionally narrowed by
column equality filters (e.g. {"list_id": "..."}), and receive events on the
publishing thread. The SSE blueprint bridges subscriptions to remote clients.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
EVENT_TYPES = (INSERT, UPDATE, DELETE)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str
    record: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    commit_timestamp: str = field(default_factory=_utc_now_iso)

    def value(self, column: str) -> Any:
        """
        Column value from the new row, or the old row for deletes.
        """
        if column in self.record:
            return self.record[column]
        return self.old.get(column)

    def matches(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> bool:
        if self.table != table:
            return False
        for column, expected in (filters or {}).items():
            if self.value(column) != expected:
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "type": self.type,
            "record": dict(self.record),
            "old": dict(self.old),
            "commit_timestamp": self.commit_timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChangeEvent":
        return cls(
            table=str(data.get("table") or ""),
            type=str(data.get("type") or ""),
            record=dict(data.get("record") or {}),
            old=dict(data.get("old") or {}),
            commit_timestamp=str(data.get("commit_timestamp") or _utc_now_iso()),
        )


Callback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", sub_id: int, table: str, filters: Dict[str, Any], callback: Callback):
        self._feed = feed
        self.id = sub_id
        self.table = table
        self.filters = filters
        self.callback = callback

    def close(self) -> None:
        self._feed.unsubscribe(self.id)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class ChangeFeed:
    """
    Thread-safe in-process publish/subscribe of row changes.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subs: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(self, table: str, callback: Callback, filters: Optional[Mapping[str, Any]] = None) -> Subscription:
        with self._lock:
            sub = Subscription(self, next(self._ids), table, dict(filters or {}), callback)
            self._subs[sub.id] = sub
        logger.debug("Feed subscription %d on %s filters=%s", sub.id, table, sub.filters)
        return sub

    def unsubscribe(self, sub_id: int) -> None:
        with self._lock:
            self._subs.pop(sub_id, None)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every matching subscriber. Returns the delivery count.
        """
        with self._lock:
            targets = [s for s in self._subs.values() if event.matches(s.table, s.filters)]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                logger.exception("Feed subscriber %d failed on %s %s", sub.id, event.type, event.table)
        return delivered

    def publish_many(self, events: List[ChangeEvent]) -> int:
        return sum(self.publish(e) for e in events)


# Process-wide feed used by the database helpers.
FEED = ChangeFeed()

__all__ = [
    "DELETE",
    "EVENT_TYPES",
    "FEED",
    "INSERT",
    "UPDATE",
    "ChangeEvent",
    "ChangeFeed",
    "Subscription",
]
