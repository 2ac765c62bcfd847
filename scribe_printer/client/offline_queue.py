"""
Durable FIFO of entity writes made while the client was offline.

Each entry is persisted before enqueue() returns:

    {"id": str, "seq": int, "type": str, "payload": {...}, "created_at": str}

plus a "rejected" marker once the backend refused it. Order is the `seq`
assigned at enqueue time, never the wall clock. There is no depth bound and
no expiry. The document also keeps the temp id -> server id pairs learned
during replay ("resolved").

Action types and payloads:
- ADD_LIST_ITEM    {list_id, text, position?, temp_id?}
- CHECK_LIST_ITEM  {item_id, checked}
- DELETE_LIST_ITEM {item_id}
- ADD_LIST         {household_id, name, temp_id}
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from scribe_printer.client.storage import LocalStore
from scribe_printer.core.errors import ValidationError

logger = logging.getLogger(__name__)

QUEUE_KEY = "scribe_offline_queue"

ADD_LIST_ITEM = "ADD_LIST_ITEM"
CHECK_LIST_ITEM = "CHECK_LIST_ITEM"
DELETE_LIST_ITEM = "DELETE_LIST_ITEM"
ADD_LIST = "ADD_LIST"

REQUIRED_FIELDS: Dict[str, tuple[str, ...]] = {
    ADD_LIST_ITEM: ("list_id", "text"),
    CHECK_LIST_ITEM: ("item_id", "checked"),
    DELETE_LIST_ITEM: ("item_id",),
    ADD_LIST: ("household_id", "name", "temp_id"),
}

# Payload fields that may hold a temporary id minted while offline.
REFERENCE_FIELDS = ("list_id", "item_id")


@dataclass
class QueuedAction:
    id: str
    seq: int
    type: str
    payload: Dict[str, Any]
    created_at: str
    rejected: Optional[Dict[str, Any]] = field(default=None)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedAction":
        return cls(
            id=str(data["id"]),
            seq=int(data["seq"]),
            type=str(data["type"]),
            payload=dict(data.get("payload") or {}),
            created_at=str(data.get("created_at") or ""),
            rejected=data.get("rejected"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class OfflineQueue:
    def __init__(self, store: LocalStore, key: str = QUEUE_KEY):
        self.store = store
        self.key = key

    def _load(self) -> Dict[str, Any]:
        doc = self.store.get(self.key) or {}
        return {
            "next_seq": int(doc.get("next_seq") or 1),
            "entries": list(doc.get("entries") or []),
            "resolved": dict(doc.get("resolved") or {}),
        }

    def _save(self, doc: Dict[str, Any]) -> None:
        self.store.set(self.key, doc)

    def enqueue(self, action_type: str, payload: Dict[str, Any]) -> QueuedAction:
        required = REQUIRED_FIELDS.get(action_type)
        if required is None:
            raise ValidationError(f"Unknown queued action type: {action_type!r}")
        missing = [f for f in required if payload.get(f) is None]
        if missing:
            raise ValidationError(f"{action_type} payload missing: {', '.join(missing)}")

        with self.store.lock:
            doc = self._load()
            payload = dict(payload)
            # A temp id already replayed is sent as the server id it became.
            for name in REFERENCE_FIELDS:
                if payload.get(name) in doc["resolved"]:
                    payload[name] = doc["resolved"][payload[name]]
            action = QueuedAction(
                id=uuid.uuid4().hex,
                seq=doc["next_seq"],
                type=action_type,
                payload=payload,
                created_at=datetime.now(timezone.utc).isoformat(),
            )
            doc["next_seq"] = action.seq + 1
            doc["entries"].append(action.to_dict())
            self._save(doc)
        logger.info("Queued offline action %s #%d (%s)", action.type, action.seq, action.id)
        return action

    def entries(self, include_rejected: bool = True) -> List[QueuedAction]:
        with self.store.lock:
            actions = [QueuedAction.from_dict(e) for e in self._load()["entries"]]
        actions.sort(key=lambda a: a.seq)
        if not include_rejected:
            actions = [a for a in actions if not a.rejected]
        return actions

    def pending(self) -> List[QueuedAction]:
        return self.entries(include_rejected=False)

    def __len__(self) -> int:
        return len(self.entries())

    def remove(self, action_id: str) -> bool:
        with self.store.lock:
            doc = self._load()
            before = len(doc["entries"])
            doc["entries"] = [e for e in doc["entries"] if e.get("id") != action_id]
            if len(doc["entries"]) == before:
                return False
            self._save(doc)
        return True

    def clear(self) -> None:
        with self.store.lock:
            self.store.delete(self.key)

    def _update(self, action_id: str, **changes: Any) -> bool:
        with self.store.lock:
            doc = self._load()
            for entry in doc["entries"]:
                if entry.get("id") == action_id:
                    entry.update(changes)
                    self._save(doc)
                    return True
        return False

    def mark_rejected(self, action_id: str, error: Dict[str, Any]) -> bool:
        """
        Park an entry the backend refused. Replay skips it until retry().
        """
        return self._update(
            action_id,
            rejected=dict(error, at=datetime.now(timezone.utc).isoformat()),
        )

    def retry(self, action_id: str) -> bool:
        return self._update(action_id, rejected=None)

    def rewrite_reference(self, temp_id: str, real_id: str) -> int:
        """
        Point later entries at the server id of a row created by replay.
        The mapping is kept, so actions enqueued afterwards with the old temp
        id are rewritten too. Returns the number of entries rewritten.
        """
        changed = 0
        with self.store.lock:
            doc = self._load()
            doc["resolved"][temp_id] = real_id
            for entry in doc["entries"]:
                payload = entry.get("payload") or {}
                for name in REFERENCE_FIELDS:
                    if payload.get(name) == temp_id:
                        payload[name] = real_id
                        changed += 1
            self._save(doc)
        if changed:
            logger.info("Rewrote %d queued reference(s) %s -> %s", changed, temp_id, real_id)
        return changed

    def resolve(self, row_id: str) -> str:
        """
        Server id for a temp id already replayed, else row_id unchanged.
        """
        with self.store.lock:
            return self._load()["resolved"].get(row_id, row_id)


__all__ = [
    "ADD_LIST",
    "ADD_LIST_ITEM",
    "CHECK_LIST_ITEM",
    "DELETE_LIST_ITEM",
    "QUEUE_KEY",
    "OfflineQueue",
    "QueuedAction",
]
