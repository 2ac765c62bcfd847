"""
Local projection of one list, kept in line with the backend.

Edits are applied to the projection first and then written to the backend.
When the backend is unreachable the write goes to the offline queue instead
and the edit stays visible; when the backend refuses it, the edit is undone
and the error is raised to the caller.

Any change event for the list, and every finished replay pass, discards the
projection and refetches it. There is no merge: the backend's ordering
(position, then created_at) wins.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from scribe_printer.client.backend import BackendClient
from scribe_printer.client.connectivity import ConnectivityMonitor
from scribe_printer.client.offline_queue import (
    ADD_LIST,
    ADD_LIST_ITEM,
    CHECK_LIST_ITEM,
    DELETE_LIST_ITEM,
    OfflineQueue,
)
from scribe_printer.core.errors import NotFoundError, ScribeError, TransientNetworkError, ValidationError
from scribe_printer.core.feed import ChangeEvent
from scribe_printer.printing.render import list_content

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"

Observer = Callable[[List[Dict[str, Any]]], None]


def temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex}"


def is_temp(row_id: Optional[str]) -> bool:
    return bool(row_id) and str(row_id).startswith(TEMP_PREFIX)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_list(
    backend: BackendClient,
    queue: OfflineQueue,
    household_id: str,
    name: str,
    monitor: Optional[ConnectivityMonitor] = None,
) -> Dict[str, Any]:
    """
    Create a list, or queue its creation and return a placeholder with a
    temporary id when the backend is unreachable.
    """
    try:
        return backend.create_list(name)
    except TransientNetworkError:
        placeholder = {"id": temp_id(), "household_id": household_id, "name": name, "created_at": _now_iso()}
        queue.enqueue(ADD_LIST, {"household_id": household_id, "name": name, "temp_id": placeholder["id"]})
        if monitor is not None:
            monitor.report_offline()
        return placeholder


class ListReconciler:
    def __init__(
        self,
        backend: BackendClient,
        queue: OfflineQueue,
        list_id: str,
        title: Optional[str] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        user_id: Optional[str] = None,
    ):
        self.backend = backend
        self.queue = queue
        self.list_id = list_id
        self.title = title or ""
        self.monitor = monitor
        self.user_id = user_id
        self.stale = True
        self._items: List[Dict[str, Any]] = []
        self._lock = threading.RLock()
        self._observers: List[Observer] = []

    # ----- Projection ------------------------------------------------------

    @property
    def items(self) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._items)

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """
        Register an observer called with the item list after every change.
        Returns a function that unregisters it.
        """
        with self._lock:
            self._observers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        with self._lock:
            observers = list(self._observers)
            snapshot = copy.deepcopy(self._items)
        for callback in observers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("List observer failed")

    def _went_offline(self) -> None:
        if self.monitor is not None:
            self.monitor.report_offline()

    def refresh(self) -> bool:
        """
        Replace the projection with the backend's rows. On a network failure
        the old projection is kept and flagged stale; returns False.
        """
        if is_temp(self.list_id):
            return False
        try:
            body = self.backend.get_list(self.list_id)
        except TransientNetworkError:
            with self._lock:
                self.stale = True
            self._went_offline()
            logger.warning("Refetch of list %s failed; keeping stale projection", self.list_id)
            return False
        with self._lock:
            self._items = list(body.get("items") or [])
            self.title = (body.get("list") or {}).get("name") or self.title
            self.stale = False
        logger.info("Refetched list %s (%d items)", self.list_id, len(self._items))
        self._notify()
        return True

    def on_change(self, event: ChangeEvent) -> None:
        """
        Change feed callback: any row change on this list triggers a refetch.
        """
        if event.table != "list_items" or event.value("list_id") != self.list_id:
            return
        self.refresh()

    def apply_replay(self, id_map: Dict[str, str]) -> bool:
        """
        Called after a replay pass: swap temp ids for the server ids they
        became, then refetch. The swapped projection stays if the refetch fails.
        """
        if id_map:
            with self._lock:
                self.list_id = id_map.get(self.list_id, self.list_id)
                for item in self._items:
                    if item.get("id") in id_map:
                        item["id"] = id_map[item["id"]]
                    item["list_id"] = self.list_id
            self._notify()
        return self.refresh()

    def _find(self, item_id: str) -> Dict[str, Any]:
        for item in self._items:
            if item.get("id") == item_id:
                return item
        raise NotFoundError("Item not found", {"item_id": item_id})

    # ----- Edits -----------------------------------------------------------

    def add_item(self, text: str) -> Dict[str, Any]:
        text = str(text or "").strip()
        if not text:
            raise ValidationError("Item text is required.")
        with self._lock:
            position = len(self._items)
            item = {
                "id": temp_id(),
                "list_id": self.list_id,
                "text": text,
                "checked": False,
                "position": position,
                "created_by": self.user_id,
                "created_at": _now_iso(),
            }
            self._items.append(item)
        self._notify()

        payload = {"list_id": self.list_id, "text": text, "position": position, "temp_id": item["id"]}
        if is_temp(self.list_id):
            self.queue.enqueue(ADD_LIST_ITEM, payload)
            return dict(item)
        try:
            created = self.backend.add_item(self.list_id, text, position=position)
        except TransientNetworkError:
            self.queue.enqueue(ADD_LIST_ITEM, payload)
            self._went_offline()
            return dict(item)
        except ScribeError:
            with self._lock:
                self._items = [i for i in self._items if i.get("id") != item["id"]]
            self._notify()
            raise

        with self._lock:
            self._items = [dict(created) if i.get("id") == item["id"] else i for i in self._items]
        self._notify()
        return dict(created)

    def toggle_item(self, item_id: str) -> Dict[str, Any]:
        with self._lock:
            item = self._find(item_id)
            item["checked"] = not bool(item.get("checked"))
            checked = item["checked"]
            result = dict(item)
        self._notify()

        target = self.queue.resolve(item_id)
        payload = {"item_id": target, "checked": checked}
        if is_temp(target):
            self.queue.enqueue(CHECK_LIST_ITEM, payload)
            return result
        try:
            self.backend.set_checked(target, checked)
        except TransientNetworkError:
            self.queue.enqueue(CHECK_LIST_ITEM, payload)
            self._went_offline()
        except ScribeError:
            self.refresh()
            raise
        return result

    def delete_item(self, item_id: str) -> None:
        with self._lock:
            self._find(item_id)
            self._items = [i for i in self._items if i.get("id") != item_id]
        self._notify()

        target = self.queue.resolve(item_id)
        payload = {"item_id": target}
        if is_temp(target):
            self.queue.enqueue(DELETE_LIST_ITEM, payload)
            return
        try:
            self.backend.delete_item(target)
        except TransientNetworkError:
            self.queue.enqueue(DELETE_LIST_ITEM, payload)
            self._went_offline()
        except ScribeError:
            self.refresh()
            raise

    # ----- Printing --------------------------------------------------------

    def print_list(self, clear_after_print: bool = False) -> Dict[str, Any]:
        """
        Send a snapshot of the projection to the household printer.
        No backend write happens when the household has no printer.
        """
        self.backend.require_printer()
        with self._lock:
            items = list(self._items)
            title = self.title
        if not items:
            raise ValidationError("Add some items before printing.")
        if is_temp(self.list_id):
            raise ValidationError("This list has not been saved yet.")
        job = self.backend.print_list(self.list_id, list_content(title, items), clear_after_print=clear_after_print)
        logger.info("Sent list %s to printer as job %s (clear=%s)", self.list_id, job.get("id"), clear_after_print)
        return job


__all__ = ["TEMP_PREFIX", "ListReconciler", "create_list", "is_temp", "temp_id"]
