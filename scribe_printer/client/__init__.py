"""
Household client for Scribe.

- backend: HTTP client for the member API
- storage: durable local key-value store
- offline_queue: FIFO of writes made while offline
- replayer: replays the queue on reconnect
- connectivity: online/offline tracking with reconnect callbacks
- reconciler: optimistic local projection of a list
- feed: change feed listener

connect() wires them together: reconnects trigger a replay pass, and every
finished pass (or reopened change stream) refetches the open lists.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from scribe_printer.core.errors import ScribeError

from .backend import BackendClient
from .connectivity import ConnectivityMonitor
from .feed import ChangeFeedListener
from .offline_queue import OfflineQueue, QueuedAction
from .reconciler import ListReconciler, create_list
from .replayer import ReplayResult, Replayer
from .storage import LocalStore

logger = logging.getLogger(__name__)


@dataclass
class HouseholdClient:
    backend: BackendClient
    queue: OfflineQueue
    replayer: Replayer
    monitor: ConnectivityMonitor
    listeners: List[ChangeFeedListener] = field(default_factory=list)
    reconcilers: List[ListReconciler] = field(default_factory=list)

    def reconciler(self, list_id: str, title: Optional[str] = None, listen: bool = True) -> ListReconciler:
        """
        Projection of one list, refreshed once. With listen=True a change feed
        listener is started that refetches on every change of the list and
        whenever its stream reopens.
        """
        rec = ListReconciler(self.backend, self.queue, list_id, title=title, monitor=self.monitor)
        rec.refresh()
        self.reconcilers.append(rec)
        if listen:
            listener = ChangeFeedListener(
                self.backend.base_url,
                self.backend.token,
                "list_items",
                rec.on_change,
                filters={"list_id": list_id},
                monitor=self.monitor,
                on_open=rec.refresh,
            )
            listener.start()
            self.listeners.append(listener)
        return rec

    def after_replay(self, result: ReplayResult) -> None:
        """
        Replayer.on_complete: bring every open projection in line with what
        the pass wrote.
        """
        if not (result.applied or result.rejected):
            return
        for rec in list(self.reconcilers):
            try:
                rec.apply_replay(result.id_map)
            except ScribeError as e:
                logger.warning("Refetch of list %s after replay failed: %s", rec.list_id, e.message)

    def start(self) -> Optional[threading.Thread]:
        """
        Start connectivity monitoring. A backlog left by an earlier session is
        replayed right away; returns that replay thread, if any.
        """
        self.monitor.start()
        if not self.queue.pending():
            return None
        logger.info("Replaying %d queued action(s) from an earlier session", len(self.queue.pending()))
        return self.replayer.trigger()

    def stop(self) -> None:
        for listener in self.listeners:
            listener.stop()
        self.listeners.clear()
        self.monitor.stop()


def connect(
    base_url: str,
    token: str,
    data_dir: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> HouseholdClient:
    backend = BackendClient(base_url, token, session=session)
    queue = OfflineQueue(LocalStore(data_dir))
    replayer = Replayer(queue, backend)
    monitor = ConnectivityMonitor(base_url, session=session)
    monitor.on_reconnect(replayer.trigger)
    hc = HouseholdClient(backend=backend, queue=queue, replayer=replayer, monitor=monitor)
    replayer.on_complete = hc.after_replay
    return hc


__all__ = [
    "BackendClient",
    "ChangeFeedListener",
    "ConnectivityMonitor",
    "HouseholdClient",
    "ListReconciler",
    "LocalStore",
    "OfflineQueue",
    "QueuedAction",
    "ReplayResult",
    "Replayer",
    "connect",
    "create_list",
]
