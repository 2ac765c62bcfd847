"""
Replay of the offline queue against the backend.

A pass walks pending entries in enqueue order:
- success: the entry is removed; rows created from a temporary id get their
  server id written into later entries
- TransientNetworkError: the pass stops, the entry and everything after it
  stay queued
- any other ScribeError: the backend refused the write; the entry is marked
  rejected, skipped by later passes, and the pass goes on

result.id_map collects the temp id -> server id pairs learned in the pass.

Only one pass runs at a time. A replay() that arrives while a pass is running
returns None and asks the running pass to sweep once more, so bursts of
reconnect signals collapse into at most one extra sweep.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from scribe_printer.client.backend import BackendClient
from scribe_printer.client.offline_queue import (
    ADD_LIST,
    ADD_LIST_ITEM,
    CHECK_LIST_ITEM,
    DELETE_LIST_ITEM,
    OfflineQueue,
    QueuedAction,
)
from scribe_printer.core.errors import ScribeError, TransientNetworkError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ReplayResult:
    applied: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    aborted: bool = False
    sweeps: int = 0
    remaining: int = 0
    id_map: Dict[str, str] = field(default_factory=dict)


class Replayer:
    def __init__(
        self,
        queue: OfflineQueue,
        backend: BackendClient,
        on_complete: Optional[Callable[[ReplayResult], None]] = None,
    ):
        self.queue = queue
        self.backend = backend
        self.on_complete = on_complete
        self._running = threading.Lock()
        self._state = threading.Lock()
        self._rerun = False
        self._thread: Optional[threading.Thread] = None

    # ----- Applying one action ---------------------------------------------

    def _resolved(self, result: ReplayResult, temp_id: str, real_id: str) -> None:
        self.queue.rewrite_reference(temp_id, real_id)
        result.id_map[temp_id] = real_id

    def _apply(self, action: QueuedAction, result: ReplayResult) -> None:
        p: Dict[str, Any] = action.payload
        if action.type == ADD_LIST_ITEM:
            created = self.backend.add_item(p["list_id"], p["text"], position=p.get("position"))
            if p.get("temp_id"):
                self._resolved(result, p["temp_id"], created["id"])
        elif action.type == CHECK_LIST_ITEM:
            self.backend.set_checked(p["item_id"], bool(p["checked"]))
        elif action.type == DELETE_LIST_ITEM:
            self.backend.delete_item(p["item_id"])
        elif action.type == ADD_LIST:
            created = self.backend.create_list(p["name"])
            self._resolved(result, p["temp_id"], created["id"])
        else:
            raise ValidationError(f"Unknown queued action type: {action.type!r}")

    def _next_after(self, seq: int) -> Optional[QueuedAction]:
        # Re-read each time: applying an entry may rewrite later payloads.
        for action in self.queue.pending():
            if action.seq > seq:
                return action
        return None

    def _sweep(self, result: ReplayResult) -> None:
        last_seq = 0
        while True:
            action = self._next_after(last_seq)
            if action is None:
                return
            last_seq = action.seq
            try:
                self._apply(action, result)
            except TransientNetworkError as e:
                logger.warning("Replay stopped at %s #%d: %s", action.type, action.seq, e.message)
                result.aborted = True
                return
            except ScribeError as e:
                logger.warning("Backend rejected queued %s #%d: %s", action.type, action.seq, e.message)
                self.queue.mark_rejected(action.id, {"code": e.code, "error": e.message})
                result.rejected.append(action.id)
                continue
            self.queue.remove(action.id)
            result.applied.append(action.id)

    # ----- Passes ------------------------------------------------------------

    def replay(self) -> Optional[ReplayResult]:
        """
        Run a replay pass. Returns None when another pass was already running
        (that pass will sweep again on this call's behalf).
        """
        result: Optional[ReplayResult] = None
        while True:
            if not self._running.acquire(blocking=False):
                with self._state:
                    self._rerun = True
                logger.debug("Replay already running; coalesced")
                return result

            result = result or ReplayResult()
            try:
                while True:
                    with self._state:
                        self._rerun = False
                    self._sweep(result)
                    result.sweeps += 1
                    if result.aborted:
                        break
                    with self._state:
                        if not self._rerun:
                            break
            finally:
                self._running.release()

            with self._state:
                # A trigger may have landed between the last check and the release.
                again = self._rerun and not result.aborted
            if not again:
                break

        result.remaining = len(self.queue.pending())
        logger.info(
            "Replay finished: applied=%d rejected=%d remaining=%d aborted=%s sweeps=%d",
            len(result.applied),
            len(result.rejected),
            result.remaining,
            result.aborted,
            result.sweeps,
        )
        if self.on_complete is not None:
            self.on_complete(result)
        return result

    def _replay_in_background(self) -> None:
        try:
            self.replay()
        except Exception:
            logger.exception("Background replay failed")

    def trigger(self) -> threading.Thread:
        """
        Start a pass on a background thread. Used as the reconnect callback.
        """
        thread = threading.Thread(target=self._replay_in_background, name="scribe-replay", daemon=True)
        self._thread = thread
        thread.start()
        return thread


__all__ = ["ReplayResult", "Replayer"]
