"""
Connectivity tracking for the household client.

The monitor probes the backend's /healthz on an interval and is also told
about failures observed by regular calls (report_offline). Reconnect
listeners fire only on an offline -> online transition; staying online or
staying offline fires nothing.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

import requests

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"
UNKNOWN = "unknown"


class ConnectivityMonitor:
    DEFAULT_CHECK_INTERVAL = 15.0  # seconds
    DEFAULT_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.health_url = f"{base_url.rstrip('/')}/healthz"
        self.session = session or requests.Session()
        self.check_interval = check_interval
        self.timeout = timeout

        self._state = UNKNOWN
        self._lock = threading.RLock()
        self._listeners: List[Callable[[], None]] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def online(self) -> bool:
        return self.state == ONLINE

    def on_reconnect(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def _set_state(self, new_state: str) -> None:
        with self._lock:
            old = self._state
            self._state = new_state
            listeners = list(self._listeners) if (old == OFFLINE and new_state == ONLINE) else []
        if old != new_state:
            logger.info("Connectivity %s -> %s", old, new_state)
        for callback in listeners:
            try:
                callback()
            except Exception:
                logger.exception("Reconnect listener failed")

    def report_offline(self) -> None:
        self._set_state(OFFLINE)

    def report_online(self) -> None:
        self._set_state(ONLINE)

    def check_now(self) -> bool:
        """
        Probe the backend once and update the state. Returns True when online.
        """
        try:
            resp = self.session.get(self.health_url, timeout=self.timeout)
            ok = resp.status_code < 500
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.debug("Health probe failed: %s", type(e).__name__)
            ok = False
        self._set_state(ONLINE if ok else OFFLINE)
        return ok

    def _monitor_loop(self) -> None:
        while not self._stop.is_set():
            self.check_now()
            self._stop.wait(self.check_interval)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._monitor_loop, name="scribe-connectivity", daemon=True)
        self._thread.start()
        logger.info("Connectivity monitor started (%s every %.0fs)", self.health_url, self.check_interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.timeout + 1)
        logger.info("Connectivity monitor stopped")


__all__ = ["OFFLINE", "ONLINE", "UNKNOWN", "ConnectivityMonitor"]
