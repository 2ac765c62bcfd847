"""
Client side of the change feed.

ChangeFeedListener keeps a long-lived GET /api/v1/changes stream open
(requests, stream=True), decodes Server-Sent Events into ChangeEvent objects
and hands each one to a callback, typically ListReconciler.on_change. A
dropped stream is reopened with exponential backoff plus jitter, and the
connectivity monitor is told when the stream goes down or comes back.
on_open runs each time a stream is (re)established, before any event.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from typing import Any, Callable, Dict, List, Optional

import requests

from scribe_printer.client.connectivity import ConnectivityMonitor
from scribe_printer.core.errors import ScribeError, TransientNetworkError, error_from_response
from scribe_printer.core.feed import ChangeEvent
from scribe_printer.core.http import backoff_delay

logger = logging.getLogger(__name__)


def parse_sse(lines: Iterable[str]) -> Iterator[ChangeEvent]:
    """
    Decode SSE lines. Comment lines (":") are skipped; a blank line ends an
    event. Only "change" events are yielded.
    """
    event_name = "message"
    data: List[str] = []
    for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data and event_name == "change":
                yield ChangeEvent.from_dict(json.loads("\n".join(data)))
            event_name, data = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event_name = value
        elif name == "data":
            data.append(value)


class ChangeFeedListener:
    def __init__(
        self,
        base_url: str,
        token: str,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        max_backoff: float = 60.0,
        on_open: Optional[Callable[[], None]] = None,
    ):
        self.url = f"{base_url.rstrip('/')}/api/v1/changes"
        self.params = dict(filters or {}, table=table)
        self.headers = {"Authorization": f"Bearer {token}", "Accept": "text/event-stream"}
        self.callback = callback
        self.session = session or requests.Session()
        self.monitor = monitor
        self.max_backoff = max_backoff
        self.on_open = on_open
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _open(self) -> requests.Response:
        try:
            resp = self.session.get(self.url, params=self.params, headers=self.headers, stream=True, timeout=(5, None))
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"Change feed unreachable: {type(e).__name__}") from e
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            resp.close()
            if resp.status_code >= 500:
                raise TransientNetworkError(f"Change feed unavailable (HTTP {resp.status_code})")
            raise error_from_response(resp.status_code, body)
        return resp

    def listen_once(self) -> int:
        """
        Consume one stream until it ends. Returns the number of events delivered.
        """
        delivered = 0
        resp = self._open()
        if self.monitor is not None:
            self.monitor.report_online()
        if self.on_open is not None:
            # Changes made while the stream was down were never delivered.
            try:
                self.on_open()
            except Exception:
                logger.exception("Change feed open callback failed")
        try:
            for event in parse_sse(resp.iter_lines(decode_unicode=True)):
                if self._stop.is_set():
                    break
                try:
                    self.callback(event)
                except Exception:
                    logger.exception("Change callback failed on %s %s", event.type, event.table)
                delivered += 1
        except (requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as e:
            raise TransientNetworkError(f"Change feed dropped: {type(e).__name__}") from e
        finally:
            resp.close()
        return delivered

    def _run(self) -> None:
        failures = 0
        while not self._stop.is_set():
            try:
                self.listen_once()
                failures = 0
            except TransientNetworkError as e:
                failures += 1
                if self.monitor is not None:
                    self.monitor.report_offline()
                logger.warning("Change feed lost (%s)", e.message)
            except ScribeError as e:
                logger.error("Change feed refused: %s", e.message)
                return
            if self._stop.is_set():
                break
            self._stop.wait(backoff_delay(max(1, failures), base=1.0, cap=self.max_backoff))

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="scribe-feed", daemon=True)
        self._thread.start()
        logger.info("Listening for %s changes (%s)", self.params.get("table"), self.params)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)


__all__ = ["ChangeFeedListener", "parse_sse"]
