"""
Printer agent: the consumer device side of the dispatch protocol.

The agent polls the backend for the next job of its printer, prints it on an
ESC/POS printer (python-escpos) and acknowledges the outcome:

    GET  {server_url}/api/v1/printer-jobs?printer_id=..&api_key=..
    POST {server_url}/api/v1/printer-jobs?api_key=..   {"job_id", "status"}

A job is acknowledged 'done' after it printed and 'failed' when the printer
raised. Network failures are retried here with capped exponential backoff;
the backend never retries on the agent's behalf. A crash between claim and
ack leaves the job in 'printing'.

Agent config keys (JSON config file, see scribe_printer.core.config):
  server_url, printer_id, api_key, poll_seconds,
  printer_type (usb|network|serial|dummy), usb_vendor_id, usb_product_id,
  network_ip, network_port, serial_port, serial_baudrate, printer_profile,
  receipt_width, message_font_size, font_path, cut_feed_lines, print_separators
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

import requests

from scribe_printer.core.config import env_float
from scribe_printer.core.errors import ScribeError, TransientNetworkError
from scribe_printer.core.http import backoff_delay, send
from scribe_printer.printing.render import render_message_image

logger = logging.getLogger(__name__)

DISPATCH_PATH = "/api/v1/printer-jobs"
ACK_ATTEMPTS = 3


def _connect_printer(config: Mapping[str, Any]):
    """
    Create and return an ESC/POS printer instance based on the provided config.
    Supports USB, Network, Serial and Dummy with optional 'printer_profile'.
    """
    profile = config.get("printer_profile") or None
    ptype = str(config.get("printer_type", "usb")).lower()

    if ptype == "usb":
        from escpos.printer import Usb

        vendor = int(str(config.get("usb_vendor_id", "0x04b8")), 16)
        product = int(str(config.get("usb_product_id", "0x0e28")), 16)
        if profile:
            return Usb(vendor, product, profile=profile)
        return Usb(vendor, product)
    if ptype == "network":
        from escpos.printer import Network

        ip = str(config.get("network_ip", ""))
        port = int(str(config.get("network_port", "9100")))
        if profile:
            return Network(ip, port, profile=profile)
        return Network(ip, port)
    if ptype == "serial":
        from escpos.printer import Serial

        port = str(config.get("serial_port", ""))
        baud = int(str(config.get("serial_baudrate", "19200")))
        if profile:
            return Serial(port, baudrate=baud, profile=profile)
        return Serial(port, baudrate=baud)
    if ptype == "dummy":
        from escpos.printer import Dummy

        return Dummy()
    raise ValueError(f"Unsupported printer type: {ptype}")


def _separator(p, config: Mapping[str, Any]) -> None:
    if bool(config.get("print_separators", True)):
        p.set(align="left", bold=False, width=1, height=1)
        p.text("------------------------------------------------\n")


def _feed_and_cut(p, config: Mapping[str, Any]) -> None:
    extra = int(config.get("cut_feed_lines", 2))
    if extra > 0:
        p.text("\n" * extra)
    p.cut()


def print_list_job(p, content: Mapping[str, Any], config: Mapping[str, Any]) -> None:
    title = str(content.get("title") or "")
    p.text("\n")
    _separator(p, config)
    p.set(align="left", bold=True, double_height=True, double_width=True)
    p.text(f"{title}\n")
    p.set(align="left", bold=False, width=1, height=1)
    p.text("\n")
    for line in content.get("items") or []:
        p.text(f"{line}\n")
    _separator(p, config)
    _feed_and_cut(p, config)


def print_message_job(p, content: Mapping[str, Any], config: Mapping[str, Any]) -> None:
    p.text("\n")
    _separator(p, config)
    p.image(render_message_image(str(content.get("message") or ""), config))
    _separator(p, config)
    _feed_and_cut(p, config)


PRINTERS: Dict[str, Callable[[Any, Mapping[str, Any], Mapping[str, Any]], None]] = {
    "list": print_list_job,
    "message": print_message_job,
}


class PrinterAgent:
    """
    Poll/print/ack loop for one printer.
    """

    def __init__(
        self,
        config: Mapping[str, Any],
        session: Optional[requests.Session] = None,
        printer_factory: Optional[Callable[[Mapping[str, Any]], Any]] = None,
        timeout: float = 10.0,
    ):
        missing = [k for k in ("server_url", "printer_id", "api_key") if not config.get(k)]
        if missing:
            raise ValueError(f"Agent config missing: {', '.join(missing)}")
        self.config = dict(config)
        self.base_url = str(config["server_url"]).rstrip("/")
        self.printer_id = str(config["printer_id"])
        self.api_key = str(config["api_key"])
        self.poll_seconds = float(config.get("poll_seconds") or env_float("SCRIBE_POLL_SECONDS", 5.0))
        self.session = session or requests.Session()
        self.printer_factory = printer_factory or _connect_printer
        self.timeout = timeout

    @property
    def dispatch_url(self) -> str:
        return f"{self.base_url}{DISPATCH_PATH}"

    def fetch_next(self) -> Optional[Dict[str, Any]]:
        body = send(
            self.session,
            "GET",
            self.dispatch_url,
            timeout=self.timeout,
            params={"printer_id": self.printer_id, "api_key": self.api_key},
        )
        return body.get("job")

    def acknowledge(self, job_id: str, status: str) -> None:
        """
        Report a job outcome, retrying transient failures a few times.
        """
        for attempt in range(1, ACK_ATTEMPTS + 1):
            try:
                send(
                    self.session,
                    "POST",
                    self.dispatch_url,
                    timeout=self.timeout,
                    params={"api_key": self.api_key},
                    json={"job_id": job_id, "status": status},
                )
                logger.info("Acknowledged job %s as %s", job_id, status)
                return
            except TransientNetworkError:
                if attempt == ACK_ATTEMPTS:
                    raise
                delay = backoff_delay(attempt, base=0.5, cap=5.0)
                logger.warning("Ack of job %s failed (attempt %d); retrying in %.1fs", job_id, attempt, delay)
                time.sleep(delay)

    def print_job(self, job: Mapping[str, Any]) -> None:
        handler = PRINTERS.get(str(job.get("type")))
        if handler is None:
            raise ValueError(f"Unsupported job type: {job.get('type')!r}")
        p = self.printer_factory(self.config)
        try:
            handler(p, job.get("content") or {}, self.config)
        finally:
            try:
                p.close()
            except Exception as e:
                logger.debug("Printer close failed: %s", e)

    def poll_once(self) -> Optional[Dict[str, Any]]:
        """
        Claim at most one job, print it and acknowledge it. Returns the job
        with its final status, or None when nothing was pending.
        """
        job = self.fetch_next()
        if not job:
            return None
        logger.info("Printing %s job %s", job.get("type"), job.get("id"))
        try:
            self.print_job(job)
            status = "done"
        except Exception:
            logger.exception("Printer error on job %s", job.get("id"))
            status = "failed"
        self.acknowledge(str(job["id"]), status)
        return dict(job, status=status)

    def run(self, stop_event: Optional[threading.Event] = None, max_backoff: float = 60.0) -> None:
        """
        Poll until stop_event is set. Jobs are drained back to back; an empty
        poll waits poll_seconds; errors back off exponentially.
        """
        stop = stop_event or threading.Event()
        failures = 0
        logger.info("Printer agent started for printer %s (poll every %.1fs)", self.printer_id, self.poll_seconds)
        while not stop.is_set():
            try:
                handled = self.poll_once()
                failures = 0
                wait = 0.0 if handled else self.poll_seconds
            except ScribeError as e:
                failures += 1
                wait = backoff_delay(failures, base=self.poll_seconds, cap=max_backoff)
                logger.warning("Poll failed (%s); retrying in %.1fs", e.message, wait)
            if wait:
                stop.wait(wait)
        logger.info("Printer agent stopped")


__all__ = ["PRINTERS", "PrinterAgent", "print_list_job", "print_message_job"]
