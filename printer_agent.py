#!/usr/bin/env python3
"""
Printer agent for Scribe.

Runs on the device wired to the ESC/POS printer (e.g. a Raspberry Pi). It
polls the Scribe backend for print jobs, prints them and acknowledges them.

Usage:
    python printer_agent.py --config ~/.config/scribe/config.json
    python printer_agent.py --once --dry-run

The config file holds server_url, printer_id and api_key (shown once when the
printer is added) plus the printer connection settings.
"""

import argparse
import logging
import os
import signal
import sys
import threading

from scribe_printer.core.config import get_config_path, load_config
from scribe_printer.core.errors import ScribeError
from scribe_printer.core.logging import configure_logging
from scribe_printer.printing.agent import PrinterAgent


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Scribe printer agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=get_config_path(),
        help="Path to the agent JSON config (default: SCRIBE_CONFIG_PATH or XDG config)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Poll a single time and exit",
    )
    parser.add_argument(
        "--poll-seconds",
        type=float,
        default=None,
        help="Seconds between polls when idle (default: config poll_seconds or SCRIBE_POLL_SECONDS)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print to an in-memory dummy printer instead of real hardware",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    configure_logging(level="DEBUG" if args.debug else None)
    logger = logging.getLogger("scribe_printer.agent")

    config = load_config(args.config)
    if not config:
        logger.error(f"No agent config at {args.config}")
        return 2
    if args.poll_seconds is not None:
        config["poll_seconds"] = args.poll_seconds
    if args.dry_run:
        config["printer_type"] = "dummy"

    try:
        agent = PrinterAgent(config)
    except ValueError as e:
        logger.error(str(e))
        return 2

    if args.once:
        try:
            job = agent.poll_once()
        except ScribeError as e:
            logger.error(f"Poll failed: {e.message}")
            return 1
        logger.info(f"Handled job {job['id']} ({job['status']})" if job else "No pending jobs")
        return 0

    stop = threading.Event()

    def _shutdown(signum, frame):
        logger.info("Shutting down printer agent...")
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    logger.info(f"Agent pid {os.getpid()} polling {agent.dispatch_url}")
    agent.run(stop)
    return 0


if __name__ == "__main__":
    sys.exit(main())
