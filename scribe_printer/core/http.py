"""
HTTP plumbing shared by the printer agent and the household client.

- send(): one request through a requests.Session, mapped onto the Scribe
  error taxonomy (connection failures and gateway errors become
  TransientNetworkError, other error responses the matching ScribeError)
- backoff_delay(): capped exponential backoff with jitter for retry loops
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, Optional

import requests

from scribe_printer.core.errors import TransientNetworkError, error_from_response

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = (502, 503, 504)
DEFAULT_TIMEOUT = 10.0


def _json_body(resp: requests.Response) -> Optional[Dict[str, Any]]:
    try:
        body = resp.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else {"data": body}


def send(
    session: requests.Session,
    method: str,
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs: Any,
) -> Dict[str, Any]:
    """
    Perform a request and return the decoded JSON body (empty dict for 204).
    """
    try:
        resp = session.request(method, url, timeout=timeout, **kwargs)
    except (requests.ConnectionError, requests.Timeout) as e:
        logger.warning("%s %s unreachable: %s", method, url, type(e).__name__)
        raise TransientNetworkError(f"Backend unreachable: {type(e).__name__}", {"url": url}) from e

    if resp.status_code in TRANSIENT_STATUSES:
        raise TransientNetworkError(f"Backend unavailable (HTTP {resp.status_code})", {"status": resp.status_code})
    body = _json_body(resp)
    if resp.status_code >= 400:
        raise error_from_response(resp.status_code, body)
    return body or {}


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 60.0, jitter: bool = True) -> float:
    """
    Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped,
    then scaled by a random factor in [0.5, 1.0] when jitter is on.
    """
    delay = min(cap, base * (2 ** max(0, attempt - 1)))
    if jitter:
        delay *= random.uniform(0.5, 1.0)
    return delay


__all__ = ["DEFAULT_TIMEOUT", "TRANSIENT_STATUSES", "backoff_delay", "send"]
