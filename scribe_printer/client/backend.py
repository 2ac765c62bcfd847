"""
HTTP client for the Scribe member API.

Wraps a requests.Session carrying the member's bearer token. Every call goes
through scribe_printer.core.http.send, so callers see only ScribeError
subclasses: TransientNetworkError when the backend is unreachable, the
matching error class otherwise.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from scribe_printer.core.errors import PrinterNotConfiguredError
from scribe_printer.core.http import DEFAULT_TIMEOUT, send

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class BackendClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}", "Accept": "application/json"})
        self.token = token
        self.timeout = timeout
        self.household: Optional[Dict[str, Any]] = None

    def url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}{path}"

    def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        return send(self.session, method, self.url(path), timeout=self.timeout, **kwargs)

    # ----- Household and printer -------------------------------------------

    def get_household(self) -> Dict[str, Any]:
        self.household = self._call("GET", "/household")
        return self.household

    @property
    def printer(self) -> Optional[Dict[str, Any]]:
        return (self.household or {}).get("printer")

    def require_printer(self) -> Dict[str, Any]:
        """
        Client-side precondition for any print: the household has a printer.
        A cached household without a printer is fetched again, since another
        member may have registered one since.
        """
        if self.household is None or not self.printer:
            self.get_household()
        if not self.printer:
            raise PrinterNotConfiguredError()
        return self.printer  # type: ignore[return-value]

    def create_printer(self, name: str = "Scribe Printer") -> Dict[str, Any]:
        """
        Register the household's printer. The api_key in the result is shown
        only this once; configure the printer agent with it.
        """
        printer = self._call("POST", "/printers", json={"name": name})
        self.get_household()
        return printer

    # ----- Lists and items -------------------------------------------------

    def list_lists(self) -> List[Dict[str, Any]]:
        return self._call("GET", "/lists").get("lists", [])

    def create_list(self, name: str) -> Dict[str, Any]:
        return self._call("POST", "/lists", json={"name": name})

    def get_list(self, list_id: str) -> Dict[str, Any]:
        """
        The list row and its items in canonical order: {"list": {...}, "items": [...]}.
        """
        return self._call("GET", f"/lists/{quote(list_id, safe='')}/items")

    def list_items(self, list_id: str) -> List[Dict[str, Any]]:
        return self.get_list(list_id).get("items", [])

    def add_item(self, list_id: str, text: str, position: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"text": text}
        if position is not None:
            body["position"] = position
        return self._call("POST", f"/lists/{quote(list_id, safe='')}/items", json=body)

    def set_checked(self, item_id: str, checked: bool) -> Dict[str, Any]:
        return self._call("PATCH", f"/items/{quote(item_id, safe='')}", json={"checked": bool(checked)})

    def delete_item(self, item_id: str) -> None:
        self._call("DELETE", f"/items/{quote(item_id, safe='')}")

    # ----- Print jobs -------------------------------------------------------

    def submit_job(
        self,
        job_type: str,
        content: Dict[str, Any],
        list_id: Optional[str] = None,
        clear_after_print: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"type": job_type, "content": content}
        if list_id is not None:
            body["list_id"] = list_id
            body["clear_after_print"] = bool(clear_after_print)
        return self._call("POST", "/jobs", json=body)

    def print_list(self, list_id: str, content: Dict[str, Any], clear_after_print: bool = False) -> Dict[str, Any]:
        self.require_printer()
        return self.submit_job("list", content, list_id=list_id, clear_after_print=clear_after_print)

    def send_message(self, message: str) -> Dict[str, Any]:
        self.require_printer()
        text = str(message or "").strip()
        return self.submit_job("message", {"message": text})

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._call("GET", f"/jobs/{quote(job_id, safe='')}")

    def list_jobs(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self._call("GET", "/jobs", params={"limit": limit}).get("jobs", [])


__all__ = ["API_PREFIX", "BackendClient"]
