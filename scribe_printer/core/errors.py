"""
Error taxonomy for Scribe Printer.

Hierarchy:
    ScribeError (base)
    ├── AuthenticationError        - credential mismatch on claim/ack or bad bearer token
    ├── ValidationError            - malformed request, illegal status value
    │   └── PrinterNotConfiguredError - household has no printer yet
    ├── NotFoundError              - unknown job/printer/list/item reference
    ├── ConflictError              - lost a claim race or illegal state transition
    └── TransientNetworkError      - client-observed connectivity failure

Services raise these; the web layer turns them into JSON bodies using `code`
and `http_status`. Only TransientNetworkError diverts a client write into the
offline queue.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ScribeError(Exception):
    """
    Base exception for all Scribe errors.
    """

    code = "error"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class AuthenticationError(ScribeError):
    """
    Credentials did not match. Carries no job content.
    """

    code = "invalid_credentials"
    http_status = 401

    def __init__(self, message: str = "invalid credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class ValidationError(ScribeError):
    code = "validation_error"
    http_status = 400


class PrinterNotConfiguredError(ValidationError):
    """
    The caller's household has no printer. Raised before any job write.
    """

    code = "printer_not_configured"
    http_status = 409

    def __init__(self, message: str = "No printer configured. Add a printer in settings first."):
        super().__init__(message)


class NotFoundError(ScribeError):
    code = "not_found"
    http_status = 404


class ConflictError(ScribeError):
    """
    A conditional update affected no rows: a claim race was lost or the
    target is not in a state that allows the transition.
    """

    code = "conflict"
    http_status = 409


class TransientNetworkError(ScribeError):
    """
    The backend could not be reached. Client-side only.
    """

    code = "network_unavailable"
    http_status = 503


_BY_CODE = {
    cls.code: cls
    for cls in (
        AuthenticationError,
        ValidationError,
        PrinterNotConfiguredError,
        NotFoundError,
        ConflictError,
        TransientNetworkError,
    )
}

_BY_STATUS = {
    401: AuthenticationError,
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


def error_from_response(status: int, body: Optional[Dict[str, Any]]) -> ScribeError:
    """
    Rebuild a ScribeError from an HTTP error response produced by the web layer.
    """
    body = body or {}
    message = str(body.get("error") or f"HTTP {status}")
    cls = _BY_CODE.get(str(body.get("code") or "")) or _BY_STATUS.get(status) or ScribeError
    if cls is PrinterNotConfiguredError:
        return PrinterNotConfiguredError(message)
    if cls is AuthenticationError:
        return AuthenticationError(message, {"status": status})
    return cls(message, {"status": status})


__all__ = [
    "AuthenticationError",
    "ConflictError",
    "NotFoundError",
    "PrinterNotConfiguredError",
    "ScribeError",
    "TransientNetworkError",
    "ValidationError",
    "error_from_response",
]
