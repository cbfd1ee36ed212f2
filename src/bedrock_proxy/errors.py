"""Gateway error taxonomy and the fault translator.

Every failure that reaches a client is expressed as an ``ErrorShape``
(``{"message": ..., "type": ...}``). Before a response has committed, the
status returned by ``translate_error`` becomes the HTTP status; after an SSE
stream has opened the status is discarded and only the shape is sent.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_STATUS = 500
DEFAULT_ERROR_TYPE = "api_error"
DEFAULT_MESSAGE = "Internal server error"

# Statuses that may not carry a response body
_BODYLESS_STATUSES = frozenset({101, 204, 205, 304})


@dataclass(frozen=True)
class ErrorShape:
    """Canonical client-facing error payload."""

    message: str
    type: str

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "type": self.type}


class GatewayError(Exception):
    """Base class for errors raised by the gateway itself."""

    status: int = DEFAULT_STATUS
    error_type: str = DEFAULT_ERROR_TYPE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(GatewayError):
    """Missing, malformed or wrong bearer token."""

    status = 401
    error_type = "authentication_error"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidRequestError(GatewayError):
    """Request body could not be decoded into a JSON object."""

    status = 400
    error_type = "invalid_request_error"


class NotFoundError(GatewayError):
    """No route matches the request."""

    status = 404
    error_type = "invalid_request_error"

    def __init__(self, message: str = "Not Found"):
        super().__init__(message)


class PayloadTooLargeError(GatewayError):
    """Request body exceeds the configured size limit."""

    status = 413
    error_type = "request_too_large"


class ApiError(GatewayError):
    """Backend protocol violation or other internal fault."""


def is_contentful_status(status: Any) -> bool:
    """Return True if ``status`` is an HTTP status that may carry a body."""
    return (
        isinstance(status, int)
        and not isinstance(status, bool)
        and 100 <= status <= 599
        and status not in _BODYLESS_STATUSES
    )


def _fault_status(fault: BaseException) -> int:
    if isinstance(fault, GatewayError):
        return fault.status
    # anthropic.APIStatusError exposes status_code; other clients use status
    for attr in ("status_code", "status"):
        status = getattr(fault, attr, None)
        if status is not None:
            return status if is_contentful_status(status) else DEFAULT_STATUS
    return DEFAULT_STATUS


def _fault_detail(fault: BaseException) -> Mapping[str, Any]:
    """Find the nested ``{"type", "message"}`` mapping carried by a fault.

    Anthropic API errors carry the decoded response body, which wraps the
    detail in an ``{"type": "error", "error": {...}}`` envelope.
    """
    for attr in ("body", "error"):
        detail = getattr(fault, attr, None)
        if isinstance(detail, Mapping):
            inner = detail.get("error")
            return inner if isinstance(inner, Mapping) else detail
    return {}


def _non_empty(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def translate_error(fault: BaseException) -> tuple[int, ErrorShape]:
    """Map any fault to an HTTP status and an ``ErrorShape``.

    Pure: calling it twice on the same fault yields equal results.
    """
    status = _fault_status(fault)

    if isinstance(fault, GatewayError):
        return status, ErrorShape(message=fault.message, type=fault.error_type)

    detail = _fault_detail(fault)
    error_type = _non_empty(detail.get("type"))
    if error_type == "error":
        # Bare envelope without a nested detail
        error_type = None

    message = (
        _non_empty(detail.get("message"))
        or _non_empty(getattr(fault, "message", None))
        or _non_empty(str(fault))
        or DEFAULT_MESSAGE
    )
    return status, ErrorShape(message=message, type=error_type or DEFAULT_ERROR_TYPE)
