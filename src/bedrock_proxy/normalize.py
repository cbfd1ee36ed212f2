"""Request body decoding.

Turns the raw body of an inbound request into the payload forwarded to the
backend, and resolves whether the caller asked for a stream.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from bedrock_proxy.errors import InvalidRequestError

logger = logging.getLogger(__name__)

INVALID_BODY_MESSAGE = "Invalid request body"


@dataclass
class IncomingRequest:
    """Transport-neutral view of one HTTP call."""

    method: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | str | Mapping[str, Any] | None = None
    is_base64_encoded: bool = False
    path: str = "/"


@dataclass(frozen=True)
class BackendRequest:
    """Payload forwarded verbatim to the backend plus the resolved stream flag."""

    payload: dict[str, Any]
    wants_stream: bool

    @property
    def model(self) -> Any:
        return self.payload.get("model")

    @property
    def message_count(self) -> int | None:
        messages = self.payload.get("messages")
        return len(messages) if isinstance(messages, list) else None


def parse_request_body(
    body: bytes | str | Mapping[str, Any] | None,
    is_base64_encoded: bool = False,
) -> dict[str, Any]:
    """Decode a request body into a JSON object.

    Raises:
        InvalidRequestError: If the body cannot be decoded or is not a JSON object.
    """
    if isinstance(body, Mapping):
        return dict(body)

    if body is None:
        raise InvalidRequestError(INVALID_BODY_MESSAGE)

    try:
        if is_base64_encoded:
            raw = body.encode("ascii") if isinstance(body, str) else body
            text = base64.b64decode(raw, validate=True).decode("utf-8")
        elif isinstance(body, bytes):
            text = body.decode("utf-8")
        else:
            text = body
        parsed = json.loads(text)
    except (binascii.Error, UnicodeError, ValueError) as e:
        logger.debug("Error parsing request body: %s", e)
        raise InvalidRequestError(INVALID_BODY_MESSAGE) from e

    if not isinstance(parsed, dict):
        logger.debug("Request body is JSON but not an object: %s", type(parsed).__name__)
        raise InvalidRequestError(INVALID_BODY_MESSAGE)
    return parsed


def normalize_request(
    body: bytes | str | Mapping[str, Any] | None,
    is_base64_encoded: bool = False,
) -> BackendRequest:
    """Parse the body and resolve ``wants_stream``.

    Only the literal JSON ``true`` requests a stream.
    """
    payload = parse_request_body(body, is_base64_encoded)
    return BackendRequest(payload=payload, wants_stream=payload.get("stream") is True)
