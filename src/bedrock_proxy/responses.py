"""Response assembly shared by the aiohttp server and the Lambda adapter.

Responses are described as plain ``JsonResponse`` values; each host turns them
into its own response objects.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from bedrock_proxy.errors import NotFoundError, translate_error

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}

PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    **CORS_HEADERS,
}

JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class JsonResponse:
    """Status, JSON-compatible body and extra headers of a non-stream response.

    A body of ``None`` means an empty response (preflight).
    """

    status: int
    body: Any
    headers: Mapping[str, str] = field(default_factory=lambda: dict(CORS_HEADERS))

    def encode(self) -> bytes:
        return b"" if self.body is None else dumps(self.body).encode("utf-8")


def dumps(obj: Any) -> str:
    """Compact JSON, matching what the backend SDKs put on the wire."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def to_jsonable(obj: Any) -> Any:
    """Convert a backend message or stream event into plain JSON data.

    Mappings are copied; Anthropic SDK models are dumped with their API field
    names, keeping only the fields the backend actually sent.
    """
    if isinstance(obj, Mapping):
        return dict(obj)
    model_dump = getattr(obj, "model_dump", None)
    if callable(model_dump):
        return model_dump(mode="json", by_alias=True, exclude_unset=True)
    return obj


def success_response(message: Any) -> JsonResponse:
    return JsonResponse(status=200, body=to_jsonable(message))


def error_response(fault: BaseException) -> JsonResponse:
    status, shape = translate_error(fault)
    return JsonResponse(status=status, body={"error": shape.to_dict()})


def not_found_response() -> JsonResponse:
    return error_response(NotFoundError())


def preflight_response() -> JsonResponse:
    """CORS preflight answer; bypasses authentication."""
    return JsonResponse(status=204, body=None, headers=dict(PREFLIGHT_HEADERS))
