"""Request tracing for the gateway.

Every request gets a trace ID, taken from the caller's ``X-Request-Id`` header
when present. The ID prefixes every log line for that request and is echoed
back in the ``X-Request-Id`` response header.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Mapping

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
_MAX_REQUEST_ID_LENGTH = 128


class RequestTracer:
    """Generates trace IDs and logs request/response summaries.

    Example:
        tracer = RequestTracer()
        trace_id = tracer.generate_trace_id(request.headers)
        tracer.log_request(trace_id, "POST", "/v1/messages", body_size=512)
    """

    def __init__(self) -> None:
        self._request_counter = 0

    def generate_trace_id(self, headers: Mapping[str, str] | None = None) -> str:
        """Return the caller's request ID, or a new one.

        Format of generated IDs: {counter}_{hhmmss}_{random}
        Example: 00001_031333_9f2c41ab
        """
        self._request_counter += 1

        if headers:
            supplied = headers.get(REQUEST_ID_HEADER) or headers.get(REQUEST_ID_HEADER.lower())
            if supplied:
                supplied = "".join(c for c in supplied if c.isprintable())
                if supplied:
                    return supplied[:_MAX_REQUEST_ID_LENGTH]

        timestamp = time.strftime("%H%M%S")
        return f"{self._request_counter:05d}_{timestamp}_{uuid.uuid4().hex[:8]}"

    def log_request(
        self,
        trace_id: str,
        method: str,
        path: str,
        body_size: int,
        model: object = None,
        msg_count: int | None = None,
        stream: bool = False,
    ) -> None:
        """Log a request event.

        Args:
            trace_id: Trace ID for this request.
            method: HTTP method.
            path: Request path.
            body_size: Size of request body in bytes.
            model: Requested model, if known.
            msg_count: Number of messages in the request, if known.
            stream: Whether the caller asked for a stream.
        """
        logger.info(
            "[%s] request.received: method=%s, path=%s, body_size=%d, model=%s, "
            "messages=%s, stream=%s",
            trace_id,
            method,
            path,
            body_size,
            model,
            msg_count,
            stream,
        )

    def log_response(
        self,
        trace_id: str,
        status_code: int,
        duration_s: float,
        error: str | None = None,
    ) -> None:
        """Log a response event.

        Args:
            trace_id: Trace ID for this request.
            status_code: HTTP status code.
            duration_s: Request duration in seconds.
            error: Error message if request failed.
        """
        if error:
            logger.warning(
                "[%s] request.failed: status=%d, error=%s (%.2fs)",
                trace_id,
                status_code,
                error[:100],
                duration_s,
            )
        else:
            logger.info(
                "[%s] request.complete: status=%d (%.2fs)",
                trace_id,
                status_code,
                duration_s,
            )
