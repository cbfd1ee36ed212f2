"""Transport-neutral messages flow shared by the HTTP server and Lambda adapter."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from bedrock_proxy.backend import BackendInvoker, ModelClient
from bedrock_proxy.config import GatewayConfig
from bedrock_proxy.errors import InvalidRequestError
from bedrock_proxy.normalize import normalize_request
from bedrock_proxy.responses import JsonResponse, error_response, success_response
from bedrock_proxy.sse import RelayOutcome, SSERelay, SSETransport
from bedrock_proxy.tracing import RequestTracer

logger = logging.getLogger(__name__)

MESSAGE_ROUTES = ("/", "/v1/messages")


class MessagesGateway:
    """Normalizes, invokes the backend and relays the result.

    ``handle`` returns a ``JsonResponse`` for everything decided before a
    stream is opened (success or failure), and a ``RelayOutcome`` once the
    transport returned by ``open_transport`` has been used for SSE.
    """

    def __init__(
        self,
        config: GatewayConfig,
        client: ModelClient,
        tracer: RequestTracer | None = None,
    ):
        self.config = config
        self.invoker = BackendInvoker(client)
        self.tracer = tracer or RequestTracer()

    async def handle(
        self,
        body: Any,
        *,
        open_transport: Callable[[], SSETransport],
        is_base64_encoded: bool = False,
        trace_id: str = "-",
        method: str = "POST",
        path: str = "/v1/messages",
    ) -> JsonResponse | RelayOutcome:
        start = time.monotonic()
        body_size = len(body) if isinstance(body, (bytes, str)) else 0

        try:
            request = normalize_request(body, is_base64_encoded)
        except InvalidRequestError as e:
            logger.warning("[%s] Invalid request body", trace_id)
            return self._finish_json(error_response(e), trace_id, start)

        self.tracer.log_request(
            trace_id,
            method,
            path,
            body_size,
            model=request.model,
            msg_count=request.message_count,
            stream=request.wants_stream,
        )

        try:
            result = await self.invoker.invoke(request)
        except Exception as e:
            logger.exception("[%s] Error calling backend", trace_id)
            return self._finish_json(error_response(e), trace_id, start)

        if not request.wants_stream:
            return self._finish_json(success_response(result), trace_id, start)

        relay = SSERelay(
            open_transport(),
            trace_id=trace_id,
            emit_done_sentinel=self.config.emit_done_sentinel,
        )
        outcome = await relay.run(result)
        self.tracer.log_response(
            trace_id,
            200,
            time.monotonic() - start,
            error=outcome.error.message if outcome.error else None,
        )
        return outcome

    def _finish_json(self, response: JsonResponse, trace_id: str, start: float) -> JsonResponse:
        error = None
        if response.status >= 400 and isinstance(response.body, dict):
            error = response.body.get("error", {}).get("message")
        self.tracer.log_response(trace_id, response.status, time.monotonic() - start, error=error)
        return response
