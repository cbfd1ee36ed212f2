"""AWS Lambda entry point.

Handles Lambda function URL and API Gateway HTTP API (payload v2) events.
Lambda's Python runtime returns buffered responses, so a streaming request is
relayed into an in-memory SSE body that is returned in one piece with status
200; a backend failure mid-stream still ends the body with an ``error``
record rather than changing the status.

Each invocation runs on its own ``asyncio.run`` loop. The SDK client and its
connection pool are bound to that loop, so a Bedrock client is created and
closed per invocation; only the configuration is kept across warm invocations.
Reusing one client would need a loop that outlives the invocation.

Configure the function handler as ``bedrock_proxy.lambda_handler.handler``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from bedrock_proxy.auth import authenticate
from bedrock_proxy.backend import BedrockModelClient, ModelClient
from bedrock_proxy.config import GatewayConfig
from bedrock_proxy.errors import AuthenticationError
from bedrock_proxy.gateway import MESSAGE_ROUTES, MessagesGateway
from bedrock_proxy.normalize import IncomingRequest
from bedrock_proxy.responses import (
    JsonResponse,
    error_response,
    not_found_response,
    preflight_response,
)
from bedrock_proxy.sse import BufferedSSETransport
from bedrock_proxy.tracing import REQUEST_ID_HEADER, RequestTracer

logger = logging.getLogger(__name__)

_config: GatewayConfig | None = None
_tracer = RequestTracer()


def _get_config() -> GatewayConfig:
    """Read configuration once per container."""
    global _config
    if _config is None:
        _config = GatewayConfig.from_env()
        logging.getLogger().setLevel(_config.logging_level)
        if not _config.bearer_token:
            logger.error("BEARER_TOKEN is not set; every request will be rejected with 401")
    return _config


def incoming_from_event(event: Mapping[str, Any]) -> IncomingRequest:
    """Build an ``IncomingRequest`` from a function URL / HTTP API v2 event."""
    http = (event.get("requestContext") or {}).get("http") or {}
    return IncomingRequest(
        method=(http.get("method") or event.get("httpMethod") or "POST").upper(),
        headers=event.get("headers") or {},
        body=event.get("body"),
        is_base64_encoded=bool(event.get("isBase64Encoded")),
        path=event.get("rawPath") or http.get("path") or "/",
    )


def _json_result(response: JsonResponse, trace_id: str | None = None) -> dict[str, Any]:
    headers = dict(response.headers)
    if response.body is not None:
        headers["Content-Type"] = "application/json"
    if trace_id:
        headers[REQUEST_ID_HEADER] = trace_id
    return {
        "statusCode": response.status,
        "headers": headers,
        "body": response.encode().decode("utf-8"),
        "isBase64Encoded": False,
    }


async def handle_event(
    event: Mapping[str, Any],
    config: GatewayConfig,
    client: ModelClient | None = None,
) -> dict[str, Any]:
    """Process one Lambda event and return the Lambda response dict.

    Args:
        event: Function URL or HTTP API v2 event.
        config: Gateway configuration.
        client: Model client to use; a Bedrock client is created (and closed)
            per invocation when omitted.
    """
    incoming = incoming_from_event(event)

    if incoming.method == "OPTIONS":
        logger.debug("options preflight: path=%s", incoming.path)
        return _json_result(preflight_response())

    trace_id = _tracer.generate_trace_id(incoming.headers)

    try:
        authenticate(incoming.headers, config.auth)
    except AuthenticationError as e:
        logger.warning("[%s] Rejected unauthenticated request to %s", trace_id, incoming.path)
        return _json_result(error_response(e), trace_id)

    if incoming.method != "POST" or incoming.path not in MESSAGE_ROUTES:
        logger.debug("[%s] No route for %s %s", trace_id, incoming.method, incoming.path)
        return _json_result(not_found_response(), trace_id)

    if client is None:
        async with BedrockModelClient.from_config(config) as owned_client:
            return await _handle_incoming(incoming, config, owned_client, trace_id)
    return await _handle_incoming(incoming, config, client, trace_id)


async def _handle_incoming(
    incoming: IncomingRequest,
    config: GatewayConfig,
    client: ModelClient,
    trace_id: str,
) -> dict[str, Any]:
    gateway = MessagesGateway(config, client, tracer=_tracer)
    transport = BufferedSSETransport()
    try:
        result = await gateway.handle(
            incoming.body,
            open_transport=lambda: transport,
            is_base64_encoded=incoming.is_base64_encoded,
            trace_id=trace_id,
            method=incoming.method,
            path=incoming.path,
        )
        if isinstance(result, JsonResponse):
            return _json_result(result, trace_id)
    except Exception as e:
        logger.exception("[%s] Unhandled error in %s", trace_id, incoming.path)
        return _json_result(error_response(e), trace_id)

    return {
        "statusCode": transport.status or 200,
        "headers": {**transport.headers, REQUEST_ID_HEADER: trace_id},
        "body": transport.body.decode("utf-8"),
        "isBase64Encoded": False,
    }


def handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    """Lambda handler."""
    return asyncio.run(handle_event(event, _get_config()))
