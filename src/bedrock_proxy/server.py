"""aiohttp server for the Bedrock Anthropic proxy.

Exposes ``POST /`` and ``POST /v1/messages``, which accept Anthropic Messages
API requests, check the shared bearer token and forward them to Anthropic on
AWS Bedrock.

This server:
1. Answers CORS preflight (OPTIONS) for any path without authentication
2. Rejects requests without the configured bearer token (401)
3. Forwards the body verbatim to the backend
4. Returns JSON, or relays the backend's event stream as SSE
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from bedrock_proxy.auth import authenticate
from bedrock_proxy.backend import BedrockModelClient, ModelClient
from bedrock_proxy.config import GatewayConfig
from bedrock_proxy.errors import (
    ApiError,
    AuthenticationError,
    GatewayError,
    PayloadTooLargeError,
)
from bedrock_proxy.gateway import MESSAGE_ROUTES, MessagesGateway
from bedrock_proxy.responses import (
    CORS_HEADERS,
    JSON_CONTENT_TYPE,
    JsonResponse,
    error_response,
    not_found_response,
    preflight_response,
)
from bedrock_proxy.tracing import REQUEST_ID_HEADER, RequestTracer

logger = logging.getLogger(__name__)

_TRACE_KEY = web.RequestKey("trace_id", str)


def to_web_response(response: JsonResponse) -> web.Response:
    """Turn an assembled ``JsonResponse`` into an aiohttp response."""
    if response.body is None:
        return web.Response(status=response.status, headers=response.headers)
    return web.Response(
        body=response.encode(),
        status=response.status,
        content_type=JSON_CONTENT_TYPE,
        headers=response.headers,
    )


class AiohttpSSETransport:
    """``SSETransport`` over an aiohttp ``StreamResponse``."""

    def __init__(self, request: web.Request, extra_headers: dict[str, str] | None = None):
        self.request = request
        self.extra_headers = extra_headers or {}
        self.response: web.StreamResponse | None = None

    async def open(self, headers: Any) -> None:
        self.response = web.StreamResponse(status=200, headers={**headers, **self.extra_headers})
        await self.response.prepare(self.request)

    async def write(self, data: bytes) -> None:
        assert self.response is not None
        await self.response.write(data)

    async def close(self) -> None:
        if self.response is not None and self.response.prepared:
            await self.response.write_eof()


@dataclass
class GatewayServer:
    """HTTP front end that accepts Anthropic Messages API requests
    and forwards them to Anthropic on AWS Bedrock.

    Example:
        >>> config = GatewayConfig(bearer_token="secret", aws_region="us-west-2")
        >>> server = GatewayServer(config=config)
        >>> await server.serve()
    """

    config: GatewayConfig
    client: ModelClient | None = None
    _gateway: MessagesGateway | None = None
    _app: web.Application | None = None
    _runner: web.AppRunner | None = None
    _owns_client: bool = False
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _tracer: RequestTracer = field(default_factory=RequestTracer)

    @property
    def gateway(self) -> MessagesGateway:
        return self._gateway or self._build_gateway()

    def _build_gateway(self) -> MessagesGateway:
        if self.client is None:
            self.client = BedrockModelClient.from_config(self.config)
            self._owns_client = True
        self._gateway = MessagesGateway(self.config, self.client, tracer=self._tracer)
        return self._gateway

    def build_app(self) -> web.Application:
        """Create the aiohttp application with routes and middlewares."""
        app = web.Application(
            client_max_size=self.config.max_body_size,
            middlewares=[
                self._trace_middleware,
                self._cors_middleware,
                self._auth_middleware,
                self._error_middleware,
            ],
        )
        for path in MESSAGE_ROUTES:
            app.router.add_post(path, self._handle_messages)
        self._app = app
        return app

    async def start(self) -> int:
        """Start listening; returns the bound port (useful with ``port=0``)."""
        if not self.config.bearer_token:
            logger.error("BEARER_TOKEN is not set; every request will be rejected with 401")

        if self._gateway is None:
            self._build_gateway()

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()

        port = self._runner.addresses[0][1]
        logger.info("Bedrock Anthropic proxy listening on http://%s:%d", self.config.host, port)
        logger.info("Forwarding to: Anthropic on Bedrock (%s)", self.config.aws_region)
        return port

    async def serve(self) -> None:
        """Start the server and wait until ``shutdown`` is called."""
        await self.start()
        await self._shutdown_event.wait()

    async def shutdown(self) -> None:
        """Shutdown the server gracefully."""
        logger.info("Shutting down Bedrock Anthropic proxy...")
        self._shutdown_event.set()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if self._owns_client and isinstance(self.client, BedrockModelClient):
            await self.client.close()
            self.client = None
            self._gateway = None
            self._owns_client = False

    @web.middleware
    async def _trace_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        trace_id = self._tracer.generate_trace_id(request.headers)
        request[_TRACE_KEY] = trace_id
        response = await handler(request)
        if not response.prepared:
            response.headers[REQUEST_ID_HEADER] = trace_id
        return response

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        if request.method == "OPTIONS":
            logger.debug("[%s] options preflight: path=%s", request[_TRACE_KEY], request.path)
            return to_web_response(preflight_response())

        response = await handler(request)
        if not response.prepared:
            for name, value in CORS_HEADERS.items():
                response.headers.setdefault(name, value)
        return response

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            authenticate(request.headers, self.config.auth)
        except AuthenticationError as e:
            logger.warning(
                "[%s] Rejected unauthenticated request to %s", request[_TRACE_KEY], request.path
            )
            return to_web_response(error_response(e))
        return await handler(request)

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            return await handler(request)
        except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
            return to_web_response(not_found_response())
        except web.HTTPRequestEntityTooLarge:
            logger.warning(
                "[%s] Request body exceeds %d bytes", request[_TRACE_KEY], self.config.max_body_size
            )
            return to_web_response(
                error_response(PayloadTooLargeError("Request body too large"))
            )
        except GatewayError as e:
            return to_web_response(error_response(e))
        except web.HTTPException:
            raise
        except Exception as e:
            logger.exception("[%s] Unhandled error in %s", request[_TRACE_KEY], request.path)
            return to_web_response(error_response(e))

    async def _handle_messages(self, request: web.Request) -> web.StreamResponse:
        """Handle POST / and POST /v1/messages."""
        trace_id = request[_TRACE_KEY]
        body = await request.read()

        transport = AiohttpSSETransport(request, extra_headers={REQUEST_ID_HEADER: trace_id})
        result = await self.gateway.handle(
            body,
            open_transport=lambda: transport,
            trace_id=trace_id,
            method=request.method,
            path=request.path,
        )

        if isinstance(result, JsonResponse):
            return to_web_response(result)
        if transport.response is None:
            # The stream never opened, so the status is still ours to set
            return to_web_response(error_response(ApiError("Stream could not be opened")))
        return transport.response
