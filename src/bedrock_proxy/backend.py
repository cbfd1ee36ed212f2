"""Backend model client and the invoker that calls it.

The gateway talks to the backend through the ``ModelClient`` protocol; the
concrete binding is Anthropic on AWS Bedrock via the ``anthropic`` SDK.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterable
from functools import cached_property
from typing import Any, Protocol

from anthropic import AsyncAnthropicBedrock, Timeout

from bedrock_proxy.config import GatewayConfig
from bedrock_proxy.errors import ApiError
from bedrock_proxy.normalize import BackendRequest

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    """Capability that produces a message or a lazy sequence of stream events."""

    async def generate_message(self, payload: dict[str, Any], *, stream: bool) -> Any: ...


def is_async_iterable(value: Any) -> bool:
    return isinstance(value, AsyncIterable)


class BedrockModelClient:
    """``ModelClient`` backed by ``anthropic.AsyncAnthropicBedrock``.

    Payload keys that ``messages.create`` does not accept as parameters are
    sent through ``extra_body`` so the request reaches Bedrock unchanged.

    Example:
        >>> async with BedrockModelClient.from_config(config) as client:
        ...     message = await client.generate_message(payload, stream=False)
    """

    def __init__(self, client: AsyncAnthropicBedrock):
        self._client = client

    @classmethod
    def from_config(cls, config: GatewayConfig, **client_kwargs: Any) -> BedrockModelClient:
        """Create the SDK client with the configured region, timeouts and retries.

        The SDK builds and owns its HTTP connection pool.
        """
        timeout = Timeout(
            connect=config.connect_timeout,
            read=config.read_timeout,
            write=config.read_timeout,
            pool=config.read_timeout,
        )
        client = AsyncAnthropicBedrock(
            aws_region=config.aws_region,
            max_retries=config.max_retries,
            timeout=timeout,
            **client_kwargs,
        )
        return cls(client)

    @cached_property
    def _create_params(self) -> frozenset[str]:
        params = inspect.signature(type(self._client.messages).create).parameters
        # extra_* and timeout are SDK request options, never payload fields
        return frozenset(
            name
            for name in params
            if name != "self" and not name.startswith("extra_") and name != "timeout"
        )

    def _split_payload(self, payload: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        known: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in payload.items():
            if key == "stream":
                continue
            if key in self._create_params:
                known[key] = value
            else:
                extra[key] = value
        return known, extra

    async def generate_message(self, payload: dict[str, Any], *, stream: bool) -> Any:
        known, extra = self._split_payload(payload)
        if extra:
            logger.debug("Forwarding non-SDK fields via extra_body: %s", sorted(extra))
            return await self._client.messages.create(**known, stream=stream, extra_body=extra)
        return await self._client.messages.create(**known, stream=stream)

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> BedrockModelClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class BackendInvoker:
    """Owns the single call into the model client for a request.

    Anything raised from ``invoke`` happens before a response is committed,
    so the caller is still free to choose the HTTP status.
    """

    def __init__(self, client: ModelClient):
        self.client = client

    async def invoke(self, request: BackendRequest) -> Any:
        """Call the backend, asking for a stream explicitly when one is wanted.

        Raises:
            ApiError: If a stream was requested but the backend returned a
                non-iterable value.
        """
        result = await self.client.generate_message(request.payload, stream=request.wants_stream)
        if request.wants_stream and not is_async_iterable(result):
            logger.error(
                "Backend returned %s for a streaming request", type(result).__name__
            )
            raise ApiError("Expected streaming response from backend")
        return result
