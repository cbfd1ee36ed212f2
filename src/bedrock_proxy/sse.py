"""SSE relay: frames a backend event sequence as Server-Sent Events.

The relay is a small state machine::

    IDLE -> STREAMING -> COMPLETED | FAILED | DISCONNECTED

Entering STREAMING commits status 200 and the SSE headers on the transport.
From then on the status can no longer change, so a backend fault is reported
as a final ``event: error`` record before the transport is closed. Cleanup
(release the backend sequence, close the transport) runs exactly once on every
exit path.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Protocol

from bedrock_proxy.errors import ErrorShape, translate_error
from bedrock_proxy.responses import SSE_HEADERS, dumps, to_jsonable

logger = logging.getLogger(__name__)

DEFAULT_EVENT_NAME = "message"
DONE_RECORD = b"data: [DONE]\n\n"


class SSETransport(Protocol):
    """Outbound byte channel for one streaming response."""

    async def open(self, headers: Mapping[str, str]) -> None:
        """Commit status 200 and ``headers``. Irreversible."""
        ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class TransportClosedError(Exception):
    """The client went away while the relay was writing."""


class RelayState(Enum):
    """Lifecycle of an ``SSERelay``."""

    IDLE = auto()
    STREAMING = auto()
    COMPLETED = auto()
    FAILED = auto()
    DISCONNECTED = auto()


@dataclass(frozen=True)
class RelayOutcome:
    """Terminal state of a relay run."""

    state: RelayState
    events_sent: int = 0
    error: ErrorShape | None = None

    @property
    def completed(self) -> bool:
        return self.state is RelayState.COMPLETED


def format_sse(event: str, data: str) -> bytes:
    return f"event: {event}\ndata: {data}\n\n".encode()


def encode_event(event: Any) -> bytes:
    """Frame one backend event; its fields are forwarded unmodified."""
    payload = to_jsonable(event)
    event_type = payload.get("type") if isinstance(payload, Mapping) else None
    if not isinstance(event_type, str) or not event_type:
        event_type = DEFAULT_EVENT_NAME
    return format_sse(event_type, dumps(payload))


def encode_error(shape: ErrorShape) -> bytes:
    return format_sse("error", dumps({"type": "error", "error": shape.to_dict()}))


async def release_events(events: Any) -> None:
    """Release a backend sequence: async generators and SDK streams both close."""
    closer = getattr(events, "aclose", None) or getattr(events, "close", None)
    if closer is None:
        return
    result = closer()
    if inspect.isawaitable(result):
        await result


class SSERelay:
    """Relays one backend event sequence to one SSE transport.

    A relay is single-use: ``run`` may be called once.

    Example:
        >>> relay = SSERelay(transport, trace_id=trace_id)
        >>> outcome = await relay.run(events)
    """

    def __init__(
        self,
        transport: SSETransport,
        *,
        trace_id: str = "-",
        emit_done_sentinel: bool = False,
    ):
        self.transport = transport
        self.trace_id = trace_id
        self.emit_done_sentinel = emit_done_sentinel
        self.state = RelayState.IDLE
        self.events_sent = 0
        self._finished = False

    async def _send(self, data: bytes) -> None:
        try:
            await self.transport.write(data)
        except ConnectionResetError as e:
            raise TransportClosedError(str(e)) from e

    async def run(self, events: AsyncIterable[Any]) -> RelayOutcome:
        """Commit the stream, forward every event in order and close.

        Only task cancellation propagates; every other failure ends in a
        terminal ``RelayOutcome``.
        """
        if self.state is not RelayState.IDLE:
            raise RuntimeError(f"Relay already used (state={self.state.name})")

        error: ErrorShape | None = None
        try:
            try:
                await self.transport.open(SSE_HEADERS)
            except ConnectionResetError as e:
                raise TransportClosedError(str(e)) from e
            self.state = RelayState.STREAMING
            logger.debug("[%s] Stream opened", self.trace_id)

            async for event in events:
                data = encode_event(event)
                await self._send(data)
                self.events_sent += 1
                logger.debug(
                    "[%s] SSE event %d: %s",
                    self.trace_id,
                    self.events_sent,
                    data[:200].decode("utf-8", errors="replace"),
                )

            if self.emit_done_sentinel:
                await self._send(DONE_RECORD)
            self.state = RelayState.COMPLETED
            logger.info(
                "[%s] Stream complete, forwarded %d events", self.trace_id, self.events_sent
            )

        except TransportClosedError:
            self.state = RelayState.DISCONNECTED
            logger.debug("[%s] Client disconnected during streaming", self.trace_id)

        except asyncio.CancelledError:
            self.state = RelayState.DISCONNECTED
            logger.debug("[%s] Stream cancelled", self.trace_id)
            raise

        except Exception as e:
            _, error = translate_error(e)
            opened = self.state is RelayState.STREAMING
            self.state = RelayState.FAILED
            logger.error(
                "[%s] Stream failed after %d events: %s (%s)",
                self.trace_id,
                self.events_sent,
                error.message,
                error.type,
            )
            if opened:
                try:
                    await self._send(encode_error(error))
                except TransportClosedError:
                    logger.debug("[%s] Client disconnected before error record", self.trace_id)

        finally:
            await self._finish(events)

        return RelayOutcome(state=self.state, events_sent=self.events_sent, error=error)

    async def _finish(self, events: Any) -> None:
        if self._finished:
            return
        self._finished = True

        try:
            await release_events(events)
        except Exception:
            logger.warning("[%s] Failed to release backend stream", self.trace_id, exc_info=True)

        try:
            await self.transport.close()
        except ConnectionResetError:
            logger.debug("[%s] Client already disconnected at close", self.trace_id)


class BufferedSSETransport:
    """In-memory ``SSETransport`` that collects the whole stream.

    Used where the host cannot stream (Lambda buffered responses) and in tests.
    """

    def __init__(self) -> None:
        self.status: int | None = None
        self.headers: dict[str, str] = {}
        self.chunks: list[bytes] = []
        self.opened = False
        self.closed = False

    async def open(self, headers: Mapping[str, str]) -> None:
        if self.opened:
            raise RuntimeError("Transport already opened")
        self.opened = True
        self.status = 200
        self.headers = dict(headers)

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("Transport is closed")
        self.chunks.append(data)

    async def close(self) -> None:
        self.closed = True

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)
