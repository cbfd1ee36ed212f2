"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from bedrock_proxy.config import GatewayConfig

TEST_TOKEN = "test-secret-token"

SAMPLE_MESSAGE = {
    "id": "msg_123",
    "type": "message",
    "role": "assistant",
    "content": [{"type": "text", "text": "Hello from Bedrock!"}],
    "model": "anthropic.claude-3-5-sonnet-20241022-v2:0",
    "stop_reason": "end_turn",
    "stop_sequence": None,
    "usage": {"input_tokens": 10, "output_tokens": 5},
}

SAMPLE_EVENTS = [
    {
        "type": "message_start",
        "message": {
            "id": "msg_123",
            "type": "message",
            "role": "assistant",
            "content": [],
            "model": "anthropic.claude-3-5-sonnet-20241022-v2:0",
        },
    },
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi!"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "message_stop"},
]


class BackendFault(Exception):
    """Backend-style exception carrying an optional status and error detail."""

    def __init__(self, message: str = "", status: Any = None, error: Any = None):
        super().__init__(message)
        if status is not None:
            self.status = status
        if error is not None:
            self.error = error


class FakeEventStream:
    """Async event sequence that records how far it was pulled and whether it was closed."""

    def __init__(self, events: list[Any], fault: BaseException | None = None):
        self.events = list(events)
        self.fault = fault
        self.pulled = 0
        self.closed = 0

    def __aiter__(self) -> FakeEventStream:
        return self

    async def __anext__(self) -> Any:
        if self.pulled < len(self.events):
            event = self.events[self.pulled]
            self.pulled += 1
            return event
        if self.fault is not None:
            raise self.fault
        raise StopAsyncIteration

    async def close(self) -> None:
        self.closed += 1


class FakeModelClient:
    """In-memory ``ModelClient`` recording every call."""

    def __init__(
        self,
        message: Any = None,
        events: list[Any] | None = None,
        stream_fault: BaseException | None = None,
        error: BaseException | None = None,
        stream_result: Any = None,
    ):
        self.message = message if message is not None else dict(SAMPLE_MESSAGE)
        self.events = events if events is not None else list(SAMPLE_EVENTS)
        self.stream_fault = stream_fault
        self.error = error
        self.stream_result = stream_result
        self.calls: list[tuple[dict[str, Any], bool]] = []
        self.streams: list[FakeEventStream] = []

    async def generate_message(self, payload: dict[str, Any], *, stream: bool) -> Any:
        self.calls.append((payload, stream))
        if self.error is not None:
            raise self.error
        if not stream:
            return self.message
        if self.stream_result is not None:
            return self.stream_result
        event_stream = FakeEventStream(self.events, fault=self.stream_fault)
        self.streams.append(event_stream)
        return event_stream


def parse_sse(body: str) -> list[tuple[str | None, str]]:
    """Split an SSE body into (event, data) pairs."""
    records = []
    for block in body.split("\n\n"):
        if not block:
            continue
        event = None
        data = ""
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: ") :]
            elif line.startswith("data: "):
                data = line[len("data: ") :]
        records.append((event, data))
    return records


@pytest.fixture
def gateway_config():
    """Config with a known token and no network-facing defaults."""
    return GatewayConfig(host="127.0.0.1", port=0, bearer_token=TEST_TOKEN)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def fake_client():
    return FakeModelClient()
