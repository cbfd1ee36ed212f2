"""Tests for the SSE relay state machine."""

import asyncio
import json

import pytest
from conftest import BackendFault, FakeEventStream, parse_sse

from bedrock_proxy.errors import ErrorShape
from bedrock_proxy.sse import (
    BufferedSSETransport,
    RelayState,
    SSERelay,
    encode_error,
    encode_event,
    release_events,
)


class ResettingTransport(BufferedSSETransport):
    """Transport whose client disconnects after ``accept`` writes."""

    def __init__(self, accept: int):
        super().__init__()
        self.accept = accept
        self.close_calls = 0

    async def write(self, data: bytes) -> None:
        if len(self.chunks) >= self.accept:
            raise ConnectionResetError("Cannot write to closing transport")
        await super().write(data)

    async def close(self) -> None:
        self.close_calls += 1
        await super().close()


class CountingTransport(BufferedSSETransport):
    def __init__(self) -> None:
        super().__init__()
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1
        await super().close()


class TestEncoding:
    """Tests for SSE record framing."""

    def test_encode_event(self):
        data = encode_event({"type": "a", "index": 0, "text": "héllo"})

        assert data == 'event: a\ndata: {"type":"a","index":0,"text":"héllo"}\n\n'.encode()

    def test_event_without_type_uses_default_name(self):
        assert encode_event({"foo": 1}).startswith(b"event: message\n")

    def test_encode_error(self):
        data = encode_error(ErrorShape(message="Busy", type="overloaded_error"))

        assert data == (
            b"event: error\n"
            b'data: {"type":"error","error":{"message":"Busy","type":"overloaded_error"}}\n\n'
        )

    def test_sdk_model_event(self):
        """Pydantic-style events are dumped with the fields they were sent with."""
        from anthropic.types import RawMessageStopEvent

        event = RawMessageStopEvent.construct(type="message_stop")

        assert encode_event(event) == b'event: message_stop\ndata: {"type":"message_stop"}\n\n'


class TestSSERelay:
    """Tests for SSERelay.run."""

    async def test_completed_stream(self):
        """Two events then exhaustion -> exactly two records, then close."""
        transport = CountingTransport()
        events = FakeEventStream([{"type": "a"}, {"type": "b"}])

        outcome = await SSERelay(transport).run(events)

        assert outcome.state is RelayState.COMPLETED
        assert outcome.completed is True
        assert outcome.events_sent == 2
        assert outcome.error is None
        assert transport.body == (
            b'event: a\ndata: {"type":"a"}\n\n'
            b'event: b\ndata: {"type":"b"}\n\n'
        )
        assert transport.close_calls == 1
        assert events.closed == 1

    async def test_headers_committed_on_open(self):
        transport = BufferedSSETransport()

        await SSERelay(transport).run(FakeEventStream([]))

        assert transport.status == 200
        assert transport.headers["Content-Type"] == "text/event-stream"
        assert transport.headers["Cache-Control"] == "no-cache"
        assert transport.headers["Connection"] == "keep-alive"
        assert transport.headers["Access-Control-Allow-Origin"] == "*"
        assert transport.body == b""
        assert transport.closed is True

    async def test_failure_mid_stream(self):
        """One event then a fault -> the event, one error record, close."""
        transport = CountingTransport()
        fault = BackendFault(
            "connection dropped",
            status=529,
            error={"type": "overloaded_error", "message": "Overloaded"},
        )
        events = FakeEventStream([{"type": "a"}], fault=fault)

        outcome = await SSERelay(transport).run(events)

        assert outcome.state is RelayState.FAILED
        assert outcome.events_sent == 1
        assert outcome.error == ErrorShape(message="Overloaded", type="overloaded_error")

        records = parse_sse(transport.body.decode())
        assert [name for name, _ in records] == ["a", "error"]
        assert json.loads(records[1][1]) == {
            "type": "error",
            "error": {"message": "Overloaded", "type": "overloaded_error"},
        }
        # Status committed at open is never changed
        assert transport.status == 200
        assert transport.close_calls == 1
        assert events.closed == 1

    async def test_failure_before_first_event(self):
        transport = BufferedSSETransport()

        outcome = await SSERelay(transport).run(FakeEventStream([], fault=RuntimeError("boom")))

        assert outcome.state is RelayState.FAILED
        records = parse_sse(transport.body.decode())
        assert len(records) == 1
        assert json.loads(records[0][1])["error"] == {"message": "boom", "type": "api_error"}

    async def test_unserializable_event_fails_stream(self):
        transport = BufferedSSETransport()

        outcome = await SSERelay(transport).run(FakeEventStream([{"type": "a", "bad": object()}]))

        assert outcome.state is RelayState.FAILED
        assert [name for name, _ in parse_sse(transport.body.decode())] == ["error"]

    async def test_done_sentinel(self):
        transport = BufferedSSETransport()

        await SSERelay(transport, emit_done_sentinel=True).run(FakeEventStream([{"type": "a"}]))

        assert transport.body.endswith(b"data: [DONE]\n\n")

    async def test_no_done_sentinel_on_failure(self):
        transport = BufferedSSETransport()
        events = FakeEventStream([{"type": "a"}], fault=RuntimeError("x"))

        await SSERelay(transport, emit_done_sentinel=True).run(events)

        assert b"[DONE]" not in transport.body

    async def test_client_disconnect_stops_pulling(self):
        """A reset on write stops the relay and releases the backend stream."""
        transport = ResettingTransport(accept=1)
        events = FakeEventStream([{"type": "a"}, {"type": "b"}, {"type": "c"}, {"type": "d"}])

        outcome = await SSERelay(transport).run(events)

        assert outcome.state is RelayState.DISCONNECTED
        assert outcome.events_sent == 1
        assert outcome.error is None
        # Pulled "a" (written) and "b" (write failed); nothing after
        assert events.pulled == 2
        assert events.closed == 1
        assert transport.close_calls == 1

    async def test_disconnect_during_error_record(self):
        transport = ResettingTransport(accept=1)
        events = FakeEventStream([{"type": "a"}], fault=RuntimeError("boom"))

        outcome = await SSERelay(transport).run(events)

        assert outcome.state is RelayState.FAILED
        assert transport.close_calls == 1
        assert events.closed == 1

    async def test_cancellation_cleans_up_and_propagates(self):
        transport = CountingTransport()
        started = asyncio.Event()

        async def slow_events():
            yield {"type": "a"}
            started.set()
            await asyncio.sleep(3600)
            yield {"type": "never"}

        events = slow_events()
        relay = SSERelay(transport)
        task = asyncio.create_task(relay.run(events))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert relay.state is RelayState.DISCONNECTED
        assert transport.close_calls == 1
        assert events.ag_running is False
        assert events.ag_frame is None

    async def test_relay_is_single_use(self):
        relay = SSERelay(BufferedSSETransport())
        await relay.run(FakeEventStream([]))

        with pytest.raises(RuntimeError):
            await relay.run(FakeEventStream([]))

    async def test_async_generator_is_closed_on_disconnect(self):
        """An abandoned async generator backend is closed, running its cleanup."""
        closed = []

        async def events():
            try:
                for name in ("a", "b", "c"):
                    yield {"type": name}
            finally:
                closed.append(True)

        outcome = await SSERelay(ResettingTransport(accept=1)).run(events())

        assert outcome.state is RelayState.DISCONNECTED
        assert closed == [True]


class TestReleaseEvents:
    async def test_sync_close(self):
        class SyncClosable:
            closed = False

            def close(self):
                self.closed = True

        target = SyncClosable()
        await release_events(target)
        assert target.closed is True

    async def test_nothing_to_release(self):
        await release_events([1, 2, 3])
