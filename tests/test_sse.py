import json

import pytest

from dust_relay.models import ContentEvent, EndEvent, ErrorEvent, StartEvent
from dust_relay.sse import SSE_HEADERS, decode_event, encode_event, open_stream, stream_events

START = StartEvent(id="run-1", conversationId="conv-1")
CONTENT = ContentEvent(id="run-1", conversationId="conv-1", content="Hello!\n\nBye")
END = EndEvent(id="run-1", conversationId="conv-1")


def test_frame_is_a_jsonrpc_notification():
    frame = encode_event(START)

    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert frame.count("\n") == 2
    assert json.loads(frame[len("data: "):]) == {
        "jsonrpc": "2.0",
        "method": "chat",
        "params": {"type": "start", "id": "run-1", "conversationId": "conv-1"},
    }


@pytest.mark.parametrize(
    "event", [START, CONTENT, END, ErrorEvent(error="Error: boom")]
)
def test_decode_restores_event(event):
    assert decode_event(encode_event(event)) == event


def test_decode_rejects_frame_without_data():
    with pytest.raises(ValueError):
        decode_event(": keep-alive\n\n")


class Source:
    """Async generator stand-in that records whether it was closed."""

    def __init__(self, events):
        self.closed = False
        self._gen = self._run(events)

    async def _run(self, events):
        try:
            for event in events:
                yield event
        finally:
            self.closed = True

    def __aiter__(self):
        return self._gen

    async def aclose(self):
        await self._gen.aclose()


@pytest.mark.anyio
async def test_stream_stops_after_terminal_event():
    source = Source([START, CONTENT, END, CONTENT])
    frames = [frame async for frame in stream_events(source)]

    assert [decode_event(f) for f in frames] == [START, CONTENT, END]
    assert source.closed


@pytest.mark.anyio
async def test_unserializable_terminal_event_still_closes(monkeypatch):
    from dust_relay import sse

    def broken(event):
        if isinstance(event, EndEvent):
            raise ValueError("cannot serialize")
        return encode_event(event)

    monkeypatch.setattr(sse, "encode_event", broken)
    source = Source([START, END, CONTENT])
    frames = [frame async for frame in stream_events(source)]

    assert [decode_event(f) for f in frames] == [START]
    assert source.closed


def test_open_stream_sets_event_stream_headers():
    response = open_stream(Source([END]))

    assert response.media_type == "text/event-stream"
    for name, value in SSE_HEADERS.items():
        assert response.headers[name] == value
