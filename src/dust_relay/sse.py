"""
Server-Sent Events framing for chat events.

Every event travels as one ``data: <json>\\n\\n`` frame whose payload is a
JSON-RPC ``chat`` notification. The stream ends after the first ``end`` or
``error`` event.
"""
import logging
from typing import AsyncGenerator

from fastapi.responses import StreamingResponse

from dust_relay.models import (
    ChatNotification,
    EndEvent,
    ErrorEvent,
    OutboundEvent,
)

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def is_terminal(event: OutboundEvent) -> bool:
    return isinstance(event, (EndEvent, ErrorEvent))


def encode_event(event: OutboundEvent) -> str:
    payload = ChatNotification(params=event).model_dump_json(exclude_none=True)
    return f"data: {payload}\n\n"


def decode_event(frame: str) -> OutboundEvent:
    """Parse one frame produced by ``encode_event`` back into an event."""
    data = "\n".join(
        line[len("data:"):].lstrip(" ")
        for line in frame.splitlines()
        if line.startswith("data:")
    )
    if not data:
        raise ValueError("SSE frame carries no data")
    return ChatNotification.model_validate_json(data).params


async def stream_events(
    events: AsyncGenerator[OutboundEvent, None],
) -> AsyncGenerator[str, None]:
    """Frame ``events`` for the wire, closing the source after the terminal event.

    The source is also closed when the client goes away, which cancels any
    polling still in flight for this request.
    """
    try:
        async for event in events:
            terminal = is_terminal(event)
            try:
                frame = encode_event(event)
            except ValueError:
                logger.exception("Could not serialize %s event", event.type)
                if terminal:
                    break
                continue
            logger.debug("Sending SSE event: %s", event.type)
            yield frame
            if terminal:
                break
    finally:
        await events.aclose()
        logger.info("SSE stream closed")


def open_stream(events: AsyncGenerator[OutboundEvent, None]) -> StreamingResponse:
    return StreamingResponse(
        stream_events(events),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
