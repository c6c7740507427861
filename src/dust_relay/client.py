"""
Terminal client for the relay's SSE chat endpoint.

    dust-relay-chat "Tell me about systems thinking."
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import AsyncIterator

import httpx

from dust_relay.models import ContentEvent, ErrorEvent, OutboundEvent
from dust_relay.sse import decode_event, is_terminal

logger = logging.getLogger(__name__)

DEFAULT_URL = os.environ.get("DUST_RELAY_URL", "http://127.0.0.1:5001")


async def stream_chat(
    base_url: str,
    messages: list[dict],
    http: httpx.AsyncClient | None = None,
) -> AsyncIterator[OutboundEvent]:
    """Open ``/mcp/stream`` and yield events until the terminal one."""
    owned = http is None
    if owned:
        http = httpx.AsyncClient(timeout=None)
    query = {"method": "chat", "params": json.dumps({"messages": messages})}
    try:
        async with http.stream(
            "GET", f"{base_url.rstrip('/')}/mcp/stream", params=query
        ) as response:
            if response.status_code != 200:
                body = await response.aread()
                try:
                    message = json.loads(body)["error"]["message"]
                except (ValueError, KeyError, TypeError):
                    message = f"HTTP {response.status_code}"
                raise RuntimeError(message)
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                event = decode_event(line)
                yield event
                if is_terminal(event):
                    return
    finally:
        if owned:
            await http.aclose()


async def _run(url: str, prompt: str) -> int:
    try:
        async for event in stream_chat(url, [{"role": "user", "content": prompt}]):
            logger.debug("event: %s", event.type)
            if isinstance(event, ContentEvent):
                print(event.content)
            elif isinstance(event, ErrorEvent):
                print(f"error: {event.error}", file=sys.stderr)
                return 1
    except (RuntimeError, httpx.HTTPError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with a Dust agent through the relay.")
    parser.add_argument("prompt")
    parser.add_argument("--url", default=DEFAULT_URL)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s:%(name)s: %(message)s",
    )
    sys.exit(asyncio.run(_run(args.url, args.prompt)))


if __name__ == "__main__":
    main()
