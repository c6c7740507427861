"""
stdio <-> HTTP/SSE bridge.

The desktop assistant host spawns this script (stdio). It connects to the
relay's MCP endpoint over HTTP/SSE and forwards messages in both directions.
stdout carries the protocol, so diagnostics go to stderr.
"""
import asyncio
import logging
import os
import sys

import anyio
from mcp.client.sse import sse_client
from mcp.server.stdio import stdio_server

RELAY_URL = os.environ.get("DUST_RELAY_URL", "http://127.0.0.1:5001").rstrip("/")

logging.basicConfig(
    stream=sys.stderr, level=logging.INFO, format="%(levelname)s:%(name)s: %(message)s"
)
logger = logging.getLogger("dust_relay.proxy")


async def forward(src, dst, label: str):
    async for message in src:
        logger.debug("%s: %s", label, type(message).__name__)
        await dst.send(message)
    logger.info("%s stream closed", label)


async def main():
    logger.info("Connecting to %s/sse", RELAY_URL)
    async with sse_client(f"{RELAY_URL}/sse") as (sse_read, sse_write):
        async with stdio_server() as (stdio_read, stdio_write):
            async with anyio.create_task_group() as tg:
                tg.start_soon(forward, stdio_read, sse_write, "host->relay")
                tg.start_soon(forward, sse_read, stdio_write, "relay->host")


if __name__ == "__main__":
    asyncio.run(main())
