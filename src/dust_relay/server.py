import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from mcp.server import Server
from mcp.server.sse import SseServerTransport
from mcp.types import TextContent, Tool
from pydantic import ValidationError

from dust_relay.bridge import StreamingBridge
from dust_relay.dust_client import DustClient
from dust_relay.errors import (
    INTERNAL_ERROR,
    INVALID_JSONRPC,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    InvalidRequest,
)
from dust_relay.models import JsonRpcRequest, parse_messages
from dust_relay.poller import RunPoller
from dust_relay.settings import Settings, settings as default_settings
from dust_relay.sse import open_stream

logger = logging.getLogger(__name__)

STREAM_HINT = "Chat requests should use the streaming endpoint /mcp/stream"


def configure_logging(log_dir: str) -> Path:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    log_file = path / f"relay-{date.today().isoformat()}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s: %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler(log_file, mode="a")],
    )
    return log_file


def _rpc_error(code: int, message: str, request_id=None, status_code: int = 400):
    return JSONResponse(
        status_code=status_code,
        content={
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        },
    )


def _build_mcp_server(app: FastAPI, config: Settings) -> Server:
    mcp_app = Server(config.mcp_name)

    @mcp_app.list_tools()
    async def list_tools() -> list[Tool]:
        return [
            Tool(
                name="ask",
                description=(
                    f"Ask the {config.dust_agent_name} Dust agent a question. "
                    "Starts a fresh conversation and returns the agent's answer."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "message": {
                            "type": "string",
                            "description": "The message to send to the agent",
                        }
                    },
                    "required": ["message"],
                },
            )
        ]

    @mcp_app.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        if name != "ask":
            raise ValueError(f"Unknown tool: {name}")

        message = arguments["message"]
        logger.info("ask: %r", message)
        bridge: StreamingBridge = app.state.bridge
        answer = await bridge.collect_reply([{"role": "user", "content": message}])
        return [TextContent(type="text", text=answer)]

    return mcp_app


def create_app(
    config: Settings = default_settings, dust_client: DustClient | None = None
) -> FastAPI:
    """Build the relay app.

    ``dust_client`` is created from ``config`` on startup when not supplied,
    and in that case the connection is validated and the client closed on
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = dust_client
        owned = client is None
        if owned:
            client = DustClient.from_settings(config)
            if not await client.validate_connection():
                logger.warning(
                    "Dust API connection check failed; check DUST_API_KEY, "
                    "DUST_WORKSPACE_ID and DUST_AGENT_ID"
                )
        poller = RunPoller(
            client,
            interval=config.poll_interval,
            max_attempts=config.poll_max_attempts,
        )
        app.state.dust_client = client
        app.state.bridge = StreamingBridge(client, poller)
        try:
            yield
        finally:
            if owned:
                await client.aclose()

    app = FastAPI(title=config.mcp_name, lifespan=lifespan)
    mcp_app = _build_mcp_server(app, config)
    sse_transport = SseServerTransport("/messages/")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/mcp")
    async def metadata():
        return {
            "jsonrpc": "2.0",
            "result": {
                "name": config.mcp_name,
                "description": "A Model Context Protocol server for Dust.tt",
                "vendor": {"name": config.dust_fullname or "Dust User"},
                "models": [config.agent_descriptor()],
                "methods": ["chat", "getModels"],
            },
        }

    @app.post("/mcp")
    async def rpc(request: Request):
        try:
            body = await request.json()
        except ValueError:
            return _rpc_error(PARSE_ERROR, "Parse error")
        try:
            call = JsonRpcRequest.model_validate(body)
        except ValidationError:
            return _rpc_error(INVALID_JSONRPC, "Invalid request")

        logger.info("Received RPC request: %s", call.method)
        if call.method == "getModels":
            return {"jsonrpc": "2.0", "id": call.id, "result": [config.agent_descriptor()]}
        if call.method == "chat":
            return {"jsonrpc": "2.0", "id": call.id, "result": {"message": STREAM_HINT}}
        return _rpc_error(METHOD_NOT_FOUND, f"Method {call.method} not supported", call.id)

    @app.get("/mcp/stream")
    async def stream(request: Request, method: str | None = None, params: str = "{}"):
        logger.info("Received SSE request: method=%s", method)
        if method != "chat":
            return _rpc_error(METHOD_NOT_FOUND, f"Method {method} not supported")
        try:
            decoded = json.loads(params)
        except ValueError:
            return _rpc_error(PARSE_ERROR, "Invalid params: not valid JSON")
        if not isinstance(decoded, dict):
            return _rpc_error(InvalidRequest.code, "Invalid params: expected an object")
        try:
            messages = parse_messages(decoded.get("messages"))
        except InvalidRequest as e:
            logger.warning("Rejected chat request: %s", e)
            return _rpc_error(e.code, str(e))

        bridge: StreamingBridge = request.app.state.bridge
        return open_stream(bridge.handle_chat(messages))

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.error("Error processing %s %s", request.method, request.url.path, exc_info=exc)
        return _rpc_error(
            INTERNAL_ERROR, str(exc) or "Internal server error", status_code=500
        )

    @app.get("/sse")
    async def handle_sse(request: Request):
        async with sse_transport.connect_sse(
            request.scope, request.receive, request._send
        ) as streams:
            await mcp_app.run(
                streams[0], streams[1], mcp_app.create_initialization_options()
            )

    async def _messages_app(scope, receive, send):
        await sse_transport.handle_post_message(scope, receive, send)

    app.mount("/messages", _messages_app)
    return app


app = create_app()


def main() -> None:
    log_file = configure_logging(default_settings.log_dir)
    config = default_settings
    logger.info("Starting %s, logging to %s", config.mcp_name, log_file)
    logger.info("- Listening on http://%s:%d/mcp", config.mcp_host, config.mcp_port)
    logger.info("- API Key (masked): %s", config.masked_api_key())
    logger.info("- Workspace ID: %s", config.dust_workspace_id)
    logger.info("- Agent: %s (%s)", config.dust_agent_name, config.dust_agent_id)
    logger.info("- Base URL: %s", config.dust_domain)
    uvicorn.run(app, host=config.mcp_host, port=config.mcp_port)


if __name__ == "__main__":
    main()
