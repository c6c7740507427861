import json
import re

import httpx
import pytest

from dust_relay.dust_client import DustClient

BASE_URL = "https://dust.test"
WORKSPACE = "ws-1"
AGENT = "agent-1"

_ROUTES = [
    ("POST", r"conversations", "create_conversation"),
    ("POST", r"conversations/[^/]+/messages", "post_message"),
    ("GET", r"conversations/[^/]+/messages", "list_messages"),
    ("POST", r"conversations/[^/]+/runs", "create_run"),
    ("GET", r"conversations/[^/]+/runs/[^/]+", "get_run"),
    ("GET", r"agent_configurations", "agent_configurations"),
]


class FakeDust:
    """Scripted stand-in for the Dust assistant API, served through MockTransport."""

    def __init__(self, statuses=("completed",), reply="Hello!"):
        self.statuses = list(statuses)
        self.reply = reply
        self.messages_body: dict | None = None
        self.failures: dict[str, int] = {}
        self.calls: list[tuple[str, dict | None]] = []
        self.posted: list[dict] = []
        self.polls = 0

    def fail(self, operation: str, status_code: int = 500) -> None:
        self.failures[operation] = status_code

    def operation(self, request: httpx.Request) -> str:
        if request.url.path == "/api/v1/me":
            return "me"
        prefix = f"/api/v1/w/{WORKSPACE}/assistant/"
        suffix = request.url.path[len(prefix):]
        for method, pattern, name in _ROUTES:
            if request.method == method and re.fullmatch(pattern, suffix):
                return name
        raise AssertionError(f"unexpected request {request.method} {request.url}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        name = self.operation(request)
        payload = json.loads(request.content) if request.content else None
        self.calls.append((name, payload))
        if name in self.failures:
            return httpx.Response(self.failures[name], json={"error": "boom"})

        if name == "create_conversation":
            return httpx.Response(200, json={"conversation": {"sId": "conv-1"}})
        if name == "post_message":
            self.posted.append(payload)
            return httpx.Response(200, json={"message": {"sId": f"msg-{len(self.posted)}"}})
        if name == "create_run":
            return httpx.Response(200, json={"run": {"sId": "run-1"}})
        if name == "get_run":
            status = self.statuses[min(self.polls, len(self.statuses) - 1)]
            self.polls += 1
            return httpx.Response(200, json={"run": {"sId": "run-1", "status": status}})
        if name == "list_messages" and self.messages_body is not None:
            return httpx.Response(200, json=self.messages_body)
        if name == "list_messages":
            messages = [{"role": "user", "content": "Hi"}]
            if self.reply is not None:
                messages.append({"role": "assistant", "content": self.reply})
            return httpx.Response(200, json={"messages": messages})
        if name == "agent_configurations":
            return httpx.Response(
                200, json={"agentConfigurations": [{"sId": AGENT, "name": "SystemsThinking"}]}
            )
        return httpx.Response(200, json={"username": "tester", "workspaces": [{}]})

    @property
    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake():
    return FakeDust()


@pytest.fixture
def dust_client(fake):
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(fake.handler), base_url=BASE_URL
    )
    return DustClient(http, WORKSPACE, AGENT, {"timezone": "UTC", "origin": "api"})
