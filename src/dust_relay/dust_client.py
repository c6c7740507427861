import logging
from typing import Any

import httpx

from dust_relay.errors import UpstreamUnavailable
from dust_relay.models import ChatMessage, RunStatus
from dust_relay.settings import Settings

logger = logging.getLogger(__name__)


class DustClient:
    """Thin async wrapper around the Dust assistant conversation API.

    Built once per process and shared by every chat request; it holds no
    per-request state.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        workspace_id: str,
        agent_id: str,
        context: dict[str, Any] | None = None,
    ):
        self._http = http
        self._workspace_id = workspace_id
        self._agent_id = agent_id
        self._context = dict(context or {})

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "DustClient":
        http = httpx.AsyncClient(
            base_url=settings.dust_domain,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {settings.dust_api_key}",
            },
            timeout=settings.mcp_timeout,
            transport=transport,
        )
        context = {
            "timezone": settings.dust_timezone,
            "username": settings.dust_username,
            "fullName": settings.dust_fullname,
            "origin": "api",
        }
        return cls(http, settings.dust_workspace_id, settings.dust_agent_id, context)

    @property
    def agent_id(self) -> str:
        return self._agent_id

    async def aclose(self) -> None:
        await self._http.aclose()

    def _path(self, suffix: str) -> str:
        return f"/api/v1/w/{self._workspace_id}/assistant/{suffix}"

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"{method} {path} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"{method} {path} returned malformed JSON") from e

    async def create_conversation(self, title: str = "MCP Chat Session") -> str:
        logger.info("Creating conversation  title=%r", title)
        body = await self._request(
            "POST", self._path("conversations"), json={"title": title}
        )
        try:
            return body["conversation"]["sId"]
        except (KeyError, TypeError) as e:
            raise UpstreamUnavailable("Conversation response has no conversation.sId") from e

    async def post_message(self, conversation_id: str, message: ChatMessage) -> dict:
        logger.debug(
            "Posting %s message to %s  (%d chars)",
            message.role,
            conversation_id,
            len(message.content),
        )
        return await self._request(
            "POST",
            self._path(f"conversations/{conversation_id}/messages"),
            json={
                "content": message.content,
                "mentions": [],
                "context": self._context,
            },
        )

    async def create_run(self, conversation_id: str) -> str:
        body = await self._request(
            "POST",
            self._path(f"conversations/{conversation_id}/runs"),
            json={"agentConfiguration": {"sId": self._agent_id}, "dataSources": []},
        )
        try:
            run_id = body["run"]["sId"]
        except (KeyError, TypeError) as e:
            raise UpstreamUnavailable("Run response has no run.sId") from e
        logger.info("Run %s created in conversation %s", run_id, conversation_id)
        return run_id

    async def get_run_status(self, conversation_id: str, run_id: str) -> RunStatus:
        body = await self._request(
            "GET", self._path(f"conversations/{conversation_id}/runs/{run_id}")
        )
        try:
            return RunStatus(body["run"]["status"])
        except (KeyError, TypeError) as e:
            raise UpstreamUnavailable("Run response has no run.status") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"Unknown run status {body['run']['status']!r}") from e

    async def _get_object(self, path: str) -> dict:
        body = await self._request("GET", path)
        if not isinstance(body, dict):
            raise UpstreamUnavailable(f"GET {path} did not return an object")
        return body

    async def list_messages(self, conversation_id: str) -> list[dict]:
        body = await self._get_object(
            self._path(f"conversations/{conversation_id}/messages")
        )
        messages = body.get("messages")
        if messages is None:
            return []
        if not isinstance(messages, list):
            raise UpstreamUnavailable("Messages response has no messages list")
        return messages

    async def latest_assistant_message(self, conversation_id: str) -> str | None:
        messages = await self.list_messages(conversation_id)
        for message in reversed(messages):
            if isinstance(message, dict) and message.get("role") == "assistant":
                content = message.get("content")
                if content is None:
                    return ""
                if not isinstance(content, str):
                    raise UpstreamUnavailable("Assistant message content is not text")
                return content
        return None

    async def get_me(self) -> dict:
        return await self._get_object("/api/v1/me")

    async def list_agent_configurations(self) -> list[dict]:
        body = await self._get_object(self._path("agent_configurations"))
        return body.get("agentConfigurations") or []

    async def validate_connection(self) -> bool:
        """Check the key and agent at startup; problems are logged, not raised."""
        try:
            me = await self.get_me()
            logger.info(
                "Connected to Dust API as %s (%d workspaces)",
                me.get("username", "unknown"),
                len(me.get("workspaces") or []),
            )
        except UpstreamUnavailable as e:
            logger.warning("Could not fetch user info: %s", e)

        try:
            agents = await self.list_agent_configurations()
        except UpstreamUnavailable as e:
            logger.warning("Dust API connection failed: %s", e)
            return False

        found = any(
            str(a.get("sId", a.get("id"))) == str(self._agent_id) for a in agents
        )
        if found:
            logger.info("Verified agent configuration %s", self._agent_id)
        else:
            logger.warning(
                "Agent %s not found in workspace; available: %s",
                self._agent_id,
                ", ".join(f"{a.get('name')} ({a.get('sId')})" for a in agents) or "none",
            )
        return found
