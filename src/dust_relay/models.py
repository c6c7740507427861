"""Pydantic models for chat input, run state and outbound stream events."""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dust_relay.errors import InvalidRequest


class ChatMessage(BaseModel):
    """One turn of the incoming chat history."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class RunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class StartEvent(BaseModel):
    type: Literal["start"] = "start"
    id: str
    conversationId: str


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    id: str
    conversationId: str
    content: str
    role: Literal["assistant"] = "assistant"


class EndEvent(BaseModel):
    type: Literal["end"] = "end"
    id: str
    conversationId: str


class ErrorEvent(BaseModel):
    """Terminal failure. ``id`` and ``conversationId`` are unset when no run exists yet."""

    type: Literal["error"] = "error"
    id: str | None = None
    conversationId: str | None = None
    error: str


OutboundEvent = Annotated[
    Union[StartEvent, ContentEvent, EndEvent, ErrorEvent],
    Field(discriminator="type"),
]


class ChatNotification(BaseModel):
    """JSON-RPC notification wrapping every event sent to the SSE client."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: Literal["chat"] = "chat"
    params: OutboundEvent


class JsonRpcRequest(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None = None
    method: str
    params: dict[str, Any] | None = None


def parse_messages(value: Any) -> list[ChatMessage]:
    """Validate the ``messages`` parameter of a chat request."""
    if not isinstance(value, list):
        raise InvalidRequest("Invalid params: messages must be an array")
    if not value:
        raise InvalidRequest("Invalid params: messages must not be empty")
    try:
        return [ChatMessage.model_validate(item) for item in value]
    except ValidationError as exc:
        raise InvalidRequest(f"Invalid params: {exc.errors()[0]['msg']}") from exc
