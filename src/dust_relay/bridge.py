import logging
from typing import Any, AsyncGenerator

import anyio

from dust_relay.dust_client import DustClient
from dust_relay.errors import UpstreamUnavailable
from dust_relay.models import (
    ContentEvent,
    EndEvent,
    ErrorEvent,
    OutboundEvent,
    StartEvent,
    parse_messages,
)
from dust_relay.poller import PollOutcome, RunPoller

logger = logging.getLogger(__name__)

RUN_FAILED = "Run failed"
TIMED_OUT = "Request timed out"
ABORTED = "Request aborted"

_OUTCOME_ERRORS = {
    PollOutcome.FAILED: RUN_FAILED,
    PollOutcome.TIMED_OUT: TIMED_OUT,
    PollOutcome.ABORTED: ABORTED,
}


class StreamingBridge:
    """Drives one chat turn against Dust and reports progress as events.

    The stream always starts with ``start`` once a run exists and always
    ends with exactly one ``end`` or ``error`` event. A failure before the
    run exists produces a lone ``error`` event.
    """

    def __init__(self, client: DustClient, poller: RunPoller):
        self._client = client
        self._poller = poller

    async def handle_chat(
        self, messages: Any, abort: anyio.Event | None = None
    ) -> AsyncGenerator[OutboundEvent, None]:
        history = parse_messages(messages)
        logger.info("Chat request with %d messages", len(history))

        try:
            conversation_id = await self._client.create_conversation()
            context, turn = history[:-1], history[-1]
            for index, message in enumerate(context, start=1):
                await self._client.post_message(conversation_id, message)
                logger.debug("Added context message %d/%d", index, len(context))
            await self._client.post_message(conversation_id, turn)
            run_id = await self._client.create_run(conversation_id)
        except UpstreamUnavailable as e:
            logger.error("Could not start chat run: %s", e)
            yield ErrorEvent(error=f"Error: {e}")
            return

        yield StartEvent(id=run_id, conversationId=conversation_id)

        reply = None
        try:
            outcome = await self._poller.poll(conversation_id, run_id, abort=abort)
            if outcome is PollOutcome.COMPLETED:
                reply = await self._client.latest_assistant_message(conversation_id)
        except UpstreamUnavailable as e:
            logger.error("Error while waiting for run %s: %s", run_id, e)
            yield ErrorEvent(id=run_id, conversationId=conversation_id, error=f"Error: {e}")
            return

        if outcome is not PollOutcome.COMPLETED:
            yield ErrorEvent(
                id=run_id,
                conversationId=conversation_id,
                error=_OUTCOME_ERRORS[outcome],
            )
            return

        if reply is None:
            logger.warning("No assistant messages found in conversation %s", conversation_id)
        else:
            logger.info("Assistant response: %.100s", reply)
            yield ContentEvent(id=run_id, conversationId=conversation_id, content=reply)
        yield EndEvent(id=run_id, conversationId=conversation_id)

    async def collect_reply(self, messages: Any) -> str:
        """Run a chat turn to completion and return the assistant's text."""
        reply = ""
        events = self.handle_chat(messages)
        try:
            async for event in events:
                if isinstance(event, ContentEvent):
                    reply = event.content
                elif isinstance(event, ErrorEvent):
                    raise RuntimeError(event.error)
        finally:
            await events.aclose()
        return reply
