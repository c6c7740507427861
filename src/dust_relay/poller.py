import logging
from enum import Enum

import anyio

from dust_relay.dust_client import DustClient
from dust_relay.models import RunStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0
DEFAULT_MAX_ATTEMPTS = 60


class PollOutcome(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class RunPoller:
    """Waits for a run to reach a terminal status by polling at a fixed interval.

    Every call to ``poll`` keeps its own attempt counter, so one poller can
    serve any number of concurrent chat requests. Upstream errors are not
    retried: ``UpstreamUnavailable`` propagates to the caller.
    """

    def __init__(
        self,
        client: DustClient,
        interval: float = DEFAULT_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self._interval = interval
        self._max_attempts = max_attempts

    async def _wait(self, abort: anyio.Event | None) -> bool:
        """Sleep one interval; return True if ``abort`` fired meanwhile."""
        if abort is None:
            await anyio.sleep(self._interval)
            return False
        with anyio.move_on_after(self._interval):
            await abort.wait()
        return abort.is_set()

    async def poll(
        self,
        conversation_id: str,
        run_id: str,
        abort: anyio.Event | None = None,
    ) -> PollOutcome:
        previous: RunStatus | None = None
        for attempt in range(1, self._max_attempts + 1):
            if await self._wait(abort):
                logger.info("Polling of run %s aborted after %d attempts", run_id, attempt - 1)
                return PollOutcome.ABORTED

            logger.debug(
                "Polling run %s (attempt %d/%d)", run_id, attempt, self._max_attempts
            )
            status = await self._client.get_run_status(conversation_id, run_id)
            if status is not previous:
                logger.info("Run %s is %s", run_id, status.value)
                previous = status

            if status is RunStatus.COMPLETED:
                return PollOutcome.COMPLETED
            if status is RunStatus.FAILED:
                return PollOutcome.FAILED

        logger.error(
            "Run %s still %s after %d attempts, giving up",
            run_id,
            previous.value if previous else "unknown",
            self._max_attempts,
        )
        return PollOutcome.TIMED_OUT
