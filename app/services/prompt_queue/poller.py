"""
Poll reconciliation loop.

One timer per conversation session fetches the status of every outstanding
server queue id in a single batched request, evicts jobs that reached a
terminal status and asks the conversation layer to regenerate once per
tick when anything completed.

State machine:
    DISARMED --arm()--> ARMED   (only with outstanding server ids)
    ARMED --disarm()--> DISARMED (nothing outstanding, or session reset)
    ARMED --failure ceiling--> HALTED
    HALTED --resume()--> DISARMED --arm()--> ARMED

The timer task exists only while ARMED. Ticks never overlap: the next
interval starts once the previous tick has returned.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from app.core.config import get_settings
from app.core.logging import get_safe_logger
from app.schemas.message import ChatMessage
from app.schemas.queue import QueueRef, QueueStatus
from app.services.exceptions import (
    JobCancelled,
    JobFailure,
    PromptQueueError,
    TransportFailure,
)
from app.services.prompt_queue.client import PromptQueueClient
from app.services.prompt_queue.collaborators import (
    Notification,
    NotificationStatus,
    Notifier,
    maybe_await,
)
from app.services.prompt_queue.correlation import CorrelationTable
from app.services.prompt_queue.regeneration import RegenerationTrigger
from app.services.prompt_queue.session import EngineSession
from app.services.prompt_queue.transcript import ConversationTranscript

logger = get_safe_logger(__name__)

PAUSED_TITLE = "Queue updates paused"
PAUSED_DESCRIPTION = "Stopped polling after repeated failures."


class PollState(str, Enum):
    DISARMED = "disarmed"
    ARMED = "armed"
    HALTED = "halted"


@dataclass
class TickResult:
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    regenerated: bool = False
    skipped: bool = False
    error: Optional[str] = None


class PollReconciliationLoop:

    def __init__(
        self,
        table: CorrelationTable,
        transcript: ConversationTranscript,
        client: PromptQueueClient,
        trigger: RegenerationTrigger,
        notifier: Notifier,
        session: EngineSession,
        cache_message: Optional[Callable[[ChatMessage], Any]] = None,
        interval_s: Optional[float] = None,
        max_failures: Optional[int] = None,
    ):
        settings = get_settings()
        self._table = table
        self._transcript = transcript
        self._client = client
        self._trigger = trigger
        self._notifier = notifier
        self._session = session
        self._cache_message = cache_message
        self.interval_s = (
            interval_s if interval_s is not None
            else settings.queue_poll_interval_ms / 1000.0
        )
        self.max_failures = max_failures or settings.queue_max_poll_failures

        self._state = PollState.DISARMED
        self._task: Optional[asyncio.Task] = None
        self.consecutive_failures = 0

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def is_armed(self) -> bool:
        return self._state is PollState.ARMED

    def arm(self) -> bool:
        """Start the timer if it is not running and something is outstanding."""
        if self._state is not PollState.DISARMED:
            return self._state is PollState.ARMED

        if not self._table.list_outstanding():
            return False

        self._state = PollState.ARMED
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Queue poller armed", outstanding=len(self._table.list_outstanding()))
        return True

    def disarm(self) -> None:
        if self._state is PollState.ARMED:
            self._state = PollState.DISARMED
            logger.debug("Queue poller disarmed")
        self._stop_task()

    def reset(self) -> None:
        """Session reset: stop the timer and forget failures and the halted state."""
        self._stop_task()
        self._state = PollState.DISARMED
        self.consecutive_failures = 0

    def resume(self) -> bool:
        """Manual retry after the failure ceiling paused updates."""
        if self._state is PollState.HALTED:
            self._state = PollState.DISARMED
            self.consecutive_failures = 0
            logger.info("Queue poller resumed")
        return self.arm()

    def _stop_task(self) -> None:
        task = self._task
        self._task = None
        # A tick that disarms from inside the timer lets the loop exit on its own.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval_s)
            if self._task is not me:
                break
            try:
                await self.tick()
            except Exception as e:
                logger.error(
                    "Unexpected queue poll error",
                    error_code="POLL_ERROR",
                    exception_class=type(e).__name__,
                )
                self._record_failure()

    async def tick(self) -> TickResult:
        """One status-check cycle against the latest table contents."""
        outstanding = self._table.list_outstanding()
        if not outstanding:
            self.disarm()
            return TickResult(skipped=True)

        generation = self._session.generation
        queue_ids = [job.server_id for job in outstanding]

        try:
            entries = await self._client.fetch_status(
                self._session.user_id,
                self._session.is_authenticated,
                queue_ids,
            )
        except TransportFailure as e:
            if generation != self._session.generation:
                return TickResult(skipped=True)
            logger.warning(
                "Failed to poll queue status",
                error_code=e.error_code.value,
                status_code=e.status_code,
            )
            self._record_failure()
            return TickResult(error=e.message)

        if generation != self._session.generation:
            # Session changed while the request was in flight
            return TickResult(skipped=True)

        self.consecutive_failures = 0
        result = await self._reconcile(entries)

        if result.completed:
            try:
                await self._trigger.fire()
                result.regenerated = True
            except PromptQueueError as e:
                logger.error("Regeneration failed", error_code=e.error_code.value)
                self._notifier.notify(
                    Notification(title=e.message, status=NotificationStatus.ERROR)
                )

        if not self._table.list_outstanding():
            self.disarm()
        return result

    def _evict(self, client_id: str) -> Optional[ChatMessage]:
        """Read the optimistic message before the entry that keys it is dropped."""
        message = self._transcript.get(client_id)
        self._table.remove(client_id)
        self._transcript.evict(client_id)
        return message

    async def _reconcile(self, entries: List[QueueRef]) -> TickResult:
        result = TickResult()
        handed_off: List[ChatMessage] = []
        failures: List[JobFailure] = []

        for entry in entries:
            if entry.status is QueueStatus.PROCESSING:
                self._table.mark_processing(entry.id)
                continue
            if not entry.status.is_terminal:
                continue

            job = self._table.find_by_server_id(entry.id)
            if job is None:
                continue

            message = self._evict(job.client_id)

            if entry.status is QueueStatus.COMPLETED:
                result.completed.append(entry.id)
                if message is not None:
                    handed_off.append(message)
            elif entry.status is QueueStatus.CANCELLED:
                result.cancelled.append(entry.id)
                failures.append(JobCancelled(entry.id))
            else:
                result.failed.append(entry.id)
                failures.append(JobFailure(entry.id))

        for failure in failures:
            logger.warning(
                "Queue job ended without result",
                queue_id=failure.queue_id,
                error_code=failure.error_code.value,
            )
            self._notifier.notify(
                Notification(title=failure.message, status=NotificationStatus.ERROR)
            )

        if self._cache_message is not None:
            for message in handed_off:
                # Cache errors never block regeneration or count as poll failures
                try:
                    await maybe_await(self._cache_message(message))
                except Exception as e:
                    logger.error(
                        "Failed to cache handed-off message",
                        error_code="CACHE_ERROR",
                        client_id=message.id,
                        exception_class=type(e).__name__,
                    )

        if result.completed or failures:
            logger.info(
                "Queue tick reconciled",
                completed=len(result.completed),
                failed=len(failures),
                outstanding=len(self._table.list_outstanding()),
            )
        return result

    def _record_failure(self) -> None:
        self.consecutive_failures += 1
        if self._state is PollState.HALTED:
            return

        if self.consecutive_failures >= self.max_failures:
            self._stop_task()
            self._state = PollState.HALTED
            logger.error(
                "Queue polling paused",
                error_code="POLL_CEILING",
                failures=self.consecutive_failures,
            )
            self._notifier.notify(
                Notification(
                    title=PAUSED_TITLE,
                    status=NotificationStatus.WARNING,
                    description=PAUSED_DESCRIPTION,
                )
            )
