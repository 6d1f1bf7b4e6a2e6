"""
Prompt queue submission and reconciliation engine.

Submitting a prompt shows it in the transcript right away, tracks it in
the correlation table, runs the submission gates, hands it to the remote
queue and arms the shared poller. Completion, failure and cancellation
remove both the tracking entry and the optimistic message.

All mutations happen on the event loop that drives the engine. The
session generation is checked after every suspension point so results
that arrive after a chat switch are dropped.
"""
import uuid
from typing import Any, Iterable, List, Optional, Sequence

from app.core.config import get_settings
from app.core.logging import get_safe_logger
from app.schemas.message import Attachment, ChatMessage
from app.schemas.queue import EnqueueRequest
from app.services.exceptions import (
    EnqueueFailure,
    GateRejection,
    PromptQueueError,
    TransportFailure,
)
from app.services.prompt_queue.client import PromptQueueClient
from app.services.prompt_queue.collaborators import (
    EngineCollaborators,
    LoggingNotifier,
    Notification,
    NotificationStatus,
    Notifier,
    maybe_await,
)
from app.services.prompt_queue.correlation import CorrelationTable, JobStatus, QueueJob
from app.services.prompt_queue.poller import PollReconciliationLoop, PollState
from app.services.prompt_queue.regeneration import ChatHistoryRegenerator, RegenerationTrigger
from app.services.prompt_queue.session import EngineSession
from app.services.prompt_queue.transcript import ConversationTranscript

logger = get_safe_logger(__name__)

QUEUE_FAILED_TITLE = "Failed to queue message"
CANCEL_FAILED_TITLE = "Failed to cancel job"


class _StaleSession(Exception):
    """The session was reset while a submission was suspended."""


class PromptQueueEngine:

    def __init__(
        self,
        client: Optional[PromptQueueClient] = None,
        collaborators: Optional[EngineCollaborators] = None,
        notifier: Optional[Notifier] = None,
        chat_id: Optional[str] = None,
        model: Optional[str] = None,
        is_authenticated: bool = False,
        system_prompt: Optional[str] = None,
        enable_search: bool = False,
        messages: Iterable[ChatMessage] = (),
        poll_interval_s: Optional[float] = None,
        max_poll_failures: Optional[int] = None,
    ):
        settings = get_settings()
        self.client = client or PromptQueueClient()
        self.collaborators = collaborators or EngineCollaborators()
        self.notifier = notifier or LoggingNotifier()
        self.message_max_length = settings.message_max_length

        self.session = EngineSession(
            chat_id=chat_id,
            model=model or settings.default_model,
            is_authenticated=is_authenticated,
            system_prompt=system_prompt or settings.system_prompt_default,
            enable_search=enable_search,
        )
        self.table = CorrelationTable()
        self.transcript = ConversationTranscript(messages)

        regenerate = self.collaborators.regenerate or ChatHistoryRegenerator(
            self.client, self.transcript
        )
        self.trigger = RegenerationTrigger(self.session, regenerate)
        self.poller = PollReconciliationLoop(
            table=self.table,
            transcript=self.transcript,
            client=self.client,
            trigger=self.trigger,
            notifier=self.notifier,
            session=self.session,
            cache_message=self.collaborators.cache_message,
            interval_s=poll_interval_s,
            max_failures=max_poll_failures,
        )

    @property
    def pending_jobs(self) -> List[QueueJob]:
        """Tracked jobs, oldest first, for the queued-prompts list."""
        return self.table.snapshot()

    @property
    def poll_state(self) -> PollState:
        return self.poller.state

    def _ensure_current(self, generation: int) -> None:
        if generation != self.session.generation:
            raise _StaleSession()

    async def submit(self, content: str, files: Sequence[Any] = ()) -> Optional[QueueJob]:
        """
        Submit a prompt through the queue.

        Returns the tracked job once the queue accepted it, or None when the
        submission was rejected, failed or outlived its session. Failures are
        handled here and reported through the notifier; nothing is raised.
        """
        collab = self.collaborators
        generation = self.session.generation

        user_id = await maybe_await(collab.resolve_user_id())
        if not user_id or generation != self.session.generation:
            return None
        self.session.user_id = user_id

        client_id = f"optimistic-{uuid.uuid4().hex}"
        optimistic_attachments: List[Attachment] = (
            list(collab.create_optimistic_attachments(files)) if files else []
        )
        had_messages = len(self.transcript) > 0

        # Tracking entry and optimistic message are created in the same step
        self.table.create(client_id, content, optimistic_attachments)
        self.transcript.insert(self.table.get(client_id))
        history = self.transcript.messages

        try:
            chat_id = await self._pass_gates(user_id, content, generation)
            attachments = await self._upload_files(user_id, chat_id, files, generation)

            request = EnqueueRequest(
                user_id=user_id,
                chat_id=chat_id,
                model=self.session.model,
                is_authenticated=self.session.is_authenticated,
                system_prompt=self.session.system_prompt,
                enable_search=self.session.enable_search,
                messages=history,
                attachments=attachments,
            )
            result = await self.client.enqueue(request)
            self._ensure_current(generation)
            attached = self.table.attach_server_id(client_id, result.server_id, result.status)

        except _StaleSession:
            logger.info("Submission discarded after session reset", client_id=client_id)
            return None

        except GateRejection as e:
            logger.info("Submission rejected", client_id=client_id, gate=e.gate)
            await self._abandon(client_id, optimistic_attachments)
            return None

        except EnqueueFailure as e:
            if generation != self.session.generation:
                return None
            logger.warning(
                "Enqueue failed",
                client_id=client_id,
                error_code=e.error_code.value,
            )
            await self._abandon(client_id, optimistic_attachments)
            self.notifier.notify(Notification(title=e.message, status=NotificationStatus.ERROR))
            return None

        except Exception as e:
            if generation != self.session.generation:
                return None
            logger.error(
                "Failed to process queued submit",
                error_code="SUBMIT_ERROR",
                client_id=client_id,
                exception_class=type(e).__name__,
            )
            await self._abandon(client_id, optimistic_attachments)
            self.notifier.notify(
                Notification(title=QUEUE_FAILED_TITLE, status=NotificationStatus.ERROR)
            )
            return None

        if not attached:
            return None

        self.poller.arm()
        await maybe_await(collab.clear_draft())
        if had_messages:
            await maybe_await(collab.bump_chat(chat_id))
        return self.table.get(client_id)

    async def _pass_gates(
        self,
        user_id: str,
        content: str,
        generation: int,
    ) -> str:
        """Rate limit, chat bootstrap and length ceiling. Returns the chat id."""
        collab = self.collaborators

        allowed = await maybe_await(collab.check_limits(user_id))
        self._ensure_current(generation)
        if not allowed:
            raise GateRejection("limit")

        chat_id = await maybe_await(collab.ensure_chat(user_id, content))
        self._ensure_current(generation)
        if not chat_id:
            raise GateRejection("chat")
        self.session.chat_id = chat_id

        if len(content) > self.message_max_length:
            self.notifier.notify(
                Notification(
                    title=(
                        "The message you submitted was too long, please submit "
                        f"something shorter. (Max {self.message_max_length} characters)"
                    ),
                    status=NotificationStatus.ERROR,
                )
            )
            raise GateRejection("length")

        return chat_id

    async def _upload_files(
        self,
        user_id: str,
        chat_id: str,
        files: Sequence[Any],
        generation: int,
    ) -> List[Attachment]:
        if not files:
            return []

        attachments = await maybe_await(self.collaborators.upload_files(user_id, chat_id))
        self._ensure_current(generation)
        if attachments is None:
            raise GateRejection("upload")
        return list(attachments)

    async def _abandon(self, client_id: str, optimistic_attachments: List[Attachment]) -> None:
        self.transcript.evict(client_id)
        self.table.remove(client_id)
        if optimistic_attachments:
            await maybe_await(self.collaborators.cleanup_attachments(optimistic_attachments))

    async def cancel(self, server_id: str) -> bool:
        """
        Cancel a pending job.

        Local state is cleared before the cancel request goes out and is not
        restored if that request fails. Returns False when nothing was
        cancelled (unknown id, or the worker already picked the job up).
        """
        job = self.table.find_by_server_id(server_id)
        if job is None:
            logger.debug("Cancel ignored for untracked job", queue_id=server_id)
            return False

        if job.status is JobStatus.PROCESSING:
            logger.warning("Cancel refused for processing job", queue_id=server_id)
            return False

        self.table.remove(job.client_id)
        self.transcript.evict(job.client_id)
        if not self.table.list_outstanding():
            self.poller.disarm()

        generation = self.session.generation
        try:
            await self.client.cancel(
                server_id,
                self.session.user_id,
                self.session.is_authenticated,
            )
        except TransportFailure as e:
            logger.warning(
                "Failed to cancel queue job",
                queue_id=server_id,
                error_code=e.error_code.value,
            )
            if generation == self.session.generation:
                self.notifier.notify(
                    Notification(title=CANCEL_FAILED_TITLE, status=NotificationStatus.ERROR)
                )
        else:
            logger.info("Queue job cancelled", queue_id=server_id)
        return True

    async def reload(self) -> bool:
        """Ask the conversation layer to regenerate on demand."""
        if not self.session.user_id:
            self.session.user_id = await maybe_await(self.collaborators.resolve_user_id())
            if not self.session.user_id:
                return False
        try:
            await self.trigger.fire()
        except PromptQueueError as e:
            logger.error("Reload failed", error_code=e.error_code.value)
            self.notifier.notify(Notification(title=e.message, status=NotificationStatus.ERROR))
            return False
        return True

    def resume_polling(self) -> bool:
        """Restart polling after repeated failures paused it."""
        return self.poller.resume()

    def reset_session(
        self,
        chat_id: Optional[str] = None,
        messages: Iterable[ChatMessage] = (),
    ) -> None:
        """
        Switch to another conversation.

        In-flight jobs of the previous chat are dropped without cancelling
        them on the server; requests still in flight are ignored when they return.
        """
        self.poller.reset()
        discarded = len(self.table)
        self.table.clear()
        self.transcript.clear()
        self.transcript.replace_confirmed(messages)
        generation = self.session.reset(chat_id)
        logger.info(
            "Queue session reset",
            chat_id=chat_id,
            count=discarded,
            generation=generation,
        )

    def close(self) -> None:
        self.poller.reset()
