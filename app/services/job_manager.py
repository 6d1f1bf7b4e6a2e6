import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.logging import get_safe_logger
from app.core.config import get_settings
from app.schemas.message import Attachment, ChatMessage, create_text_message, get_text_content
from app.schemas.queue import EnqueueRequest, QueueStatus
from app.services.chat_store import get_chat_store
from app.services.completion import complete_chat
from app.services.exceptions import PromptQueueError

logger = get_safe_logger(__name__)


@dataclass
class QueueRecord:
    id: str
    user_id: str
    chat_id: str
    model: str
    messages: List[ChatMessage]
    system_prompt: Optional[str] = None
    enable_search: bool = False
    attachments: List[Attachment] = field(default_factory=list)
    status: QueueStatus = QueueStatus.PENDING
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def age_seconds(self) -> float:
        return time.time() - self.created_at


class PromptQueueManager:
    _instance = None

    def __init__(self):
        # FIFO Queue
        self._queue: asyncio.Queue = asyncio.Queue()

        # Job Storage (In-memory)
        self._jobs: Dict[str, QueueRecord] = {}

        self._active_job_id: Optional[str] = None
        self._counts = {
            "completed": 0,
            "failed": 0,
            "cancelled": 0,
        }
        self._shutting_down = False

    @classmethod
    def get_instance(cls):
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def job_ttl_seconds(self) -> int:
        return get_settings().queue_job_ttl_seconds

    def get_job(self, job_id: str) -> Optional[QueueRecord]:
        return self._jobs.get(job_id)

    async def enqueue(self, request: EnqueueRequest) -> QueueRecord:
        """
        Queue a prompt for the worker.
        The prompt only joins the chat history once the job completes, so
        cancelled and failed prompts never show up there.
        Raises PermissionError if the chat belongs to another user.
        """
        if not get_chat_store().claim(request.chat_id, request.user_id):
            raise PermissionError("Chat belongs to another user")

        prompt = request.messages[-1]
        stored_prompt = self._stored_prompt(prompt, request.attachments)

        job_id = f"q_{uuid.uuid4().hex}"
        record = QueueRecord(
            id=job_id,
            user_id=request.user_id,
            chat_id=request.chat_id,
            model=request.model,
            messages=list(request.messages[:-1]) + [stored_prompt],
            system_prompt=request.system_prompt,
            enable_search=request.enable_search,
            attachments=list(request.attachments),
        )
        self._jobs[job_id] = record
        await self._queue.put(job_id)

        logger.info(
            "Queue job submitted",
            queue_id=job_id,
            chat_id=request.chat_id,
            model=request.model,
            queue_size=self._queue.qsize()
        )
        return record

    @staticmethod
    def _stored_prompt(prompt: ChatMessage, attachments: List[Attachment]) -> ChatMessage:
        """The confirmed copy of the prompt carries the uploaded files, not local previews."""
        if not attachments:
            return prompt
        message = create_text_message(
            get_text_content(prompt),
            role=prompt.role,
            message_id=prompt.id,
            attachments=attachments,
        )
        message.created_at = prompt.created_at
        return message

    def get_statuses(self, user_id: str, job_ids: List[str]) -> List[QueueRecord]:
        """Records owned by the user, in request order. Unknown ids are omitted."""
        records = []
        seen = set()
        for job_id in job_ids:
            if job_id in seen:
                continue
            seen.add(job_id)
            record = self._jobs.get(job_id)
            if record is not None and record.user_id == user_id:
                records.append(record)
        return records

    def cancel(self, user_id: Optional[str], job_id: str) -> QueueRecord:
        """
        Cancel a pending job.
        Raises LookupError for unknown or foreign jobs, ValueError once the
        worker has picked the job up.
        """
        record = self._jobs.get(job_id)
        if record is None or record.user_id != user_id:
            raise LookupError("Queue job not found")

        if record.status == QueueStatus.CANCELLED:
            return record

        if record.status != QueueStatus.PENDING:
            raise ValueError(f"Queue job is already {record.status.value}")

        record.status = QueueStatus.CANCELLED
        record.completed_at = time.time()
        self._counts["cancelled"] += 1
        logger.info("Queue job cancelled", queue_id=job_id)
        return record

    async def start_worker(self):
        logger.info("Starting prompt queue worker")
        while not self._shutting_down:
            try:
                # Wait for a job with timeout to allow periodic cleanup
                try:
                    job_id = await asyncio.wait_for(self._queue.get(), timeout=60.0)
                    await self._process_job(job_id)
                    self._queue.task_done()
                except asyncio.TimeoutError:
                    self._cleanup_stale_jobs()
            except Exception as e:
                logger.error(
                    "Worker error loop",
                    error_code="WORKER_ERROR",
                    exception_class=type(e).__name__,
                )
                # Prevent tight loop on error
                await asyncio.sleep(1)

    async def _process_job(self, job_id: str):
        record = self._jobs.get(job_id)
        if record is None or record.status != QueueStatus.PENDING:
            # Cancelled while waiting, or already expired
            return

        self._active_job_id = job_id
        record.status = QueueStatus.PROCESSING
        record.started_at = time.time()
        logger.info("Queue job started", queue_id=job_id)

        try:
            reply = await complete_chat(
                record.messages,
                model=record.model,
                system_prompt=record.system_prompt,
            )
            chat_store = get_chat_store()
            chat_store.append(record.chat_id, record.user_id, record.messages[-1])
            chat_store.append(
                record.chat_id,
                record.user_id,
                create_text_message(reply, role="assistant"),
            )
            record.status = QueueStatus.COMPLETED
            self._counts["completed"] += 1

        except PromptQueueError as e:
            record.status = QueueStatus.FAILED
            record.error = e.message
            self._counts["failed"] += 1
            logger.error("Queue job failed", queue_id=job_id, error_code=e.error_code.value)

        except Exception as e:
            record.status = QueueStatus.FAILED
            record.error = "Completion failed"
            self._counts["failed"] += 1
            logger.error(
                "Queue job failed",
                queue_id=job_id,
                error_code="JOB_FAILED",
                exception_class=type(e).__name__,
            )

        finally:
            record.completed_at = time.time()
            self._active_job_id = None
            self._cleanup_stale_jobs()
            logger.info("Queue job finished", queue_id=job_id, status=record.status.value)

    def _cleanup_stale_jobs(self):
        """Remove finished jobs older than the TTL."""
        now = time.time()
        ttl = self.job_ttl_seconds
        to_remove = [
            jid for jid, record in self._jobs.items()
            if record.status.is_terminal and (now - record.created_at) > ttl
        ]
        for jid in to_remove:
            del self._jobs[jid]

    def get_metrics(self) -> Dict[str, Any]:
        pending = sum(1 for j in self._jobs.values() if j.status == QueueStatus.PENDING)
        return {
            "pending": pending,
            "active": 1 if self._active_job_id else 0,
            "completed": self._counts["completed"],
            "failed": self._counts["failed"],
            "cancelled": self._counts["cancelled"],
            "updatedAt": datetime.utcnow().isoformat() + "Z",
        }
