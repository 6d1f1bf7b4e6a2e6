"""
Correlation table: local submission identity -> server queue identity.

The table is the only record of outstanding queue work for a session.
Everything that needs to know what is in flight (the poller, the cancel
path, the pending-jobs list) reads it at the moment it acts.
"""
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional

from app.core.logging import get_safe_logger
from app.schemas.message import Attachment
from app.schemas.queue import QueueStatus

logger = get_safe_logger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"

    @classmethod
    def from_remote(cls, status) -> "JobStatus":
        """Only an explicit 'processing' from the server counts as processing."""
        value = status.value if isinstance(status, QueueStatus) else str(status)
        if value == QueueStatus.PROCESSING.value:
            return cls.PROCESSING
        return cls.PENDING


@dataclass
class QueueJob:
    client_id: str
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attachments: tuple[Attachment, ...] = ()
    server_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING

    @property
    def can_cancel(self) -> bool:
        return self.server_id is not None and self.status is JobStatus.PENDING


class CorrelationTable:
    """
    Owner of all QueueJob entries for one conversation session.

    Invariants:
        - client ids are unique
        - non-null server ids are unique and assigned once
        - a PROCESSING job always has a server id
    """

    def __init__(self):
        self._jobs: Dict[str, QueueJob] = {}
        self._by_server_id: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._jobs

    def create(
        self,
        client_id: str,
        content: str,
        attachments: Iterable[Attachment] = (),
    ) -> QueueJob:
        if client_id in self._jobs:
            raise ValueError(f"Duplicate client id: {client_id}")

        job = QueueJob(
            client_id=client_id,
            content=content,
            attachments=tuple(attachments),
        )
        self._jobs[client_id] = job
        logger.debug("Queue job tracked", client_id=client_id, count=len(self._jobs))
        return job

    def attach_server_id(
        self,
        client_id: str,
        server_id: str,
        initial_status=JobStatus.PENDING,
    ) -> bool:
        """
        Record the server id handed back by the enqueue call.

        Returns False when the job is no longer tracked (cancelled or the
        session was reset while the enqueue call was in flight).
        """
        job = self._jobs.get(client_id)
        if job is None:
            logger.warning(
                "Server id arrived for untracked job",
                client_id=client_id,
                queue_id=server_id,
            )
            return False

        if job.server_id is not None:
            raise ValueError(f"Server id already assigned for {client_id}")

        owner = self._by_server_id.get(server_id)
        if owner is not None:
            raise ValueError(f"Server id {server_id} already tracked by {owner}")

        job.server_id = server_id
        job.status = JobStatus.from_remote(initial_status)
        self._by_server_id[server_id] = client_id
        logger.info(
            "Queue job enqueued",
            client_id=client_id,
            queue_id=server_id,
            status=job.status.value,
        )
        return True

    def mark_processing(self, server_id: str) -> bool:
        """The worker picked the job up. Processing jobs never go back to pending."""
        job = self.find_by_server_id(server_id)
        if job is None or job.status is JobStatus.PROCESSING:
            return False
        job.status = JobStatus.PROCESSING
        logger.debug("Queue job processing", client_id=job.client_id, queue_id=server_id)
        return True

    def get(self, client_id: str) -> Optional[QueueJob]:
        return self._jobs.get(client_id)

    def find_by_server_id(self, server_id: str) -> Optional[QueueJob]:
        client_id = self._by_server_id.get(server_id)
        if client_id is None:
            return None
        return self._jobs.get(client_id)

    def remove(self, key: str) -> Optional[QueueJob]:
        """Remove a job by client id or server id. Removing twice is a no-op."""
        client_id = key if key in self._jobs else self._by_server_id.get(key)
        if client_id is None:
            return None

        job = self._jobs.pop(client_id, None)
        if job is not None and job.server_id is not None:
            self._by_server_id.pop(job.server_id, None)
        return job

    def list_outstanding(self) -> list[QueueJob]:
        """Jobs the server knows about, oldest first. This is the poll input."""
        return [job for job in self._ordered() if job.server_id is not None]

    def snapshot(self) -> list[QueueJob]:
        """Copies of every tracked job in display order."""
        return [dataclasses.replace(job) for job in self._ordered()]

    def clear(self) -> None:
        self._jobs.clear()
        self._by_server_id.clear()

    def _ordered(self) -> list[QueueJob]:
        return sorted(self._jobs.values(), key=lambda job: job.created_at)
