"""
Prompt queue engine.
Optimistic submission, shared status polling and reconciliation for
prompts handed to the remote completion queue.
"""
from app.services.prompt_queue.client import EnqueueResult, PromptQueueClient
from app.services.prompt_queue.collaborators import (
    EngineCollaborators,
    LoggingNotifier,
    Notification,
    NotificationStatus,
    Notifier,
    RecordingNotifier,
    RegenerationRequest,
)
from app.services.prompt_queue.correlation import CorrelationTable, JobStatus, QueueJob
from app.services.prompt_queue.engine import PromptQueueEngine
from app.services.prompt_queue.poller import PollReconciliationLoop, PollState, TickResult
from app.services.prompt_queue.transcript import ConversationTranscript

__all__ = [
    "ConversationTranscript",
    "CorrelationTable",
    "EngineCollaborators",
    "EnqueueResult",
    "JobStatus",
    "LoggingNotifier",
    "Notification",
    "NotificationStatus",
    "Notifier",
    "PollReconciliationLoop",
    "PollState",
    "PromptQueueClient",
    "PromptQueueEngine",
    "QueueJob",
    "RecordingNotifier",
    "RegenerationRequest",
    "TickResult",
]
