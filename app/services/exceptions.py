"""
Exceptions for the prompt queue engine and the completion backends.
Messages are short and user-facing; they never carry prompt content.
"""
from enum import Enum
from typing import Optional


class QueueErrorCode(str, Enum):
    """Error codes for logging and responses."""
    GATE_REJECTED = "GATE_REJECTED"
    ENQUEUE_FAILED = "ENQUEUE_FAILED"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"
    JOB_FAILED = "JOB_FAILED"
    JOB_CANCELLED = "JOB_CANCELLED"
    MODEL_ERROR = "MODEL_ERROR"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"


class PromptQueueError(Exception):
    """
    Base exception for queue errors.

    Attributes:
        error_code: error code for logging
        message: short user-facing message
        retryable: whether repeating the operation may succeed
    """

    def __init__(
        self,
        error_code: QueueErrorCode,
        message: str = "Request failed",
        retryable: bool = False
    ):
        self.error_code = error_code
        self.message = message
        self.retryable = retryable
        super().__init__(message)


class GateRejection(PromptQueueError):
    """A submission gate (limit, chat bootstrap, length, upload) refused the prompt."""

    def __init__(self, gate: str):
        self.gate = gate
        super().__init__(
            error_code=QueueErrorCode.GATE_REJECTED,
            message=f"Submission rejected by {gate} gate",
            retryable=False
        )


class EnqueueFailure(PromptQueueError):
    """The queue did not accept the prompt."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            error_code=QueueErrorCode.ENQUEUE_FAILED,
            message=message or "Failed to enqueue prompt",
            retryable=False
        )


class TransportFailure(PromptQueueError):
    """Network, HTTP or parse error talking to the queue endpoints."""

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(
            error_code=QueueErrorCode.TRANSPORT_FAILED,
            message=message or "Request failed",
            retryable=True
        )


class JobFailure(PromptQueueError):
    """The worker reported the job as failed."""

    def __init__(self, queue_id: str):
        self.queue_id = queue_id
        super().__init__(
            error_code=QueueErrorCode.JOB_FAILED,
            message="Queued message failed",
            retryable=False
        )


class JobCancelled(JobFailure):
    """The queue reported the job as cancelled."""

    def __init__(self, queue_id: str):
        super().__init__(queue_id)
        self.error_code = QueueErrorCode.JOB_CANCELLED


class CompletionError(PromptQueueError):
    """Base exception for completion backend errors."""


class BackendUnavailableError(CompletionError):
    """Raised when the completion backend is not reachable."""

    def __init__(self, backend: str = "unknown"):
        super().__init__(
            error_code=QueueErrorCode.BACKEND_UNAVAILABLE,
            message=f"Backend unavailable: {backend}",
            retryable=True
        )


class BackendTimeoutError(CompletionError):
    """Raised when the completion request times out."""

    def __init__(self, timeout_ms: int = 0):
        super().__init__(
            error_code=QueueErrorCode.TIMEOUT,
            message=f"Backend timeout after {timeout_ms}ms",
            retryable=True
        )


class RateLimitedError(CompletionError):
    """Raised when the completion backend returns 429."""

    def __init__(self):
        super().__init__(
            error_code=QueueErrorCode.RATE_LIMITED,
            message="Rate limited by backend",
            retryable=True
        )


class ModelError(CompletionError):
    """Raised when the model returns unusable output."""

    def __init__(self, reason: str = "Invalid model output"):
        super().__init__(
            error_code=QueueErrorCode.MODEL_ERROR,
            message=reason,
            retryable=True
        )
