from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from app.core.logging import get_safe_logger
from app.core.rate_limiter import get_rate_limiter
from app.schemas.queue import (
    CancelRequest,
    CancelResponse,
    EnqueueRequest,
    EnqueueResponse,
    QueueRef,
    StatusRequest,
    StatusResponse,
)
from app.services.job_manager import PromptQueueManager

router = APIRouter(prefix="/api/prompt-queue", tags=["prompt-queue"])
logger = get_safe_logger(__name__)


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message}
    )


@router.get(
    "/metrics",
    summary="Get prompt queue counters",
)
async def get_queue_metrics():
    return PromptQueueManager.get_instance().get_metrics()


@router.post(
    "/enqueue",
    response_model=EnqueueResponse,
    summary="Enqueue a prompt",
    responses={
        403: {"description": "Chat belongs to another user"},
        429: {"description": "Rate limited"},
    }
)
async def enqueue_prompt(request_body: EnqueueRequest):
    """
    Accept a prompt for asynchronous completion.
    """
    allowed, _remaining = get_rate_limiter().check_and_record(request_body.user_id)
    if not allowed:
        logger.warning("Enqueue rate limited", chat_id=request_body.chat_id)
        return _failure(status.HTTP_429_TOO_MANY_REQUESTS, "rate limited")

    manager = PromptQueueManager.get_instance()
    try:
        record = await manager.enqueue(request_body)
    except PermissionError as e:
        logger.warning("Enqueue refused", chat_id=request_body.chat_id, status_code=403)
        return _failure(status.HTTP_403_FORBIDDEN, str(e))

    return EnqueueResponse(
        success=True,
        queue=QueueRef(id=record.id, status=record.status),
    )


@router.post(
    "/status",
    response_model=StatusResponse,
    summary="Get the status of several queue jobs",
)
async def get_queue_status(request_body: StatusRequest):
    """
    Batched status lookup. Ids that are unknown or belong to someone else
    are left out of the response.
    """
    manager = PromptQueueManager.get_instance()
    records = manager.get_statuses(request_body.user_id, request_body.queue_ids)
    return StatusResponse(
        success=True,
        queue=[QueueRef(id=record.id, status=record.status) for record in records],
    )


@router.post(
    "/cancel",
    response_model=CancelResponse,
    summary="Cancel a pending queue job",
    responses={
        404: {"description": "Queue job not found"},
        409: {"description": "Queue job is no longer pending"},
    }
)
async def cancel_queue_job(request_body: CancelRequest):
    manager = PromptQueueManager.get_instance()
    try:
        manager.cancel(request_body.user_id, request_body.queue_id)
    except LookupError as e:
        return _failure(status.HTTP_404_NOT_FOUND, str(e))
    except ValueError as e:
        logger.warning("Cancel conflict", queue_id=request_body.queue_id)
        return _failure(status.HTTP_409_CONFLICT, str(e))

    return CancelResponse(success=True)
