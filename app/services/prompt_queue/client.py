"""
HTTP client for the prompt queue endpoints.

Content-safe: request bodies carry prompts and are NEVER logged.
"""
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from app.core.config import get_settings
from app.core.logging import get_safe_logger
from app.schemas.message import ChatMessage
from app.schemas.queue import (
    ChatMessagesResponse,
    EnqueueRequest,
    EnqueueResponse,
    QueueRef,
    QueueStatus,
    StatusRequest,
    StatusResponse,
    CancelRequest,
    CancelResponse,
)
from app.services.exceptions import EnqueueFailure, TransportFailure

logger = get_safe_logger(__name__)

ENQUEUE_PATH = "/api/prompt-queue/enqueue"
STATUS_PATH = "/api/prompt-queue/status"
CANCEL_PATH = "/api/prompt-queue/cancel"
CHAT_MESSAGES_PATH = "/api/chats/{chat_id}/messages"


@dataclass(frozen=True)
class EnqueueResult:
    server_id: str
    status: QueueStatus


def _error_message(response: httpx.Response) -> str:
    """Pull the server-provided error out of a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return "Request failed"
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message")
        if isinstance(message, str) and message:
            return message
    return "Request failed"


class PromptQueueClient:
    """
    Thin async client for enqueue, status and cancel.

    Every failure surfaces as TransportFailure, except enqueue which
    raises EnqueueFailure so the submit path can tell the two apart.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.queue_api_base_url).rstrip("/")
        self.timeout_s = (
            timeout_s if timeout_s is not None
            else settings.queue_request_timeout_ms / 1000.0
        )
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        start_time = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    path,
                    json=body,
                    params=params,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.warning("Queue request timed out", path=path, latency_ms=elapsed_ms)
            raise TransportFailure("Request timed out")
        except httpx.HTTPError as e:
            logger.warning(
                "Queue request failed",
                path=path,
                exception_class=type(e).__name__,
            )
            raise TransportFailure("Network error")

        if response.is_error:
            raise TransportFailure(_error_message(response), status_code=response.status_code)

        try:
            payload = response.json()
        except json.JSONDecodeError:
            raise TransportFailure("Invalid JSON response", status_code=response.status_code)

        if not isinstance(payload, dict):
            raise TransportFailure("Unexpected response shape", status_code=response.status_code)

        logger.debug(
            "Queue request completed",
            method=method,
            path=path,
            status_code=response.status_code,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return payload

    async def enqueue(self, request: EnqueueRequest) -> EnqueueResult:
        """
        Hand a prompt to the queue.

        Raises:
            EnqueueFailure: on any non-success outcome, carrying the server
                message when there is one
        """
        body = request.model_dump(mode="json", by_alias=True)
        try:
            payload = await self._request("POST", ENQUEUE_PATH, body)
        except TransportFailure as e:
            raise EnqueueFailure(e.message)

        try:
            parsed = EnqueueResponse.model_validate(payload)
        except ValidationError:
            raise EnqueueFailure()

        if not parsed.success or parsed.queue is None:
            raise EnqueueFailure(parsed.error)

        return EnqueueResult(server_id=parsed.queue.id, status=parsed.queue.status)

    async def fetch_status(
        self,
        user_id: str,
        is_authenticated: bool,
        queue_ids: list[str],
    ) -> list[QueueRef]:
        body = StatusRequest(
            user_id=user_id,
            is_authenticated=is_authenticated,
            queue_ids=list(queue_ids),
        ).model_dump(mode="json", by_alias=True)
        payload = await self._request("POST", STATUS_PATH, body)

        try:
            parsed = StatusResponse.model_validate(payload)
        except ValidationError:
            raise TransportFailure("Invalid queue status response")

        if not parsed.success:
            raise TransportFailure(parsed.error or "Failed to fetch queue status")
        return parsed.queue

    async def cancel(
        self,
        queue_id: str,
        user_id: Optional[str],
        is_authenticated: bool,
    ) -> None:
        body = CancelRequest(
            queue_id=queue_id,
            user_id=user_id,
            is_authenticated=is_authenticated,
        ).model_dump(mode="json", by_alias=True)
        payload = await self._request("POST", CANCEL_PATH, body)

        try:
            parsed = CancelResponse.model_validate(payload)
        except ValidationError:
            raise TransportFailure("Invalid cancel response")

        if not parsed.success:
            raise TransportFailure(parsed.error or "Failed to cancel job")

    async def fetch_messages(self, chat_id: str, user_id: str) -> list[ChatMessage]:
        payload = await self._request(
            "GET",
            CHAT_MESSAGES_PATH.format(chat_id=chat_id),
            params={"userId": user_id},
        )

        try:
            parsed = ChatMessagesResponse.model_validate(payload)
        except ValidationError:
            raise TransportFailure("Invalid chat messages response")

        if not parsed.success:
            raise TransportFailure(parsed.error or "Failed to load messages")
        return parsed.messages
