import json

import httpx
import pytest

from app.schemas.message import create_text_message
from app.schemas.queue import EnqueueRequest, QueueStatus
from app.services.exceptions import EnqueueFailure, TransportFailure
from app.services.prompt_queue.client import PromptQueueClient


def make_client(handler) -> PromptQueueClient:
    return PromptQueueClient(
        base_url="http://queue.test/",
        timeout_s=1.0,
        transport=httpx.MockTransport(handler),
    )


def make_request() -> EnqueueRequest:
    return EnqueueRequest(
        user_id="user-1",
        chat_id="chat-1",
        model="gpt-4.1-nano",
        messages=[create_text_message("Hello", message_id="optimistic-1")],
    )


@pytest.mark.asyncio
async def test_enqueue_success_sends_camel_case_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "queue": {"id": "q1", "status": "pending"}})

    result = await make_client(handler).enqueue(make_request())

    assert result.server_id == "q1"
    assert result.status is QueueStatus.PENDING
    assert seen["path"] == "/api/prompt-queue/enqueue"
    body = seen["body"]
    assert body["userId"] == "user-1"
    assert body["chatId"] == "chat-1"
    assert body["isAuthenticated"] is False
    assert body["enableSearch"] is False
    assert body["messages"][0]["id"] == "optimistic-1"
    assert "createdAt" in body["messages"][0]


@pytest.mark.asyncio
async def test_enqueue_rejected_carries_server_message():
    def handler(request):
        return httpx.Response(429, json={"success": False, "error": "rate limited"})

    with pytest.raises(EnqueueFailure) as exc_info:
        await make_client(handler).enqueue(make_request())
    assert exc_info.value.message == "rate limited"


@pytest.mark.asyncio
async def test_enqueue_unsuccessful_body_with_ok_status():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "rate limited"})

    with pytest.raises(EnqueueFailure) as exc_info:
        await make_client(handler).enqueue(make_request())
    assert exc_info.value.message == "rate limited"


@pytest.mark.asyncio
async def test_enqueue_missing_queue_uses_fallback_message():
    def handler(request):
        return httpx.Response(200, json={"success": True})

    with pytest.raises(EnqueueFailure) as exc_info:
        await make_client(handler).enqueue(make_request())
    assert exc_info.value.message == "Failed to enqueue prompt"


@pytest.mark.asyncio
async def test_enqueue_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(EnqueueFailure) as exc_info:
        await make_client(handler).enqueue(make_request())
    assert exc_info.value.message == "Network error"


@pytest.mark.asyncio
async def test_fetch_status_batches_ids():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "success": True,
            "queue": [
                {"id": "q1", "status": "completed"},
                {"id": "q2", "status": "processing"},
            ],
        })

    entries = await make_client(handler).fetch_status("user-1", True, ["q1", "q2"])

    assert seen["body"] == {"userId": "user-1", "isAuthenticated": True, "queueIds": ["q1", "q2"]}
    assert [(e.id, e.status) for e in entries] == [
        ("q1", QueueStatus.COMPLETED),
        ("q2", QueueStatus.PROCESSING),
    ]


@pytest.mark.asyncio
async def test_fetch_status_http_error_uses_message_field():
    def handler(request):
        return httpx.Response(503, json={"message": "queue down"})

    with pytest.raises(TransportFailure) as exc_info:
        await make_client(handler).fetch_status("user-1", False, ["q1"])
    assert exc_info.value.message == "queue down"
    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_fetch_status_invalid_json():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(TransportFailure):
        await make_client(handler).fetch_status("user-1", False, ["q1"])


@pytest.mark.asyncio
async def test_fetch_status_unknown_status_value():
    def handler(request):
        return httpx.Response(200, json={"success": True, "queue": [{"id": "q1", "status": "weird"}]})

    with pytest.raises(TransportFailure):
        await make_client(handler).fetch_status("user-1", False, ["q1"])


@pytest.mark.asyncio
async def test_fetch_status_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow")

    with pytest.raises(TransportFailure) as exc_info:
        await make_client(handler).fetch_status("user-1", False, ["q1"])
    assert exc_info.value.message == "Request timed out"


@pytest.mark.asyncio
async def test_cancel_sends_queue_id():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True})

    await make_client(handler).cancel("q3", "user-1", False)

    assert seen["path"] == "/api/prompt-queue/cancel"
    assert seen["body"] == {"queueId": "q3", "userId": "user-1", "isAuthenticated": False}


@pytest.mark.asyncio
async def test_cancel_failure_without_body():
    def handler(request):
        return httpx.Response(500, content=b"")

    with pytest.raises(TransportFailure) as exc_info:
        await make_client(handler).cancel("q3", "user-1", False)
    assert exc_info.value.message == "Request failed"


@pytest.mark.asyncio
async def test_fetch_messages_passes_user_id():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["user"] = request.url.params.get("userId")
        return httpx.Response(200, json={
            "success": True,
            "messages": [{"id": "m1", "role": "assistant", "content": "Hi"}],
        })

    messages = await make_client(handler).fetch_messages("chat-1", "user-1")

    assert seen == {"path": "/api/chats/chat-1/messages", "user": "user-1"}
    assert messages[0].id == "m1"
    assert messages[0].role == "assistant"
