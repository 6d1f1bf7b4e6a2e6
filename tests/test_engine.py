import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.schemas.message import Attachment, create_text_message, get_text_content
from app.schemas.queue import QueueRef, QueueStatus
from app.services.exceptions import EnqueueFailure, TransportFailure
from app.services.prompt_queue import (
    EngineCollaborators,
    EnqueueResult,
    JobStatus,
    PollState,
    PromptQueueClient,
    PromptQueueEngine,
    RecordingNotifier,
)


def make_client(*server_ids, status=QueueStatus.PENDING):
    client = MagicMock(spec=PromptQueueClient)
    client.enqueue = AsyncMock(
        side_effect=[EnqueueResult(server_id=sid, status=status) for sid in server_ids]
    )
    client.fetch_status = AsyncMock(return_value=[])
    client.cancel = AsyncMock(return_value=None)
    client.fetch_messages = AsyncMock(return_value=[])
    return client


def make_engine(client, messages=(), **overrides):
    collaborators = {
        "resolve_user_id": AsyncMock(return_value="user-1"),
        "ensure_chat": MagicMock(return_value="chat-1"),
        "clear_draft": MagicMock(),
        "bump_chat": MagicMock(),
        "cleanup_attachments": MagicMock(),
        "regenerate": AsyncMock(),
    }
    collaborators.update(overrides)
    return PromptQueueEngine(
        client=client,
        collaborators=EngineCollaborators(**collaborators),
        notifier=RecordingNotifier(),
        messages=messages,
        poll_interval_s=60.0,
    )


@pytest.mark.asyncio
async def test_submit_then_complete():
    client = make_client("q1")
    engine = make_engine(client)
    seen_during_enqueue = {}

    async def enqueue(request):
        # The prompt is visible before the queue answers
        seen_during_enqueue["texts"] = [get_text_content(m) for m in engine.transcript.messages]
        return EnqueueResult(server_id="q1", status=QueueStatus.PENDING)

    client.enqueue.side_effect = enqueue

    job = await engine.submit("Hello")

    assert seen_during_enqueue["texts"] == ["Hello"]
    assert job.server_id == "q1"
    assert job.status is JobStatus.PENDING
    assert job.client_id.startswith("optimistic-")
    assert [(j.client_id, j.server_id) for j in engine.pending_jobs] == [(job.client_id, "q1")]
    assert job.client_id in engine.transcript
    assert engine.poll_state is PollState.ARMED

    client.fetch_status.return_value = [QueueRef(id="q1", status=QueueStatus.COMPLETED)]
    await engine.poller.tick()

    assert engine.pending_jobs == []
    assert job.client_id not in engine.transcript
    assert engine.collaborators.regenerate.await_count == 1
    assert engine.poll_state is PollState.DISARMED


@pytest.mark.asyncio
async def test_two_jobs_one_completes_one_processing():
    client = make_client("q1", "q2")
    engine = make_engine(client)

    first = await engine.submit("First")
    second = await engine.submit("Second")

    client.fetch_status.return_value = [
        QueueRef(id="q1", status=QueueStatus.COMPLETED),
        QueueRef(id="q2", status=QueueStatus.PROCESSING),
    ]
    await engine.poller.tick()

    assert first.client_id not in engine.transcript
    assert second.client_id in engine.transcript
    remaining = engine.pending_jobs
    assert [j.server_id for j in remaining] == ["q2"]
    assert remaining[0].status is JobStatus.PROCESSING
    assert engine.collaborators.regenerate.await_count == 1
    assert engine.poll_state is PollState.ARMED
    engine.close()


@pytest.mark.asyncio
async def test_enqueue_request_carries_history_and_session():
    client = make_client("q1")
    earlier = create_text_message("Earlier", message_id="m1")
    engine = make_engine(client, messages=[earlier])
    engine.session.enable_search = True

    job = await engine.submit("Hello")

    request = client.enqueue.await_args[0][0]
    assert request.user_id == "user-1"
    assert request.chat_id == "chat-1"
    assert request.model == engine.session.model
    assert request.enable_search is True
    assert [m.id for m in request.messages] == ["m1", job.client_id]
    assert request.attachments == []
    engine.collaborators.clear_draft.assert_called_once()
    engine.collaborators.bump_chat.assert_called_once_with("chat-1")
    engine.close()


@pytest.mark.asyncio
async def test_first_message_of_chat_is_not_bumped():
    client = make_client("q1")
    engine = make_engine(client)

    await engine.submit("Hello")

    engine.collaborators.bump_chat.assert_not_called()
    engine.close()


@pytest.mark.asyncio
async def test_no_user_does_nothing():
    client = make_client("q1")
    engine = make_engine(client, resolve_user_id=AsyncMock(return_value=None))

    assert await engine.submit("Hello") is None
    assert len(engine.transcript) == 0
    client.enqueue.assert_not_awaited()


@pytest.mark.asyncio
async def test_enqueue_rejected_rolls_back():
    client = make_client()
    client.enqueue.side_effect = EnqueueFailure("rate limited")
    engine = make_engine(client)

    assert await engine.submit("Hello") is None

    assert len(engine.transcript) == 0
    assert engine.pending_jobs == []
    assert engine.poll_state is PollState.DISARMED
    assert engine.notifier.titles == ["rate limited"]
    engine.collaborators.clear_draft.assert_not_called()


@pytest.mark.asyncio
async def test_unexpected_submit_error():
    client = make_client()
    client.enqueue.side_effect = RuntimeError("boom")
    engine = make_engine(client)

    assert await engine.submit("Hello") is None

    assert len(engine.transcript) == 0
    assert engine.notifier.titles == ["Failed to queue message"]


@pytest.mark.asyncio
async def test_duplicate_server_id_drops_optimistic_state():
    client = make_client("q1", "q1")
    engine = make_engine(client)

    first = await engine.submit("First")
    assert await engine.submit("Second") is None

    assert [j.client_id for j in engine.pending_jobs] == [first.client_id]
    assert [get_text_content(m) for m in engine.transcript.messages] == ["First"]
    assert engine.notifier.titles == ["Failed to queue message"]
    engine.collaborators.clear_draft.assert_called_once()
    engine.close()


@pytest.mark.asyncio
async def test_limit_gate_skips_queue():
    client = make_client("q1")
    engine = make_engine(client, check_limits=AsyncMock(return_value=False))

    assert await engine.submit("Hello") is None

    client.enqueue.assert_not_awaited()
    assert len(engine.transcript) == 0
    assert engine.pending_jobs == []
    engine.collaborators.ensure_chat.assert_not_called()


@pytest.mark.asyncio
async def test_chat_gate_skips_queue():
    client = make_client("q1")
    engine = make_engine(client, ensure_chat=MagicMock(return_value=None))

    assert await engine.submit("Hello") is None

    client.enqueue.assert_not_awaited()
    assert len(engine.transcript) == 0


@pytest.mark.asyncio
async def test_length_gate_notifies_with_ceiling():
    client = make_client("q1")
    engine = make_engine(client)
    engine.message_max_length = 5

    assert await engine.submit("Too long") is None

    client.enqueue.assert_not_awaited()
    assert len(engine.transcript) == 0
    assert engine.notifier.titles == [
        "The message you submitted was too long, please submit something shorter. (Max 5 characters)"
    ]


@pytest.mark.asyncio
async def test_files_are_uploaded_before_enqueue():
    client = make_client("q1")
    preview = Attachment(name="photo.png", content_type="image/png", url="blob:local")
    uploaded = Attachment(name="photo.png", content_type="image/png", url="https://files/photo.png")
    engine = make_engine(
        client,
        create_optimistic_attachments=MagicMock(return_value=[preview]),
        upload_files=AsyncMock(return_value=[uploaded]),
    )

    job = await engine.submit("Look", files=["photo.png"])

    engine.collaborators.upload_files.assert_awaited_once_with("user-1", "chat-1")
    request = client.enqueue.await_args[0][0]
    assert request.attachments == [uploaded]
    assert engine.transcript.get(job.client_id).attachments == [preview]
    engine.close()


@pytest.mark.asyncio
async def test_failed_upload_cleans_up_previews():
    client = make_client("q1")
    preview = Attachment(name="photo.png", content_type="image/png", url="blob:local")
    engine = make_engine(
        client,
        create_optimistic_attachments=MagicMock(return_value=[preview]),
        upload_files=AsyncMock(return_value=None),
    )

    assert await engine.submit("Look", files=["photo.png"]) is None

    client.enqueue.assert_not_awaited()
    assert len(engine.transcript) == 0
    engine.collaborators.cleanup_attachments.assert_called_once_with([preview])


@pytest.mark.asyncio
async def test_cancel_clears_state_before_request_and_keeps_it_cleared():
    client = make_client("q3")
    engine = make_engine(client)
    job = await engine.submit("Cancel me")

    async def failing_cancel(queue_id, user_id, is_authenticated):
        assert engine.pending_jobs == []
        assert job.client_id not in engine.transcript
        raise TransportFailure("Network error")

    client.cancel.side_effect = failing_cancel

    assert await engine.cancel("q3") is True

    client.cancel.assert_awaited_once_with("q3", "user-1", False)
    assert engine.pending_jobs == []
    assert job.client_id not in engine.transcript
    assert engine.notifier.titles == ["Failed to cancel job"]
    assert engine.poll_state is PollState.DISARMED


@pytest.mark.asyncio
async def test_cancel_removal_is_synchronous():
    client = make_client("q3")
    engine = make_engine(client)
    job = await engine.submit("Cancel me")

    gate = asyncio.Event()

    async def slow_cancel(*args):
        await gate.wait()

    client.cancel.side_effect = slow_cancel
    task = asyncio.create_task(engine.cancel("q3"))
    await asyncio.sleep(0)

    assert job.client_id not in engine.transcript
    assert engine.pending_jobs == []

    gate.set()
    assert await task is True
    assert engine.notifier.notifications == []


@pytest.mark.asyncio
async def test_cancel_processing_job_refused():
    client = make_client("q1", status=QueueStatus.PROCESSING)
    engine = make_engine(client)
    job = await engine.submit("Busy")

    assert await engine.cancel("q1") is False

    client.cancel.assert_not_awaited()
    assert job.client_id in engine.transcript
    engine.close()


@pytest.mark.asyncio
async def test_cancel_unknown_job():
    engine = make_engine(make_client())

    assert await engine.cancel("q404") is False
    engine.client.cancel.assert_not_awaited()


@pytest.mark.asyncio
async def test_session_reset_during_enqueue_discards_result():
    client = make_client()
    engine = make_engine(client)

    async def enqueue_then_switch(request):
        engine.reset_session("chat-2")
        return EnqueueResult(server_id="q1", status=QueueStatus.PENDING)

    client.enqueue.side_effect = enqueue_then_switch

    assert await engine.submit("Hello") is None

    assert engine.pending_jobs == []
    assert len(engine.transcript) == 0
    assert engine.poll_state is PollState.DISARMED
    assert engine.session.chat_id == "chat-2"
    engine.collaborators.clear_draft.assert_not_called()


@pytest.mark.asyncio
async def test_reset_session_drops_jobs_without_cancelling():
    client = make_client("q1")
    engine = make_engine(client)
    await engine.submit("Hello")
    history = [create_text_message("Other chat", message_id="m9")]

    engine.reset_session("chat-2", messages=history)

    assert engine.pending_jobs == []
    assert [m.id for m in engine.transcript.messages] == ["m9"]
    assert engine.poll_state is PollState.DISARMED
    client.cancel.assert_not_awaited()


@pytest.mark.asyncio
async def test_reload_and_resume_polling():
    client = make_client("q1")
    engine = make_engine(client)
    engine.poller.max_failures = 1
    await engine.submit("Hello")

    client.fetch_status.side_effect = TransportFailure("Network error")
    await engine.poller.tick()
    assert engine.poll_state is PollState.HALTED
    assert engine.notifier.titles == ["Queue updates paused"]

    assert await engine.reload() is True
    assert engine.collaborators.regenerate.await_count == 1

    assert engine.resume_polling() is True
    assert engine.poll_state is PollState.ARMED
    engine.close()
    assert engine.poll_state is PollState.DISARMED


@pytest.mark.asyncio
async def test_default_regeneration_reloads_chat_history():
    client = make_client("q1")
    engine = make_engine(client, regenerate=None)
    job = await engine.submit("Hello")
    client.fetch_messages.return_value = [
        create_text_message("Hello", message_id=job.client_id),
        create_text_message("Echo: Hello", role="assistant", message_id="m2"),
    ]
    client.fetch_status.return_value = [QueueRef(id="q1", status=QueueStatus.COMPLETED)]

    await engine.poller.tick()

    client.fetch_messages.assert_awaited_once_with("chat-1", "user-1")
    assert [m.role for m in engine.transcript.messages] == ["user", "assistant"]
    assert engine.transcript.optimistic_ids == frozenset()
