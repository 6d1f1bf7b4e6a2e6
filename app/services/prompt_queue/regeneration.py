"""
Regeneration trigger.

Once the worker has finished a job, the conversation layer re-derives its
messages to pick up whatever the server now holds. The poller fires the
trigger at most once per tick, after the optimistic entries are gone.
"""
from typing import Any, Callable, Optional

from app.core.logging import get_safe_logger
from app.services.prompt_queue.client import PromptQueueClient
from app.services.prompt_queue.collaborators import RegenerationRequest, maybe_await
from app.services.prompt_queue.session import EngineSession
from app.services.prompt_queue.transcript import ConversationTranscript

logger = get_safe_logger(__name__)


class ChatHistoryRegenerator:
    """Default strategy: reload the chat history from the queue service."""

    def __init__(self, client: PromptQueueClient, transcript: ConversationTranscript):
        self._client = client
        self._transcript = transcript

    async def __call__(self, request: RegenerationRequest) -> None:
        if not request.chat_id or not request.user_id:
            logger.debug("Regeneration skipped without chat", chat_id=request.chat_id)
            return

        messages = await self._client.fetch_messages(request.chat_id, request.user_id)
        self._transcript.replace_confirmed(messages)
        logger.info("Transcript regenerated", chat_id=request.chat_id, count=len(messages))


class RegenerationTrigger:

    def __init__(
        self,
        session: EngineSession,
        regenerate: Callable[[RegenerationRequest], Any],
    ):
        self._session = session
        self._regenerate = regenerate
        self.fired = 0

    def build_request(self) -> RegenerationRequest:
        session = self._session
        return RegenerationRequest(
            chat_id=session.chat_id,
            user_id=session.user_id,
            model=session.model,
            is_authenticated=session.is_authenticated,
            system_prompt=session.system_prompt,
        )

    async def fire(self) -> Optional[Any]:
        request = self.build_request()
        self.fired += 1
        logger.info("Regeneration requested", chat_id=request.chat_id, model=request.model)
        return await maybe_await(self._regenerate(request))
