"""
Visible conversation transcript with optimistic entries.

Confirmed messages come from the chat history. Optimistic messages are
inserted at submission time, keyed by the job's client id, and evicted
exactly once when the job leaves the queue.
"""
from typing import Callable, Iterable, List

from app.core.logging import get_safe_logger
from app.schemas.message import ChatMessage, create_text_message
from app.services.prompt_queue.correlation import QueueJob

logger = get_safe_logger(__name__)

TranscriptListener = Callable[["ConversationTranscript"], None]


class ConversationTranscript:

    def __init__(self, messages: Iterable[ChatMessage] = ()):
        self._messages: List[ChatMessage] = list(messages)
        self._optimistic_ids: set[str] = set()
        self._listeners: List[TranscriptListener] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return any(message.id == message_id for message in self._messages)

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def optimistic_ids(self) -> frozenset[str]:
        return frozenset(self._optimistic_ids)

    @property
    def confirmed_messages(self) -> List[ChatMessage]:
        return [m for m in self._messages if m.id not in self._optimistic_ids]

    def subscribe(self, listener: TranscriptListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def insert(self, job: QueueJob) -> ChatMessage:
        """Append the optimistic message for a freshly submitted job."""
        if job.client_id in self._optimistic_ids:
            raise ValueError(f"Optimistic message already present: {job.client_id}")

        message = create_text_message(
            job.content,
            role="user",
            message_id=job.client_id,
            attachments=list(job.attachments),
        )
        message.created_at = job.created_at
        self._messages.append(message)
        self._optimistic_ids.add(job.client_id)
        self._notify()
        return message

    def get(self, message_id: str):
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def evict(self, client_id: str) -> bool:
        """Remove an optimistic message. Returns False if it was already gone."""
        if client_id not in self._optimistic_ids:
            return False

        self._optimistic_ids.discard(client_id)
        self._messages = [m for m in self._messages if m.id != client_id]
        logger.debug("Optimistic message evicted", client_id=client_id)
        self._notify()
        return True

    def replace_confirmed(self, messages: Iterable[ChatMessage]) -> None:
        """Swap in a new confirmed history; live optimistic messages stay at the tail."""
        optimistic = [m for m in self._messages if m.id in self._optimistic_ids]
        confirmed = [m for m in messages if m.id not in self._optimistic_ids]
        self._messages = confirmed + optimistic
        self._notify()

    def clear(self) -> None:
        self._messages = []
        self._optimistic_ids.clear()
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
