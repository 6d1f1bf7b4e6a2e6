"""
In-memory chat history for the queue service.
Holds the prompts of completed queue jobs and the assistant replies the
worker produced. Thread-safe singleton, like the other in-memory stores.
"""
import threading
from typing import Dict, List, Optional

from app.schemas.message import ChatMessage


class ChatStore:
    _instance: "ChatStore | None" = None
    _lock = threading.Lock()

    def __new__(cls) -> "ChatStore":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._chats: Dict[str, List[ChatMessage]] = {}
                    instance._owners: Dict[str, str] = {}
                    instance._data_lock = threading.Lock()
                    cls._instance = instance
        return cls._instance

    def claim(self, chat_id: str, user_id: str) -> bool:
        """Create the chat for the user if it is new. False if someone else owns it."""
        with self._data_lock:
            owner = self._owners.setdefault(chat_id, user_id)
            self._chats.setdefault(chat_id, [])
            return owner == user_id

    def append(self, chat_id: str, user_id: str, message: ChatMessage) -> bool:
        """
        Append a message to a chat, creating the chat on first use.
        Returns False if the chat belongs to another user. Re-sent
        message ids are ignored.
        """
        with self._data_lock:
            owner = self._owners.setdefault(chat_id, user_id)
            if owner != user_id:
                return False

            messages = self._chats.setdefault(chat_id, [])
            if any(existing.id == message.id for existing in messages):
                return True
            messages.append(message)
            return True

    def get_messages(self, chat_id: str, user_id: str) -> Optional[List[ChatMessage]]:
        """Messages in insertion order, or None if the chat is unknown or not the user's."""
        with self._data_lock:
            if self._owners.get(chat_id) != user_id:
                return None
            return list(self._chats.get(chat_id, []))

    def clear(self) -> None:
        """Drop every chat (for testing)."""
        with self._data_lock:
            self._chats.clear()
            self._owners.clear()


def get_chat_store() -> ChatStore:
    """Get the singleton chat store instance."""
    return ChatStore()
