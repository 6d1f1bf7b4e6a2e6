"""
External collaborators consumed by the queue engine.

Identity, limits, chat bootstrap, uploads, drafts and toasts live outside
the engine. They are passed in as plain callables; each may be sync or
async.
"""
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from app.core.logging import get_safe_logger
from app.schemas.message import Attachment, ChatMessage

logger = get_safe_logger(__name__)


async def maybe_await(value: Union[Any, Awaitable[Any]]) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class NotificationStatus(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    title: str
    status: NotificationStatus = NotificationStatus.INFO
    description: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Base class for toast delivery."""

    def notify(self, notification: Notification) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Notifier that writes toasts to the log. Titles are short and content-free."""

    def notify(self, notification: Notification) -> None:
        log_method = logger.info
        if notification.status == NotificationStatus.ERROR:
            log_method = logger.error
        elif notification.status == NotificationStatus.WARNING:
            log_method = logger.warning

        log_method(f"TOAST: {notification.title}", status=notification.status.value)


class RecordingNotifier(Notifier):
    """Keeps every notification in memory, newest last."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    @property
    def titles(self) -> List[str]:
        return [n.title for n in self.notifications]


@dataclass(frozen=True)
class RegenerationRequest:
    chat_id: Optional[str]
    user_id: Optional[str]
    model: str
    is_authenticated: bool
    system_prompt: Optional[str]


async def _no_user() -> Optional[str]:
    return None


def _allow(user_id: str) -> bool:
    return True


def _no_chat(user_id: str, prompt: str) -> Optional[str]:
    return None


def _no_uploads(user_id: str, chat_id: str) -> Optional[List[Attachment]]:
    return []


def _no_optimistic_attachments(files: Sequence[Any]) -> List[Attachment]:
    return []


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


@dataclass
class EngineCollaborators:
    """
    resolve_user_id() -> user id or None (guest provisioning failed)
    check_limits(user_id) -> bool, notifies the user itself when False
    ensure_chat(user_id, prompt) -> chat id or None
    upload_files(user_id, chat_id) -> attachments or None on failure
    create_optimistic_attachments(files) -> local previews for the transcript
    cleanup_attachments(attachments) -> release local previews
    clear_draft() -> forget the persisted draft
    bump_chat(chat_id) -> move the chat to the top of the history
    cache_message(message) -> persist a handed-off user message
    regenerate(RegenerationRequest) -> pull worker output into the transcript
    """

    resolve_user_id: Callable[[], Any] = _no_user
    check_limits: Callable[[str], Any] = _allow
    ensure_chat: Callable[[str, str], Any] = _no_chat
    upload_files: Callable[[str, str], Any] = _no_uploads
    create_optimistic_attachments: Callable[[Sequence[Any]], List[Attachment]] = _no_optimistic_attachments
    cleanup_attachments: Callable[[Sequence[Attachment]], Any] = _noop
    clear_draft: Callable[[], Any] = _noop
    bump_chat: Callable[[str], Any] = _noop
    cache_message: Callable[[ChatMessage], Any] = _noop
    regenerate: Optional[Callable[[RegenerationRequest], Any]] = None
