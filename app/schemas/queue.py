"""
Wire schemas for the prompt queue endpoints (enqueue, status, cancel).
Field aliases match the camelCase JSON the endpoints exchange.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.message import Attachment, ChatMessage


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED, QueueStatus.CANCELLED)


class QueueRef(BaseModel):
    """Server-side identity and status of one queue job."""
    id: str = Field(..., min_length=1)
    status: QueueStatus


class EnqueueRequest(BaseModel):
    """Body of POST /api/prompt-queue/enqueue."""

    user_id: str = Field(..., min_length=1, alias="userId")
    chat_id: str = Field(..., min_length=1, alias="chatId")
    model: str = Field(..., min_length=1)
    is_authenticated: bool = Field(default=False, alias="isAuthenticated")
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    enable_search: bool = Field(default=False, alias="enableSearch")
    messages: list[ChatMessage] = Field(..., min_length=1)
    attachments: list[Attachment] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class EnqueueResponse(BaseModel):
    success: bool = True
    queue: Optional[QueueRef] = None
    error: Optional[str] = None


class StatusRequest(BaseModel):
    """Body of POST /api/prompt-queue/status."""

    user_id: str = Field(..., min_length=1, alias="userId")
    is_authenticated: bool = Field(default=False, alias="isAuthenticated")
    queue_ids: list[str] = Field(default_factory=list, alias="queueIds")

    class Config:
        populate_by_name = True


class StatusResponse(BaseModel):
    success: bool = True
    queue: list[QueueRef] = Field(default_factory=list)
    error: Optional[str] = None


class CancelRequest(BaseModel):
    """Body of POST /api/prompt-queue/cancel."""

    queue_id: str = Field(..., min_length=1, alias="queueId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    is_authenticated: bool = Field(default=False, alias="isAuthenticated")

    class Config:
        populate_by_name = True


class CancelResponse(BaseModel):
    success: bool = True
    error: Optional[str] = None


class ChatMessagesResponse(BaseModel):
    """Body of GET /api/chats/{chat_id}/messages."""
    success: bool = True
    messages: list[ChatMessage] = Field(default_factory=list)
    error: Optional[str] = None
