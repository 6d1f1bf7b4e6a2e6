"""
Chat message schemas and helpers shared by the queue engine and the service.
Message content is user data - NEVER log instances.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Attachment(BaseModel):
    """A file reference attached to a prompt."""

    name: str = Field(default="file", description="Display name of the file")
    content_type: str = Field(
        default="",
        alias="contentType",
        description="MIME type of the file"
    )
    url: str = Field(default="", description="Location of the uploaded file")

    class Config:
        populate_by_name = True


class ChatMessage(BaseModel):
    """A single transcript entry."""

    id: str = Field(..., min_length=1)
    role: Literal["system", "user", "assistant"] = Field(default="user")
    content: str = Field(default="")
    parts: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    attachments: list[Attachment] = Field(default_factory=list)

    class Config:
        populate_by_name = True


def attachments_to_file_parts(attachments: list[Attachment]) -> list[dict[str, Any]]:
    return [
        {
            "type": "file",
            "name": attachment.name,
            "contentType": attachment.content_type,
            "url": attachment.url,
        }
        for attachment in attachments
    ]


def get_file_parts(message: ChatMessage) -> list[dict[str, Any]]:
    return [part for part in message.parts if part.get("type") == "file"]


def file_parts_to_attachments(file_parts: list[dict[str, Any]]) -> list[Attachment]:
    """Accept both the name/contentType and filename/mediaType part spellings."""
    return [
        Attachment(
            name=part.get("name") or part.get("filename") or "file",
            content_type=part.get("contentType") or part.get("mediaType") or "",
            url=part.get("url") or "",
        )
        for part in file_parts
    ]


def get_text_content(message: ChatMessage) -> str:
    """Concatenate the text parts, falling back to the plain content field."""
    texts = [
        part.get("text") or ""
        for part in message.parts
        if part.get("type") == "text"
    ]
    if texts:
        return "".join(texts)
    return message.content


def create_text_message(
    text: str,
    role: Literal["system", "user", "assistant"] = "user",
    message_id: str | None = None,
    attachments: list[Attachment] | None = None,
) -> ChatMessage:
    attachments = list(attachments or [])
    parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
    parts.extend(attachments_to_file_parts(attachments))
    return ChatMessage(
        id=message_id or f"msg-{uuid.uuid4().hex}",
        role=role,
        content=text,
        parts=parts,
        attachments=attachments,
    )
