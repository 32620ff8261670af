# securechat/models/message.py
from __future__ import annotations

import uuid
from enum import Enum

from pydantic import Field

from securechat.models.common import Document, now_ms


class MessageSender(str, Enum):
    USER = "user"
    AI = "ai"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


def new_message_id() -> str:
    return uuid.uuid4().hex


class Message(Document):
    id: str = Field(default_factory=new_message_id)
    sender: MessageSender
    # Display label; `sender` alone does not identify who wrote it
    sender_name: str | None = None
    # Author's user id for `user` messages
    sender_id: str | None = None

    # Envelope when is_encrypted, plaintext otherwise
    content: str
    is_encrypted: bool = False
    timestamp: int = Field(default_factory=now_ms)
    type: MessageType = MessageType.TEXT

    file_name: str | None = None
    file_size: int | None = None

    # Only MessageLog grows this, and only by set-union
    read_by: list[str] = Field(default_factory=list)


def message_type_for_mime(mime_type: str | None) -> MessageType:
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return MessageType.IMAGE
    if mime_type.startswith("video/"):
        return MessageType.VIDEO
    if mime_type.startswith("audio/"):
        return MessageType.AUDIO
    return MessageType.FILE
