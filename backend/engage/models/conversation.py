"""Chat session, message and internal note models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class Channel(str, Enum):
    WHATSAPP = "whatsapp"
    WEB = "web"


class ConversationStatus(str, Enum):
    ACTIVE_AI = "active_ai"
    HUMAN_ACTIVE = "human_active"
    CLOSED = "closed"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Sender(str, Enum):
    USER = "user"
    AI = "ai"
    HUMAN_AGENT = "human_agent"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    TEMPLATE = "template"
    MEDIA = "media"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; they were written as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_id() -> str:
    return uuid.uuid4().hex


class ChatSession(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    channel: Channel = Field(default=Channel.WHATSAPP)
    external_id: Optional[str] = None  # phone number or web user id
    customer_name: Optional[str] = None
    conversation_status: ConversationStatus = Field(default=ConversationStatus.ACTIVE_AI)
    status: SessionStatus = Field(default=SessionStatus.ACTIVE)
    assigned_to: Optional[str] = None
    conversation_summary: Optional[str] = None
    message_count: int = Field(default=0)
    last_message_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class ChatMessage(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    session_id: str = Field(foreign_key="chatsession.id", index=True)
    position: int = Field(default=0)  # 0-based index in the session log
    direction: Direction
    sender: Sender
    content: str
    message_type: MessageType = Field(default=MessageType.TEXT)
    status: DeliveryStatus = Field(default=DeliveryStatus.SENT)
    template_name: Optional[str] = None
    media_type: Optional[str] = None  # image | video
    created_at: datetime = Field(default_factory=utcnow)


class InternalNote(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    session_id: str = Field(foreign_key="chatsession.id", index=True)
    author: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
