"""Message composer: appends messages to a session log with the right attribution."""

from typing import Mapping

from engage.core.errors import NoActiveSession, SessionClosed
from engage.models.conversation import (
    ChatMessage,
    ChatSession,
    ConversationStatus,
    Direction,
    MessageType,
    Sender,
    utcnow,
)
from engage.services.state_machine import attribute_sender
from engage.services.store import ConversationStore
from engage.services.templates import TemplateDefinition, render_label


class MessageComposer:
    def __init__(self, store: ConversationStore) -> None:
        self.store = store

    def add_message(
        self,
        session_id: str | None,
        content: str,
        sender: Sender | None = None,
        message_type: MessageType = MessageType.TEXT,
        template_name: str | None = None,
        media_type: str | None = None,
    ) -> ChatMessage:
        if session_id is None:
            raise NoActiveSession()

        def build(session: ChatSession) -> ChatMessage:
            if session.conversation_status == ConversationStatus.CLOSED:
                raise SessionClosed(session.id)
            return ChatMessage(
                session_id=session.id,
                direction=Direction.OUTBOUND,
                sender=sender or attribute_sender(session.conversation_status),
                content=content,
                message_type=message_type,
                template_name=template_name,
                media_type=media_type,
                created_at=utcnow(),
            )

        return self.store.apply_message(session_id, build)

    def send_template_message(
        self,
        session_id: str | None,
        template: TemplateDefinition,
        variables: Mapping[str, str],
        sender: Sender | None = None,
    ) -> ChatMessage:
        return self.add_message(
            session_id,
            render_label(template, variables),
            sender=sender,
            message_type=MessageType.TEMPLATE,
            template_name=template.name,
        )

    def send_media_message(self, session_id: str | None, media_type: str, caption: str = "") -> ChatMessage:
        content = caption.strip() or f"[{media_type.upper()} sent]"
        return self.add_message(
            session_id,
            content,
            message_type=MessageType.MEDIA,
            media_type=media_type,
        )

    def receive_message(self, session_id: str, content: str) -> ChatMessage:
        """Record an inbound customer message."""

        def build(session: ChatSession) -> ChatMessage:
            if session.conversation_status == ConversationStatus.CLOSED:
                raise SessionClosed(session.id)
            return ChatMessage(
                session_id=session.id,
                direction=Direction.INBOUND,
                sender=Sender.USER,
                content=content,
                created_at=utcnow(),
            )

        return self.store.apply_message(session_id, build)
