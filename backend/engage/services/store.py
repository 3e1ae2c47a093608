"""Conversation store: sessions, their message logs and internal notes.

The store is the only writer of session state. Every mutation runs under one
store-wide lock inside a single database transaction, so writes are applied in
call order and a failing write leaves nothing behind.
"""

import logging
import threading
from typing import Any, Callable, Iterable

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from engage.core.errors import UnknownSession
from engage.models.conversation import (
    Channel,
    ChatMessage,
    ChatSession,
    ConversationStatus,
    InternalNote,
    SessionStatus,
    as_utc,
)
from engage.services.state_machine import SessionState, Transition, next_state, state_of

logger = logging.getLogger(__name__)

MessageBuilder = Callable[[ChatSession], ChatMessage]


def _apply_state(session: ChatSession, state: SessionState) -> None:
    session.conversation_status = state.conversation_status
    session.assigned_to = state.assigned_to
    session.status = state.status


class ConversationStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._lock = threading.RLock()

    def _db(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # --- Reads ---

    def get_session(self, session_id: str | None) -> ChatSession | None:
        if session_id is None:
            return None
        with self._db() as db:
            return db.get(ChatSession, session_id)

    def list_sessions(
        self,
        status: SessionStatus | ConversationStatus | None = None,
        assigned_to: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ChatSession]:
        query = select(ChatSession)
        if isinstance(status, ConversationStatus):
            query = query.where(ChatSession.conversation_status == status)
        elif status is not None:
            query = query.where(ChatSession.status == status)
        if assigned_to is not None:
            query = query.where(ChatSession.assigned_to == assigned_to)
        query = query.order_by(
            func.coalesce(ChatSession.last_message_at, ChatSession.created_at).desc()
        )
        if offset is not None:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        with self._db() as db:
            return list(db.exec(query).all())

    def get_messages(self, session_id: str | None) -> list[ChatMessage]:
        if session_id is None:
            return []
        with self._db() as db:
            return list(
                db.exec(
                    select(ChatMessage)
                    .where(ChatMessage.session_id == session_id)
                    .order_by(ChatMessage.position)  # type: ignore
                ).all()
            )

    def get_notes(self, session_id: str | None) -> list[InternalNote]:
        if session_id is None:
            return []
        with self._db() as db:
            return list(
                db.exec(
                    select(InternalNote)
                    .where(InternalNote.session_id == session_id)
                    .order_by(InternalNote.created_at)  # type: ignore
                ).all()
            )

    # --- Mutations ---

    def open_session(
        self,
        channel: Channel = Channel.WHATSAPP,
        external_id: str | None = None,
        customer_name: str | None = None,
        session_id: str | None = None,
    ) -> ChatSession:
        session = ChatSession(channel=channel, external_id=external_id, customer_name=customer_name)
        if session_id:
            session.id = session_id
        with self._lock, self._db() as db:
            db.add(session)
            db.commit()
        logger.info(f"Opened {channel.value} session {session.id}")
        return session

    def apply_transition(
        self, session_id: str, transition: Transition, operator: str | None = None
    ) -> ChatSession:
        with self._lock, self._db() as db:
            session = db.get(ChatSession, session_id)
            if session is None:
                raise UnknownSession(session_id)

            current = state_of(session)
            target = next_state(current, transition, operator)
            if target == current:
                logger.debug(f"{transition.value} on {session_id}: already {current.conversation_status.value}")
                return session

            _apply_state(session, target)
            db.add(session)
            db.commit()
            logger.info(
                f"Session {session_id}: {current.conversation_status.value} -> "
                f"{target.conversation_status.value} (assigned_to={target.assigned_to})"
            )
            return session

    def apply_message(self, session_id: str, build: MessageBuilder) -> ChatMessage:
        """Append the message produced by ``build`` to the end of the session log.

        ``build`` sees the session as it is at append time; anything it raises
        aborts the append.
        """
        with self._lock, self._db() as db:
            session = db.get(ChatSession, session_id)
            if session is None:
                raise UnknownSession(session_id)

            message = build(session)
            message.session_id = session.id
            message.position = session.message_count
            # Keep created_at non-decreasing along the log even if the clock steps back
            if session.last_message_at and as_utc(message.created_at) < as_utc(session.last_message_at):
                message.created_at = as_utc(session.last_message_at)

            session.message_count += 1
            session.last_message_at = message.created_at
            db.add(message)
            db.add(session)
            db.commit()
            return message

    def add_note(self, session_id: str, author: str, content: str) -> InternalNote:
        with self._lock, self._db() as db:
            if db.get(ChatSession, session_id) is None:
                raise UnknownSession(session_id)
            note = InternalNote(session_id=session_id, author=author, content=content)
            db.add(note)
            db.commit()
            return note

    # --- Back-end sync ---

    def ingest_sessions(self, records: Iterable[dict[str, Any]]) -> list[ChatSession]:
        """Create or refresh sessions from back-end records, matched by id."""
        ingested = []
        with self._lock, self._db() as db:
            for record in records:
                conversation_status = record["conversation_status"]
                assigned_to = record.get("assigned_to")
                if conversation_status != ConversationStatus.HUMAN_ACTIVE:
                    assigned_to = None
                state = SessionState(conversation_status, assigned_to)

                session = db.get(ChatSession, record["id"])
                if session is None:
                    session = ChatSession(id=record["id"], channel=record.get("channel", Channel.WHATSAPP))
                    if record.get("created_at"):
                        session.created_at = record["created_at"]
                for field in ("external_id", "customer_name", "conversation_summary"):
                    if record.get(field) is not None:
                        setattr(session, field, record[field])
                # Closed is terminal: a remote status never reopens a session
                if session.conversation_status == ConversationStatus.CLOSED and state != state_of(session):
                    logger.warning(
                        f"Ignoring remote status {state.conversation_status.value} for closed session {session.id}"
                    )
                else:
                    _apply_state(session, state)
                db.add(session)
                ingested.append(session)
            db.commit()
        return ingested

    def ingest_messages(self, session_id: str, records: Iterable[dict[str, Any]]) -> list[ChatMessage]:
        """Merge back-end messages into the session log.

        Messages already in the log (by id) are skipped. The merged log is ordered
        by created_at and renumbered, and the session summary recomputed.
        """
        with self._lock, self._db() as db:
            session = db.get(ChatSession, session_id)
            if session is None:
                raise UnknownSession(session_id)

            log = list(
                db.exec(
                    select(ChatMessage)
                    .where(ChatMessage.session_id == session_id)
                    .order_by(ChatMessage.position)  # type: ignore
                ).all()
            )
            known = {m.id for m in log}
            added = 0
            for record in records:
                if record["id"] in known:
                    continue
                known.add(record["id"])
                other = db.get(ChatMessage, record["id"])
                if other is not None:
                    logger.warning(
                        f"Skipping message {record['id']} for session {session_id}: "
                        f"id already belongs to session {other.session_id}"
                    )
                    continue
                log.append(ChatMessage(**{**record, "session_id": session_id}))
                added += 1

            if added:
                log.sort(key=lambda m: as_utc(m.created_at))
                for position, message in enumerate(log):
                    message.position = position
                    db.add(message)
                session.message_count = len(log)
                session.last_message_at = log[-1].created_at
                db.add(session)
                db.commit()
                logger.debug(f"Merged {added} messages into session {session_id}")
            return log
