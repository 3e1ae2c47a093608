"""REST API for the operator conversation console."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from engage.api.deps import get_console
from engage.core.errors import ChatServiceError, SessionClosed, TemplateNotApproved, TemplateNotFound, UnknownSession
from engage.models.conversation import (
    Channel,
    ChatMessage,
    ChatSession,
    ConversationStatus,
    InternalNote,
    SessionStatus,
    as_utc,
)
from engage.services.composer import MessageComposer
from engage.services.console import ConsoleRegistry, OperatorConsole, get_registry

router = APIRouter()
logger = logging.getLogger(__name__)

IGNORED = {"status": "ignored"}


class SessionOpen(BaseModel):
    channel: Channel = Channel.WHATSAPP
    external_id: str | None = None
    customer_name: str | None = None


class SessionSync(BaseModel):
    status: str | None = None
    agent_id: str | None = None
    limit: int | None = None
    offset: int | None = None


class SelectBody(BaseModel):
    session_id: str | None = None


class MessageBody(BaseModel):
    content: str


class TemplateSend(BaseModel):
    template_name: str
    variables: dict[str, str] = {}


class MediaSend(BaseModel):
    media_type: Literal["image", "video"]
    caption: str = ""


def session_to_dict(s: ChatSession) -> dict:
    return {
        "id": s.id,
        "channel": s.channel,
        "external_id": s.external_id,
        "customer_name": s.customer_name,
        "conversation_status": s.conversation_status,
        "status": s.status,
        "assigned_to": s.assigned_to,
        "conversation_summary": s.conversation_summary,
        "message_count": s.message_count,
        "last_message_at": as_utc(s.last_message_at).isoformat() if s.last_message_at else None,
        "created_at": as_utc(s.created_at).isoformat(),
    }


def message_to_dict(m: ChatMessage) -> dict:
    return {
        "id": m.id,
        "session_id": m.session_id,
        "direction": m.direction,
        "sender": m.sender,
        "content": m.content,
        "message_type": m.message_type,
        "status": m.status,
        "template_name": m.template_name,
        "media_type": m.media_type,
        "created_at": as_utc(m.created_at).isoformat(),
    }


def note_to_dict(n: InternalNote) -> dict:
    return {
        "id": n.id,
        "author": n.author,
        "content": n.content,
        "created_at": as_utc(n.created_at).isoformat(),
    }


def _thread(console: OperatorConsole, session: ChatSession | None) -> dict:
    if session is None:
        return {"session": None, "messages": [], "notes": []}
    return {
        "session": session_to_dict(session),
        "messages": [message_to_dict(m) for m in console.store.get_messages(session.id)],
        "notes": [note_to_dict(n) for n in console.store.get_notes(session.id)],
    }


def _parse_status(status: str | None) -> SessionStatus | ConversationStatus | None:
    if status is None:
        return None
    for enum in (ConversationStatus, SessionStatus):
        try:
            return enum(status)
        except ValueError:
            continue
    raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")


@router.get("/")
async def list_sessions(
    status: str | None = None,
    assigned_to: str | None = None,
    limit: int = 50,
    offset: int = 0,
    console: OperatorConsole = Depends(get_console),
):
    sessions = console.store.list_sessions(
        status=_parse_status(status), assigned_to=assigned_to, limit=limit, offset=offset
    )
    return [session_to_dict(s) for s in sessions]


@router.post("/")
async def open_session(body: SessionOpen, registry: ConsoleRegistry = Depends(get_registry)):
    session = registry.store.open_session(
        channel=body.channel, external_id=body.external_id, customer_name=body.customer_name
    )
    return session_to_dict(session)


@router.post("/sync")
async def sync_sessions(body: SessionSync, console: OperatorConsole = Depends(get_console)):
    try:
        sessions = await console.sync_sessions(
            status=body.status, agent_id=body.agent_id, limit=body.limit, offset=body.offset
        )
    except ChatServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "synced", "count": len(sessions)}


@router.get("/selected")
async def get_selected(console: OperatorConsole = Depends(get_console)):
    return _thread(console, console.selected_session)


@router.post("/select")
async def select_session(body: SelectBody, console: OperatorConsole = Depends(get_console)):
    session = console.select_session(body.session_id)
    if session is not None and console.chat_service.is_configured:
        try:
            await console.load_messages(session.id)
        except ChatServiceError as e:
            raise HTTPException(status_code=502, detail=str(e))
    return _thread(console, console.selected_session)


def _transition_response(result: ChatSession | None) -> dict:
    if result is None:
        return IGNORED
    return session_to_dict(result)


@router.post("/take-over")
async def take_over(console: OperatorConsole = Depends(get_console)):
    try:
        return _transition_response(await console.take_over())
    except ChatServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/hand-back")
async def hand_back(console: OperatorConsole = Depends(get_console)):
    try:
        return _transition_response(await console.hand_back())
    except ChatServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/close")
async def close_session(console: OperatorConsole = Depends(get_console)):
    try:
        return _transition_response(await console.close_session())
    except ChatServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/messages")
async def send_message(body: MessageBody, console: OperatorConsole = Depends(get_console)):
    try:
        message = await console.send_message(body.content)
    except ChatServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return message_to_dict(message) if message else IGNORED


@router.post("/templates")
async def send_template(body: TemplateSend, console: OperatorConsole = Depends(get_console)):
    try:
        message = await console.send_template(body.template_name, body.variables)
    except TemplateNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TemplateNotApproved as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ChatServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return message_to_dict(message) if message else IGNORED


@router.post("/media")
async def send_media(body: MediaSend, console: OperatorConsole = Depends(get_console)):
    message = await console.send_media(body.media_type, body.caption)
    return message_to_dict(message) if message else IGNORED


@router.post("/notes")
async def add_note(body: MessageBody, console: OperatorConsole = Depends(get_console)):
    note = console.add_note(body.content)
    return note_to_dict(note) if note else IGNORED


@router.get("/{session_id}")
async def get_session(session_id: str, console: OperatorConsole = Depends(get_console)):
    session = console.store.get_session(session_id)
    if session is None:
        logger.debug(f"Session {session_id} not found")
        raise HTTPException(status_code=404, detail="Session not found")
    return _thread(console, session)


@router.post("/{session_id}/inbound")
async def receive_message(
    session_id: str, body: MessageBody, registry: ConsoleRegistry = Depends(get_registry)
):
    """Record a customer message, e.g. from a test dial-in."""
    try:
        message = MessageComposer(registry.store).receive_message(session_id, body.content)
    except UnknownSession:
        raise HTTPException(status_code=404, detail="Session not found")
    except SessionClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    return message_to_dict(message)
