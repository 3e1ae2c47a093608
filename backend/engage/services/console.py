"""Operator console: the actions an operator performs on the conversation they have open.

Each operator gets their own console (own selection and template draft) over the
shared store. Actions that the chat back-end must know about are persisted
there first; the store is only updated once the back-end has accepted them, so
a failed call leaves the local state as it was.

Actions invoked with nothing selected, or on a session the store does not know,
are ignored and return None.
"""

import asyncio
import logging
import threading

from engage.core.errors import (
    NoActiveSession,
    SessionClosed,
    TemplateNotApproved,
    TemplateNotFound,
    UnknownSession,
)
from engage.models.conversation import (
    ChatMessage,
    ChatSession,
    ConversationStatus,
    InternalNote,
    Sender,
)
from engage.services.chat_service import ChatService
from engage.services.composer import MessageComposer
from engage.services.selector import SessionSelector
from engage.services.state_machine import Transition, attribute_sender, next_state, state_of
from engage.services.store import ConversationStore
from engage.services.templates import TemplateCatalog, TemplateDefinition, TemplateStatus, render

logger = logging.getLogger(__name__)

IGNORED = (NoActiveSession, UnknownSession, SessionClosed)


class SessionLocks:
    """Per-session asyncio locks shared by all operator consoles.

    Held from the state check through the back-end call to the store write.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())


class OperatorConsole:
    def __init__(
        self,
        operator: str,
        store: ConversationStore,
        catalog: TemplateCatalog,
        chat_service: ChatService,
        locks: SessionLocks | None = None,
    ) -> None:
        self.operator = operator
        self.store = store
        self.catalog = catalog
        self.chat_service = chat_service
        self.locks = locks or SessionLocks()
        self.selector = SessionSelector()
        self.composer = MessageComposer(store)
        self._draft: TemplateDefinition | None = None
        self._draft_variables: dict[str, str] = {}

    def _ignore(self, action: str, error: Exception) -> None:
        if isinstance(error, NoActiveSession):
            logger.debug(f"{action} ignored for {self.operator}: {error}")
        else:
            logger.warning(f"{action} ignored for {self.operator}: {error}")

    def _load(self, session_id: str) -> ChatSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    # --- Selection ---

    def select_session(self, session_id: str | None) -> ChatSession | None:
        self.selector.select(session_id)
        return self.store.get_session(session_id)

    @property
    def selected_session(self) -> ChatSession | None:
        return self.store.get_session(self.selector.selected)

    def messages(self) -> list[ChatMessage]:
        return self.store.get_messages(self.selector.selected)

    def notes(self) -> list[InternalNote]:
        return self.store.get_notes(self.selector.selected)

    # --- Status transitions ---

    async def _transition(self, transition: Transition) -> ChatSession | None:
        try:
            session_id = self.selector.require()
            async with self.locks(session_id):
                current = state_of(self._load(session_id))
                target = next_state(current, transition, self.operator)
                if target != current and self.chat_service.is_configured:
                    await self.chat_service.update_session_status(
                        session_id, target.conversation_status, target.assigned_to
                    )
                return self.store.apply_transition(session_id, transition, self.operator)
        except IGNORED as e:
            self._ignore(transition.value, e)
            return None

    async def take_over(self) -> ChatSession | None:
        return await self._transition(Transition.TAKE_OVER)

    async def hand_back(self) -> ChatSession | None:
        return await self._transition(Transition.HAND_BACK)

    async def close_session(self) -> ChatSession | None:
        return await self._transition(Transition.CLOSE)

    # --- Messages ---

    async def send_message(self, content: str) -> ChatMessage | None:
        if not content.strip():
            return None
        try:
            session_id = self.selector.require()
            async with self.locks(session_id):
                session = self._load(session_id)
                if session.conversation_status == ConversationStatus.CLOSED:
                    raise SessionClosed(session_id)
                # Attribution is fixed before the back-end call and recorded as sent
                sender = attribute_sender(session.conversation_status)
                # Only human replies go through the back-end; the AI pipeline persists its own
                if sender == Sender.HUMAN_AGENT and self.chat_service.is_configured:
                    await self.chat_service.send_human_reply(session_id, content)
                return self.composer.add_message(session_id, content, sender=sender)
        except IGNORED as e:
            self._ignore("send_message", e)
            return None

    async def send_template(self, template_name: str, variables: dict[str, str]) -> ChatMessage | None:
        template = self.catalog.require_approved(template_name)
        try:
            session_id = self.selector.require()
            async with self.locks(session_id):
                session = self._load(session_id)
                if session.conversation_status == ConversationStatus.CLOSED:
                    raise SessionClosed(session_id)
                sender = attribute_sender(session.conversation_status)
                if self.chat_service.is_configured:
                    await self.chat_service.send_template(session_id, template.name, variables)
                message = self.composer.send_template_message(session_id, template, variables, sender=sender)
        except IGNORED as e:
            self._ignore("send_template", e)
            return None

        if self._draft is not None and self._draft.id == template.id:
            self.close_template()
        return message

    async def send_media(self, media_type: str, caption: str = "") -> ChatMessage | None:
        try:
            return self.composer.send_media_message(self.selector.require(), media_type, caption)
        except IGNORED as e:
            self._ignore("send_media", e)
            return None

    def add_note(self, content: str) -> InternalNote | None:
        if not content.strip():
            return None
        try:
            return self.store.add_note(self.selector.require(), self.operator, content.strip())
        except IGNORED as e:
            self._ignore("add_note", e)
            return None

    # --- Template draft and preview ---

    def open_template(self, template_id: str) -> TemplateDefinition:
        template = self.catalog.get(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        if template.status != TemplateStatus.APPROVED:
            raise TemplateNotApproved(template.name, template.status.value)
        self._draft = template
        self._draft_variables = {}
        return template

    def close_template(self) -> None:
        self._draft = None
        self._draft_variables = {}

    @property
    def draft(self) -> TemplateDefinition | None:
        return self._draft

    @property
    def draft_variables(self) -> dict[str, str]:
        return dict(self._draft_variables)

    def toggle_preview_variable(self, name: str, value: str) -> str:
        """Bind (or with an empty value, unbind) a variable of the open template."""
        if self._draft is None:
            return ""
        if value:
            self._draft_variables[name] = value
        else:
            self._draft_variables.pop(name, None)
        return self.preview()

    def preview(self) -> str:
        if self._draft is None:
            return ""
        return render(self._draft, self._draft_variables)

    # --- Back-end sync ---

    async def sync_sessions(
        self,
        status: str | None = None,
        agent_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ChatSession]:
        records = await self.chat_service.list_sessions(
            status=status, agent_id=agent_id, limit=limit, offset=offset
        )
        sessions = self.store.ingest_sessions(records)
        logger.info(f"Synced {len(sessions)} sessions from chat service")
        return sessions

    async def load_messages(self, session_id: str | None = None) -> list[ChatMessage]:
        # Resolve the id up front: the response is applied to the session it was
        # requested for, even if the operator has moved on meanwhile.
        session_id = session_id or self.selector.selected
        if session_id is None:
            return []
        records = await self.chat_service.list_messages(session_id)
        try:
            return self.store.ingest_messages(session_id, records)
        except UnknownSession as e:
            self._ignore("load_messages", e)
            return []

    async def load_templates(self) -> list[TemplateDefinition]:
        self.catalog.replace(await self.chat_service.list_templates())
        if self._draft is not None and self.catalog.get(self._draft.id) is None:
            self.close_template()
        return self.catalog.all()


class ConsoleRegistry:
    """One console per operator over a shared store, catalog and back-end client."""

    def __init__(self, store: ConversationStore, catalog: TemplateCatalog, chat_service: ChatService) -> None:
        self.store = store
        self.catalog = catalog
        self.chat_service = chat_service
        self.locks = SessionLocks()
        self._consoles: dict[str, OperatorConsole] = {}
        self._lock = threading.Lock()

    def for_operator(self, operator: str) -> OperatorConsole:
        with self._lock:
            console = self._consoles.get(operator)
            if console is None:
                console = OperatorConsole(operator, self.store, self.catalog, self.chat_service, self.locks)
                self._consoles[operator] = console
            return console


_registry: ConsoleRegistry | None = None


def get_registry() -> ConsoleRegistry:
    global _registry
    if _registry is None:
        from engage.core.database import engine

        _registry = ConsoleRegistry(ConversationStore(engine), TemplateCatalog(), ChatService())
    return _registry
