"""Chat back-end client: sessions, message history, templates and persistence calls."""

import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from engage.core.config import settings
from engage.core.errors import ChatServiceError
from engage.models.conversation import (
    Channel,
    ConversationStatus,
    DeliveryStatus,
    Direction,
    MessageType,
    Sender,
)
from engage.services.templates import TemplateDefinition

logger = logging.getLogger(__name__)

# The back-end only knows active | human_handover | closed
REMOTE_STATUS = {
    ConversationStatus.ACTIVE_AI: "active",
    ConversationStatus.HUMAN_ACTIVE: "human_handover",
    ConversationStatus.CLOSED: "closed",
}
LOCAL_STATUS = {remote: local for local, remote in REMOTE_STATUS.items()}

# Older payloads use the console's display names for senders
SENDER_ALIASES = {"human": "human_agent", "customer": "user", "agent": "human_agent"}


class RemoteSession(BaseModel):
    id: str
    channel: Channel = Channel.WHATSAPP
    external_id: str | None = None
    customer_name: str | None = None
    status: str = "active"
    conversation_status: ConversationStatus | None = None
    assigned_to: str | None = None
    conversation_summary: str | None = None
    created_at: datetime | None = None

    def to_record(self) -> dict[str, Any]:
        record = self.model_dump(exclude={"status"})
        if self.conversation_status is None:
            record["conversation_status"] = LOCAL_STATUS.get(self.status, ConversationStatus.ACTIVE_AI)
        return record


class RemoteMessage(BaseModel):
    id: str
    sender: Sender
    content: str = ""
    direction: Direction | None = None
    message_type: MessageType = MessageType.TEXT
    status: DeliveryStatus = DeliveryStatus.SENT
    template_name: str | None = None
    media_type: str | None = None
    created_at: datetime

    @field_validator("sender", mode="before")
    @classmethod
    def _sender_alias(cls, value: Any) -> Any:
        return SENDER_ALIASES.get(value, value)

    def to_record(self) -> dict[str, Any]:
        record = self.model_dump()
        if self.direction is None:
            record["direction"] = Direction.INBOUND if self.sender == Sender.USER else Direction.OUTBOUND
        return record


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if isinstance(data, dict):
        return data.get("detail") or data.get("message") or "API request failed"
    return "API request failed"


class ChatService:
    """REST client for the chat back-end."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (settings.chat_api_url if base_url is None else base_url).rstrip("/")
        self._token = settings.chat_api_token if token is None else token
        self._timeout = settings.chat_api_timeout if timeout is None else timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.is_configured:
            raise ChatServiceError("Chat service not configured. Set ENGAGE_CHAT_API_URL.")

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Chat service {method} {path} failed: {e}")
            raise ChatServiceError(f"Chat service unreachable: {e}") from e

        if resp.is_error:
            detail = _error_detail(resp)
            logger.warning(f"Chat service {method} {path} returned {resp.status_code}: {detail}")
            raise ChatServiceError(detail, status_code=resp.status_code)

        if not resp.content:
            return {}
        return resp.json()

    # --- Reads ---

    async def list_sessions(
        self,
        status: str | None = None,
        agent_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {}
        if status:
            params["status"] = status
        if agent_id:
            params["agent_id"] = agent_id
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset

        data = await self._request("GET", "/chat/sessions", params=params)
        try:
            return [RemoteSession.model_validate(item).to_record() for item in data]
        except ValidationError as e:
            raise ChatServiceError(f"Unexpected session payload: {e}") from e

    async def list_messages(self, session_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/chat/sessions/{session_id}/messages")
        try:
            return [RemoteMessage.model_validate(item).to_record() for item in data]
        except ValidationError as e:
            raise ChatServiceError(f"Unexpected message payload: {e}") from e

    async def list_templates(self) -> list[TemplateDefinition]:
        data = await self._request("GET", "/chat/templates")
        try:
            return [TemplateDefinition.model_validate(item) for item in data]
        except ValidationError as e:
            raise ChatServiceError(f"Unexpected template payload: {e}") from e

    # --- Writes ---

    async def update_session_status(
        self, session_id: str, status: ConversationStatus, assigned_to: str | None
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/chat/sessions/{session_id}/status",
            json={"status": REMOTE_STATUS[status], "assigned_to": assigned_to},
        )

    async def send_human_reply(self, session_id: str, content: str) -> dict[str, Any]:
        return await self._request(
            "POST", f"/chat/sessions/{session_id}/reply", json={"content": content}
        )

    async def send_template(
        self, session_id: str, template_name: str, variables: dict[str, str]
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/chat/sessions/{session_id}/send-template",
            json={"template_name": template_name, "variables": variables},
        )
