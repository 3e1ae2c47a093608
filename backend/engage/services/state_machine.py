"""Conversation status transitions and outbound message attribution.

    active_ai --take_over--> human_active --hand_back--> active_ai
        any   --close------> closed (terminal)

Transitions are operator-invoked only. Re-applying a transition to a session
already in its target state is a no-op, and nothing leaves ``closed``.
"""

from dataclasses import dataclass
from enum import Enum

from engage.models.conversation import ConversationStatus, Sender, SessionStatus


class Transition(str, Enum):
    TAKE_OVER = "take_over"
    HAND_BACK = "hand_back"
    CLOSE = "close"


@dataclass(frozen=True)
class SessionState:
    conversation_status: ConversationStatus
    assigned_to: str | None = None

    def __post_init__(self) -> None:
        # The back-end may report a handed-over session nobody has claimed yet,
        # so human_active does not require an assignee.
        if self.conversation_status != ConversationStatus.HUMAN_ACTIVE and self.assigned_to is not None:
            raise ValueError(f"{self.conversation_status.value} sessions cannot be assigned")

    @property
    def status(self) -> SessionStatus:
        return derive_status(self.conversation_status)


def derive_status(conversation_status: ConversationStatus) -> SessionStatus:
    if conversation_status == ConversationStatus.CLOSED:
        return SessionStatus.CLOSED
    return SessionStatus.ACTIVE


def attribute_sender(conversation_status: ConversationStatus) -> Sender:
    """Sender recorded for an outbound message composed without an explicit sender."""
    if conversation_status == ConversationStatus.HUMAN_ACTIVE:
        return Sender.HUMAN_AGENT
    return Sender.AI


def take_over(state: SessionState, operator: str) -> SessionState:
    if state.conversation_status != ConversationStatus.ACTIVE_AI:
        return state
    return SessionState(ConversationStatus.HUMAN_ACTIVE, assigned_to=operator)


def hand_back(state: SessionState) -> SessionState:
    if state.conversation_status != ConversationStatus.HUMAN_ACTIVE:
        return state
    return SessionState(ConversationStatus.ACTIVE_AI)


def close(state: SessionState) -> SessionState:
    if state.conversation_status == ConversationStatus.CLOSED:
        return state
    return SessionState(ConversationStatus.CLOSED)


def next_state(state: SessionState, transition: Transition, operator: str | None = None) -> SessionState:
    if transition == Transition.TAKE_OVER:
        if not operator:
            raise ValueError("take_over requires an operator")
        return take_over(state, operator)
    if transition == Transition.HAND_BACK:
        return hand_back(state)
    if transition == Transition.CLOSE:
        return close(state)
    raise ValueError(f"Unknown transition: {transition}")


def state_of(session) -> SessionState:
    return SessionState(session.conversation_status, session.assigned_to)
