"""Tests for the operator console, local-only and against a fake chat back-end."""

import asyncio
import json

import httpx
import pytest

from engage.core.errors import ChatServiceError, TemplateNotApproved, TemplateNotFound
from engage.models.conversation import ConversationStatus, MessageType, Sender, SessionStatus
from engage.services.chat_service import ChatService
from engage.services.console import ConsoleRegistry, OperatorConsole
from engage.services.state_machine import Transition


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def session(store):
    return store.open_session(customer_name="Amit")


def test_actions_without_selection_are_ignored(console):
    assert run(console.take_over()) is None
    assert run(console.hand_back()) is None
    assert run(console.close_session()) is None
    assert run(console.send_message("Hi")) is None
    assert run(console.send_media("image", "")) is None
    assert console.add_note("note") is None
    assert console.messages() == []


def test_actions_on_unknown_session_are_ignored(console):
    console.select_session("missing")
    assert run(console.take_over()) is None
    assert run(console.send_message("Hi")) is None
    assert console.notes() == []


def test_ai_then_human_attribution(console, session):
    console.select_session(session.id)

    first = run(console.send_message("Hi"))
    assert first.sender == Sender.AI

    taken = run(console.take_over())
    assert taken.assigned_to == "Ravi"
    second = run(console.send_message("Hello, I'm a human"))
    assert second.sender == Sender.HUMAN_AGENT


def test_take_over_twice_equals_once(console, session):
    console.select_session(session.id)
    once = run(console.take_over())
    twice = run(console.take_over())
    assert (twice.conversation_status, twice.assigned_to) == (once.conversation_status, once.assigned_to)


def test_hand_back_on_ai_session_changes_nothing(console, session):
    console.select_session(session.id)
    result = run(console.hand_back())
    assert result.conversation_status == ConversationStatus.ACTIVE_AI
    assert console.messages() == []


def test_close_then_send_is_ignored(console, session):
    console.select_session(session.id)
    run(console.take_over())
    closed = run(console.close_session())

    assert closed.conversation_status == ConversationStatus.CLOSED
    assert closed.status == SessionStatus.CLOSED
    assert closed.assigned_to is None
    assert run(console.send_message("Still there?")) is None
    assert console.messages() == []


def test_blank_messages_and_notes_are_ignored(console, session):
    console.select_session(session.id)
    assert run(console.send_message("   ")) is None
    assert console.add_note("") is None


def test_notes_are_authored_by_operator(console, session):
    console.select_session(session.id)
    note = console.add_note("  Frustrated about delay  ")
    assert note.author == "Ravi"
    assert note.content == "Frustrated about delay"
    assert [n.id for n in console.notes()] == [note.id]


def test_send_template(console, session):
    console.select_session(session.id)
    message = run(console.send_template("order_status_v1", {"customer_name": "Amit"}))
    assert message.message_type == MessageType.TEMPLATE
    assert message.content == "[Template: order_status_v1] Amit"


def test_send_template_requires_approval(console, session):
    console.select_session(session.id)
    with pytest.raises(TemplateNotApproved):
        run(console.send_template("support_greeting", {"customer_name": "Amit"}))
    with pytest.raises(TemplateNotFound):
        run(console.send_template("nope", {}))
    assert console.messages() == []


def test_send_media(console, session):
    console.select_session(session.id)
    message = run(console.send_media("video", ""))
    assert message.content == "[VIDEO sent]"


def test_preview_draft(console, session):
    console.open_template("t3")
    assert console.preview() == "Hi {{customer_name}}! Order {{order_number}} is {{status}}."

    assert console.toggle_preview_variable("customer_name", "Amit") == (
        "Hi Amit! Order {{order_number}} is {{status}}."
    )
    console.toggle_preview_variable("status", "shipped")
    console.toggle_preview_variable("status", "")
    assert console.draft_variables == {"customer_name": "Amit"}


def test_open_template_rejects_unapproved(console):
    with pytest.raises(TemplateNotApproved):
        console.open_template("t4")
    with pytest.raises(TemplateNotFound):
        console.open_template("nope")
    assert console.preview() == ""
    assert console.toggle_preview_variable("customer_name", "Amit") == ""


def test_sending_the_draft_template_resets_it(console, session):
    console.select_session(session.id)
    console.open_template("t3")
    console.toggle_preview_variable("customer_name", "Amit")

    run(console.send_template("order_status_v1", console.draft_variables))
    assert console.draft is None
    assert console.preview() == ""


def test_operators_have_independent_selection(registry, session):
    ravi = registry.for_operator("Ravi")
    meera = registry.for_operator("Meera")
    assert registry.for_operator("Ravi") is ravi

    ravi.select_session(session.id)
    assert meera.selected_session is None

    run(ravi.take_over())
    meera.select_session(session.id)
    # Meera sees the shared state but cannot take over an already handled session
    assert run(meera.take_over()).assigned_to == "Ravi"


# --- With a chat back-end ---


@pytest.fixture
def online(store, catalog, backend_service):
    return OperatorConsole("Ravi", store, catalog, backend_service)


def test_transitions_are_persisted(online, session, backend_calls):
    online.select_session(session.id)
    run(online.take_over())
    run(online.take_over())  # idempotent: no second call
    run(online.close_session())

    assert [r.url.path for r in backend_calls] == [
        f"/chat/sessions/{session.id}/status",
        f"/chat/sessions/{session.id}/status",
    ]
    assert json.loads(backend_calls[0].content) == {"status": "human_handover", "assigned_to": "Ravi"}
    assert json.loads(backend_calls[1].content) == {"status": "closed", "assigned_to": None}
    assert backend_calls[0].headers["Authorization"] == "Bearer secret"


def test_only_human_replies_are_persisted(online, session, backend_calls):
    online.select_session(session.id)
    run(online.send_message("from the AI"))
    assert backend_calls == []

    run(online.take_over())
    run(online.send_message("from Ravi"))
    assert backend_calls[-1].url.path == f"/chat/sessions/{session.id}/reply"
    assert json.loads(backend_calls[-1].content) == {"content": "from Ravi"}


def test_template_send_is_persisted(online, session, backend_calls):
    online.select_session(session.id)
    run(online.send_template("cod_confirm_v1", {"customer_name": "Rahul"}))
    request = backend_calls[-1]
    assert request.url.path == f"/chat/sessions/{session.id}/send-template"
    assert json.loads(request.content) == {
        "template_name": "cod_confirm_v1",
        "variables": {"customer_name": "Rahul"},
    }


def test_backend_failure_leaves_store_untouched(store, catalog, session):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "maintenance"})

    failing = ChatService(base_url="http://chat.test", transport=httpx.MockTransport(handler))
    console = OperatorConsole("Ravi", store, catalog, failing)
    console.select_session(session.id)

    with pytest.raises(ChatServiceError, match="maintenance"):
        run(console.take_over())
    assert store.get_session(session.id).conversation_status == ConversationStatus.ACTIVE_AI

    store.apply_transition(session.id, Transition.TAKE_OVER, "Ravi")
    with pytest.raises(ChatServiceError):
        run(console.send_message("hello"))
    assert store.get_messages(session.id) == []


def _fake_backend():
    sessions = [
        {"id": "s1", "channel": "whatsapp", "status": "human_handover", "assigned_to": "Meera",
         "message_count": 12},
        {"id": "s2", "channel": "web", "status": "active"},
    ]
    messages = {
        "s1": [
            {"id": "m1", "sender": "customer", "content": "Hi", "message_type": "text",
             "created_at": "2026-10-01T10:00:00Z"},
            {"id": "m2", "sender": "human", "content": "Hello!", "message_type": "text",
             "created_at": "2026-10-01T10:01:00Z"},
        ],
        "s2": [
            {"id": "m3", "sender": "ai", "content": "Welcome", "message_type": "text",
             "created_at": "2026-10-01T09:00:00Z"},
        ],
    }
    templates = [
        {"id": "t1", "name": "welcome", "body": "Hi {{1}}", "variables": ["customer_name"],
         "status": "approved"},
        {"id": "t2", "name": "broken", "body": "Hi {{1}} {{2}}", "variables": ["customer_name"],
         "status": "approved"},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/chat/sessions":
            return httpx.Response(200, json=sessions)
        if path == "/chat/templates":
            return httpx.Response(200, json=templates)
        session_id = path.split("/")[3]
        return httpx.Response(200, json=messages[session_id])

    return ChatService(base_url="http://chat.test", transport=httpx.MockTransport(handler))


def test_sync_sessions_and_messages(store, catalog):
    console = OperatorConsole("Ravi", store, catalog, _fake_backend())
    run(console.sync_sessions())

    s1 = store.get_session("s1")
    assert s1.conversation_status == ConversationStatus.HUMAN_ACTIVE
    assert s1.assigned_to == "Meera"
    # Summary fields follow the local log, not the back-end's counters
    assert s1.message_count == 0

    console.select_session("s1")
    run(console.load_messages())
    assert [m.sender for m in console.messages()] == [Sender.USER, Sender.HUMAN_AGENT]
    assert store.get_session("s1").message_count == 2


def test_stale_message_response_updates_its_own_session(store, catalog):
    console = OperatorConsole("Ravi", store, catalog, _fake_backend())
    run(console.sync_sessions())

    console.select_session("s1")
    console.select_session("s2")
    # Response for s1 arrives after the operator moved on to s2
    run(console.load_messages("s1"))

    assert [m.id for m in store.get_messages("s1")] == ["m1", "m2"]
    assert console.messages() == []


def test_load_templates_skips_malformed(store):
    from engage.services.templates import TemplateCatalog

    console = OperatorConsole("Ravi", store, TemplateCatalog(), _fake_backend())
    templates = run(console.load_templates())
    assert [t.name for t in templates] == ["welcome"]


def test_registry_shares_store(store, catalog, offline_service):
    registry = ConsoleRegistry(store, catalog, offline_service)
    assert registry.for_operator("a").store is registry.for_operator("b").store


def test_reply_keeps_sender_decided_before_backend_call(store, catalog, session):
    replies = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/reply"):
            replies.append(json.loads(request.content))
            # The session is handed back while the reply is in flight
            store.apply_transition(session.id, Transition.HAND_BACK)
        return httpx.Response(200, json={"ok": True})

    service = ChatService(base_url="http://chat.test", transport=httpx.MockTransport(handler))
    console = OperatorConsole("Ravi", store, catalog, service)
    console.select_session(session.id)
    run(console.take_over())

    message = run(console.send_message("human words"))

    assert replies == [{"content": "human words"}]
    assert message.sender == Sender.HUMAN_AGENT
    assert store.get_messages(session.id)[0].sender == Sender.HUMAN_AGENT


def test_concurrent_take_over_has_one_winner(store, catalog, session):
    status_calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.01)
        status_calls.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    service = ChatService(base_url="http://chat.test", transport=httpx.MockTransport(handler))
    registry = ConsoleRegistry(store, catalog, service)
    ravi = registry.for_operator("Ravi")
    meera = registry.for_operator("Meera")
    ravi.select_session(session.id)
    meera.select_session(session.id)

    async def both():
        return await asyncio.gather(ravi.take_over(), meera.take_over())

    first, second = run(both())

    assert status_calls == [{"status": "human_handover", "assigned_to": "Ravi"}]
    assert first.assigned_to == second.assigned_to == "Ravi"
    assert store.get_session(session.id).assigned_to == "Ravi"
