"""Seed the local console database with a few demo conversations.

Usage:
    cd backend
    uv run python scripts/seed_demo.py
"""

from datetime import timedelta

from engage.core.config import settings
from engage.core.database import engine, init_db
from engage.models.conversation import (
    ConversationStatus,
    DeliveryStatus,
    Direction,
    MessageType,
    Sender,
    utcnow,
)
from engage.services.store import ConversationStore

now = utcnow()


def minutes_ago(minutes: int):
    return now - timedelta(minutes=minutes)


SESSIONS = [
    {
        "id": "conv-1",
        "external_id": "+91 98765 43210",
        "customer_name": "Rahul Sharma",
        "conversation_status": ConversationStatus.ACTIVE_AI,
    },
    {
        "id": "conv-2",
        "external_id": "+91 87654 32109",
        "customer_name": "Priya Patel",
        "conversation_status": ConversationStatus.ACTIVE_AI,
    },
    {
        "id": "conv-3",
        "external_id": "+91 76543 21098",
        "customer_name": "Amit Kumar",
        "conversation_status": ConversationStatus.HUMAN_ACTIVE,
        "assigned_to": "Ravi M.",
    },
]

MESSAGES = {
    "conv-1": [
        {"id": "m1", "sender": Sender.AI, "direction": Direction.OUTBOUND, "message_type": MessageType.TEMPLATE,
         "template_name": "cod_confirm_v1", "status": DeliveryStatus.DELIVERED, "created_at": minutes_ago(30),
         "content": "Hi Rahul! Your COD order #1042 worth 2,499 is ready to ship. Please confirm by replying YES."},
        {"id": "m2", "sender": Sender.USER, "direction": Direction.INBOUND, "status": DeliveryStatus.READ, "created_at": minutes_ago(5),
         "content": "Yes, I confirm my order #1042"},
    ],
    "conv-2": [
        {"id": "m3", "sender": Sender.AI, "direction": Direction.OUTBOUND, "message_type": MessageType.TEMPLATE,
         "template_name": "cart_recovery_v1", "status": DeliveryStatus.DELIVERED, "created_at": minutes_ago(60),
         "content": "Hi Priya! You left some items in your cart. Complete your purchase and get 10% off!"},
        {"id": "m4", "sender": Sender.USER, "direction": Direction.INBOUND, "status": DeliveryStatus.READ, "created_at": minutes_ago(15),
         "content": "What discount can you offer?"},
    ],
    "conv-3": [
        {"id": "m5", "sender": Sender.USER, "direction": Direction.INBOUND, "status": DeliveryStatus.READ, "created_at": minutes_ago(45),
         "content": "Where is my order?"},
        {"id": "m6", "sender": Sender.AI, "direction": Direction.OUTBOUND, "status": DeliveryStatus.SENT, "created_at": minutes_ago(40),
         "content": "Hi Amit! Your order #1038 is out for delivery. Expected today by 6 PM."},
        {"id": "m7", "sender": Sender.HUMAN_AGENT, "direction": Direction.OUTBOUND, "status": DeliveryStatus.DELIVERED,
         "created_at": minutes_ago(35),
         "content": "I've checked with the courier, your package is with the delivery partner."},
    ],
}

NOTES = {
    "conv-2": ("Ravi M.", "Customer seems price-sensitive. Approved up to 15% discount."),
    "conv-3": ("Ravi M.", "Took over from AI. Customer frustrated about delay."),
}

init_db()
store = ConversationStore(engine)
store.ingest_sessions(SESSIONS)
for session_id, messages in MESSAGES.items():
    store.ingest_messages(session_id, messages)
for session_id, (author, content) in NOTES.items():
    if not store.get_notes(session_id):
        store.add_note(session_id, author, content)

print(f"Seeded {len(SESSIONS)} conversations into {settings.db_path}")
