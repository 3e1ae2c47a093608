from engage.models.conversation import ChatMessage, ChatSession, InternalNote

__all__ = ["ChatMessage", "ChatSession", "InternalNote"]
