"""Errors raised by the conversation core and the chat back-end client."""


class ConversationError(Exception):
    pass


class NoActiveSession(ConversationError):
    """An operator action was invoked while no session is selected."""

    def __init__(self) -> None:
        super().__init__("No session is selected")


class UnknownSession(ConversationError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


class SessionClosed(ConversationError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' is closed")


class TemplateNotFound(ConversationError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Template '{name}' not found")


class TemplateNotApproved(ConversationError):
    def __init__(self, name: str, status: str) -> None:
        self.name = name
        self.status = status
        super().__init__(f"Template '{name}' is {status}; only approved templates can be sent")


class MalformedTemplate(ConversationError):
    pass


class ChatServiceError(Exception):
    """The chat back-end could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
