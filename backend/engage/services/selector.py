from engage.core.errors import NoActiveSession


class SessionSelector:
    """Which session an operator has open. Ids are not checked against the store."""

    def __init__(self, session_id: str | None = None) -> None:
        self._selected = session_id

    @property
    def selected(self) -> str | None:
        return self._selected

    def select(self, session_id: str | None) -> None:
        self._selected = session_id

    def require(self) -> str:
        if self._selected is None:
            raise NoActiveSession()
        return self._selected
