from fastapi import Depends, Header

from engage.core.config import settings
from engage.services.console import ConsoleRegistry, OperatorConsole, get_registry


def get_console(
    x_operator: str | None = Header(default=None),
    registry: ConsoleRegistry = Depends(get_registry),
) -> OperatorConsole:
    """Console of the operator named in the X-Operator header (authentication happens upstream)."""
    return registry.for_operator(x_operator or settings.default_operator)
