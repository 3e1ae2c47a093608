"""WhatsApp message templates: validation, preview rendering and the local catalog.

Template bodies carry positional placeholders ``{{1}}, {{2}}, ...``. Each index is
bound to the variable name at the same position in ``variables``, so a body of
``"Hi {{1}}! Order {{2}}"`` with ``variables=["customer_name", "order_number"]``
renders ``customer_name`` into ``{{1}}``. Unbound variables are rendered as
``{{customer_name}}`` so the preview shows what is still missing.
"""

import logging
import re
from enum import Enum
from typing import Iterable, Mapping

from pydantic import BaseModel

from engage.core.errors import MalformedTemplate, TemplateNotApproved, TemplateNotFound

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{(\d+)\}\}")


class TemplateStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TemplateDefinition(BaseModel):
    id: str
    name: str
    category: str = "utility"
    language: str = "en"
    body: str
    variables: list[str] = []
    status: TemplateStatus = TemplateStatus.PENDING


def placeholder_indices(body: str) -> set[int]:
    return {int(match) for match in PLACEHOLDER_RE.findall(body)}


def validate_template(template: TemplateDefinition) -> TemplateDefinition:
    """Check that placeholders and variable names line up one-to-one.

    The body must use exactly the indices ``1..len(variables)``, and variable
    names must be unique and non-empty. Raises MalformedTemplate otherwise.
    """
    indices = placeholder_indices(template.body)
    expected = set(range(1, len(template.variables) + 1))
    if indices != expected:
        raise MalformedTemplate(
            f"Template '{template.name}' declares {len(template.variables)} variables "
            f"but its body uses placeholders {sorted(indices)}"
        )
    if any(not name for name in template.variables):
        raise MalformedTemplate(f"Template '{template.name}' has an empty variable name")
    if len(set(template.variables)) != len(template.variables):
        raise MalformedTemplate(f"Template '{template.name}' repeats a variable name")
    return template


def render(template: TemplateDefinition, variables: Mapping[str, str]) -> str:
    body = template.body
    for index, name in enumerate(template.variables, start=1):
        value = variables.get(name) or f"{{{{{name}}}}}"
        body = body.replace(f"{{{{{index}}}}}", value, 1)
    return body


def render_label(template: TemplateDefinition, variables: Mapping[str, str]) -> str:
    """Content recorded in the message log for a sent template."""
    values = [variables[name] for name in template.variables if variables.get(name)]
    return f"[Template: {template.name}] {', '.join(values)}".rstrip()


class TemplateCatalog:
    """Local cache of the template definitions fetched from the chat back-end."""

    def __init__(self, templates: Iterable[TemplateDefinition] = ()) -> None:
        self._templates: dict[str, TemplateDefinition] = {}
        self.replace(templates)

    def replace(self, templates: Iterable[TemplateDefinition]) -> None:
        loaded: dict[str, TemplateDefinition] = {}
        for template in templates:
            try:
                loaded[template.id] = validate_template(template)
            except MalformedTemplate as e:
                logger.warning(f"Skipping template {template.id}: {e}")
        self._templates = loaded

    def register(self, template: TemplateDefinition) -> TemplateDefinition:
        self._templates[template.id] = validate_template(template)
        return template

    def all(self) -> list[TemplateDefinition]:
        return list(self._templates.values())

    def approved(self) -> list[TemplateDefinition]:
        return [t for t in self._templates.values() if t.status == TemplateStatus.APPROVED]

    def get(self, template_id: str) -> TemplateDefinition | None:
        return self._templates.get(template_id)

    def get_by_name(self, name: str) -> TemplateDefinition | None:
        for template in self._templates.values():
            if template.name == name:
                return template
        return None

    def require_approved(self, name: str) -> TemplateDefinition:
        template = self.get_by_name(name)
        if template is None:
            raise TemplateNotFound(name)
        if template.status != TemplateStatus.APPROVED:
            raise TemplateNotApproved(name, template.status.value)
        return template
