"""Template rendering for node bodies.

Resolves ``{{ path }}`` placeholders against a run context namespace:

- Trigger payload: {{ payload.user.email }} or {{ trigger.payload.user.email }}
- Predecessor results: {{ nodes.welcome_email.provider_id }}
- Run metadata: {{ run.id }}

Only dot paths are supported. Nothing is evaluated, so a template can never
execute code. A placeholder whose path does not resolve is an error.
"""

import re
from typing import Any

from core.utils import MISSING, resolve_path

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_\-.]+)\s*\}\}")


class TemplateError(ValueError):
    """A placeholder could not be resolved."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Cannot resolve '{path}' in template")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render(template: Any, namespace: dict) -> Any:
    """Render a template string.

    A template that is exactly one placeholder returns the raw value
    (keeps lists and numbers intact); otherwise every placeholder is
    substituted as text. Non-string values are returned unchanged.
    """
    if not isinstance(template, str):
        return template

    whole = PLACEHOLDER.fullmatch(template.strip())
    if whole:
        value = resolve_path(namespace, whole.group(1))
        if value is MISSING:
            raise TemplateError(whole.group(1))
        return value

    def substitute(match: re.Match) -> str:
        value = resolve_path(namespace, match.group(1))
        if value is MISSING:
            raise TemplateError(match.group(1))
        return _stringify(value)

    return PLACEHOLDER.sub(substitute, template)


def render_text(template: Any, namespace: dict) -> str:
    """Render and always return a string."""
    return _stringify(render(template, namespace))
