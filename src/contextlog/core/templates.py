"""Message template rendering.

Templates use named holes: ``{Name}``, ``{@Name}`` / ``{$Name}`` (capture
hints, rendered the same way here) and ``{Name:format}`` where ``format``
is a Python format spec. ``{{`` and ``}}`` produce literal braces. Holes
naming an unknown property are left untouched.
"""

import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

_HOLE = re.compile(
    r"\{\{|\}\}|\{(?P<hint>[@$]?)(?P<name>[A-Za-z_][A-Za-z0-9_.]*)"
    r"(?::(?P<spec>[^}]*))?\}"
)


def _format_value(value: Any, spec: str | None) -> str:
    if value is None:
        return "null"
    if spec:
        try:
            return format(value, spec)
        except (TypeError, ValueError):
            return str(value)
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def render_template(template: str, properties: Mapping[str, Any]) -> str:
    """Substitute property values into a message template."""

    def _replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token == "{{":
            return "{"
        if token == "}}":
            return "}"
        name = match.group("name")
        if name not in properties:
            return token
        return _format_value(properties[name], match.group("spec"))

    return _HOLE.sub(_replace, template)

