"""
Flat {{key}} placeholder substitution for provider headers and bodies.

Provider specs are written by the operator, so this stays deliberately
small: no escaping, no nesting, no filters. Anything that is not a
placeholder is passed through verbatim.
"""

import re
from typing import Any, Mapping

PLACEHOLDER_PATTERN = re.compile(r"\{\{(.+?)\}\}")


def render(template: str, variables: Mapping[str, Any]) -> str:
    """
    Replace every ``{{ key }}`` in template with ``str(variables[key])``.

    Keys are trimmed of surrounding whitespace. Missing keys (or None values)
    render as an empty string. Substituted values are never re-scanned.

    Args:
        template: Template text
        variables: Placeholder values

    Returns:
        Rendered text
    """

    def _substitute(match: re.Match) -> str:
        value = variables.get(match.group(1).strip())
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_substitute, template)


def placeholders(template: str) -> list[str]:
    """List the (trimmed) placeholder names used in a template, in order."""
    return [m.group(1).strip() for m in PLACEHOLDER_PATTERN.finditer(template)]
