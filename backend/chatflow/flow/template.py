"""
Variable interpolation for node text
"""
import re
from typing import Any, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def interpolate(template: Optional[str], variables: Optional[Mapping[str, Any]]) -> str:
    """
    Replace {{name}} placeholders with session variables.

    Unknown names are left in place so a misconfigured flow shows the
    placeholder instead of silently sending an empty string.
    """
    if not template:
        return ""

    values = variables or {}

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        value = values.get(key)
        if value is None:
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)
