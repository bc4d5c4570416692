"""Variable interpolation for node templates.

Replaces ``{name}`` placeholders with values from execution state, falling
back to the trigger payload. One pass only; unresolved placeholders are
left as they are.
"""

import re
from typing import Dict, Any

from core.logging import get_logger

logger = get_logger(__name__)

# Compiled regex for placeholder matching
PLACEHOLDER_PATTERN = re.compile(r'\{(\w+)\}')


def lookup_variable(name: str, state: Dict[str, Any]) -> Any:
    """Resolve one variable name: state first, then ``state['triggerData']``."""
    value = state.get(name)
    if value is None:
        trigger_data = state.get("triggerData")
        if isinstance(trigger_data, dict):
            value = trigger_data.get(name)
    return value


def interpolate(template: str, state: Dict[str, Any]) -> str:
    """Substitute ``{name}`` placeholders in ``template``.

    Examples:
        >>> interpolate("Olá {name}", {"triggerData": {"name": "Maria"}})
        'Olá Maria'
        >>> interpolate("Olá {missing}", {})
        'Olá {missing}'
    """
    if not template or '{' not in template:
        return template or ""

    def _replace(match: "re.Match[str]") -> str:
        value = lookup_variable(match.group(1), state)
        if value is None:
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)
