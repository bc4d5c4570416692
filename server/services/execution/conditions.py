"""Condition evaluation and branch selection.

Condition nodes compare one state field against a configured value and
write ``conditionResult`` into state. Edges leaving any node may carry a
selector (``sourceHandle`` or ``label``); after a node that produced
``conditionResult`` the coordinator uses the selector to pick the branch.

Supported operators:
- equals: loose equality after string normalisation
- not_equals: negation of equals
- contains: string containment
- greater_than: numeric >
- less_than: numeric <
"""

from typing import Dict, Any, Optional, List

from core.logging import get_logger
from constants import CONDITION_RESULT_KEY, TRUE_SELECTORS, FALSE_SELECTORS
from models.flow import FlowEdge

logger = get_logger(__name__)


def get_nested_value(data: Dict[str, Any], field_path: str) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: Dictionary to extract value from
        field_path: Dot-separated path (e.g., "lead.stage", "items.0.name")

    Returns:
        Value at path or None if not found

    Examples:
        >>> get_nested_value({"lead": {"stage": "new"}}, "lead.stage")
        'new'
        >>> get_nested_value({"items": [{"name": "a"}]}, "items.0.name")
        'a'
    """
    if not data or not field_path:
        return None

    current: Any = data
    for part in field_path.split('.'):
        if current is None:
            return None

        if part.isdigit() and isinstance(current, (list, tuple)):
            index = int(part)
            current = current[index] if 0 <= index < len(current) else None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None

    return current


def resolve_field(state: Dict[str, Any], field_path: str) -> Any:
    """Look a field up in execution state, falling back to ``triggerData``."""
    value = get_nested_value(state, field_path)
    if value is None:
        value = get_nested_value(state.get("triggerData") or {}, field_path)
    return value


def evaluate_condition(operator: str, actual: Any, target: Any) -> bool:
    """Evaluate ``actual <operator> target``.

    Unknown operators and impossible comparisons evaluate to False.
    """
    if operator == "equals":
        return _normalise(actual) == _normalise(target)

    elif operator == "not_equals":
        return _normalise(actual) != _normalise(target)

    elif operator == "contains":
        if actual is None or target is None:
            return False
        if isinstance(actual, (list, tuple)):
            return any(_normalise(item) == _normalise(target) for item in actual)
        return str(target) in str(actual)

    elif operator == "greater_than":
        return _numeric_compare(actual, target, lambda a, b: a > b)

    elif operator == "less_than":
        return _numeric_compare(actual, target, lambda a, b: a < b)

    logger.warning("Unknown operator", operator=operator)
    return False


def _normalise(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _numeric_compare(actual: Any, target: Any, comparator) -> bool:
    """Compare two values as numbers; anything non-numeric is False."""
    if actual is None or target is None or isinstance(actual, bool):
        return False
    try:
        return comparator(float(actual), float(target))
    except (ValueError, TypeError):
        return False


def _is_branch_edge(edge: FlowEdge) -> bool:
    return edge.selector in TRUE_SELECTORS or edge.selector in FALSE_SELECTORS


def select_next_edge(edges: List[FlowEdge], output: Dict[str, Any]) -> Optional[FlowEdge]:
    """Choose which outgoing edge to follow after a node.

    Only true/false selectors take part in branching; display labels and
    handle ids never exclude an edge. When ``output`` holds a boolean
    ``conditionResult`` the first edge whose selector names that outcome
    wins, then the first edge that is not a true/false branch. A node whose
    edges are all true/false branches and none matches has no next edge.
    """
    if not edges:
        return None

    result = output.get(CONDITION_RESULT_KEY) if output else None
    if isinstance(result, bool):
        wanted = TRUE_SELECTORS if result else FALSE_SELECTORS
        for edge in edges:
            if edge.selector in wanted:
                logger.debug("Branch edge matched", source=edge.source, target=edge.target,
                             selector=edge.selector)
                return edge

    for edge in edges:
        if not _is_branch_edge(edge):
            return edge

    if isinstance(result, bool):
        return None
    return edges[0]
