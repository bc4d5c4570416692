"""Flow control node handlers - Delay, Condition."""

import time
from typing import Dict, Any, TYPE_CHECKING

from core.logging import get_logger
from constants import CONDITION_RESULT_KEY
from services.execution.conditions import resolve_field, evaluate_condition
from services.handlers.results import success_result

if TYPE_CHECKING:
    from models.nodes import DelayNodeParams, ConditionNodeParams

logger = get_logger(__name__)


async def handle_delay(
    node_id: str,
    node_type: str,
    parameters: "DelayNodeParams",
    context: Dict[str, Any]
) -> Dict[str, Any]:
    """Handle delay node execution.

    Never sleeps. Returns ``defer_seconds`` so the coordinator schedules
    the next step instead.
    """
    start_time = time.time()
    minutes = parameters.delay_minutes
    logger.info("[Delay] Deferring next step", node_id=node_id, minutes=minutes)
    return success_result(
        node_id, node_type, {"delayed": True, "minutes": minutes}, start_time,
        defer_seconds=float(minutes) * 60.0,
    )


async def handle_condition(
    node_id: str,
    node_type: str,
    parameters: "ConditionNodeParams",
    context: Dict[str, Any]
) -> Dict[str, Any]:
    """Handle condition node execution."""
    start_time = time.time()
    actual = resolve_field(context["state"], parameters.field)
    result = evaluate_condition(parameters.operator, actual, parameters.value)

    logger.debug("[Condition] Evaluated", node_id=node_id, field=parameters.field,
                 operator=parameters.operator, actual=actual, target=parameters.value, result=result)

    return success_result(node_id, node_type, {CONDITION_RESULT_KEY: result}, start_time)
