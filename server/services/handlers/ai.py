"""AI node handlers - AI Agent."""

import time
from typing import Dict, Any, TYPE_CHECKING

from core.logging import get_logger
from services.handlers.results import success_result, error_result

if TYPE_CHECKING:
    from models.nodes import AIAgentNodeParams
    from services.ai import AIService

logger = get_logger(__name__)


async def handle_ai_agent(
    node_id: str,
    node_type: str,
    parameters: "AIAgentNodeParams",
    context: Dict[str, Any],
    ai_service: "AIService"
) -> Dict[str, Any]:
    """Handle AI agent node execution.

    Answers the triggering message with the owner's model. An owner without
    an API key gets ``aiResponse=None``; provider errors fail the step.
    """
    start_time = time.time()
    trigger_data = context["state"].get("triggerData") or {}
    user_message = trigger_data.get("message") or ""

    try:
        response = await ai_service.complete(context["owner_id"], parameters.system_prompt, user_message)
    except Exception as e:
        logger.error("AI agent failed", node_id=node_id, error=str(e))
        return error_result(node_id, node_type, f"AI error: {e}", start_time)

    return success_result(node_id, node_type, {"aiResponse": response}, start_time)
