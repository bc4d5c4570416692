"""WhatsApp node handlers - Message."""

import time
from typing import Dict, Any, TYPE_CHECKING

from core.logging import get_logger
from services.interpolation import interpolate
from services.handlers.results import success_result

if TYPE_CHECKING:
    from core.database import Database
    from models.nodes import MessageNodeParams
    from services.messaging import WhatsAppChannel

logger = get_logger(__name__)


def resolve_contact_phone(state: Dict[str, Any]) -> Any:
    """Phone of the triggering contact: trigger payload first, then state."""
    trigger_data = state.get("triggerData") or {}
    return trigger_data.get("phone") or state.get("phone")


async def handle_message(
    node_id: str,
    node_type: str,
    parameters: "MessageNodeParams",
    context: Dict[str, Any],
    channel: "WhatsAppChannel",
    database: "Database"
) -> Dict[str, Any]:
    """Handle message node execution.

    Interpolates the template against state and sends it to the triggering
    contact. Send failures are logged and reported as ``messageSent=False``
    without failing the step. A send already recorded for this step's
    idempotency key is not repeated.

    Args:
        node_id: The node ID
        node_type: The node type (message)
        parameters: Validated message parameters
        context: Execution context
        channel: The WhatsApp channel
        database: Database for the side-effect ledger

    Returns:
        Execution result dict
    """
    start_time = time.time()
    state = context["state"]
    text = interpolate(parameters.template, state)
    phone = resolve_contact_phone(state)
    ledger_key = f"{context['idempotency_key']}:message"
    sent = False

    if not phone:
        logger.warning("[Message] No recipient phone in state", node_id=node_id)
    elif await database.has_side_effect(ledger_key):
        logger.info("[Message] Already sent for this step", node_id=node_id, key=ledger_key)
        sent = True
    else:
        try:
            sent = await channel.send_text(context["owner_id"], str(phone), text)
            if sent:
                await database.record_side_effect(ledger_key, "message")
        except Exception as e:
            logger.warning("[Message] Send failed", node_id=node_id, error=str(e))

    return success_result(node_id, node_type, {"messageSent": sent, "message": text}, start_time)
