"""CRM node handlers - lead stage, tags and notes."""

import time
from typing import Dict, Any, TYPE_CHECKING

from core.logging import get_logger
from services.handlers.results import success_result
from services.handlers.whatsapp import resolve_contact_phone

if TYPE_CHECKING:
    from core.database import Database
    from models.nodes import CrmNodeParams

logger = get_logger(__name__)


async def handle_crm(
    node_id: str,
    node_type: str,
    parameters: "CrmNodeParams",
    context: Dict[str, Any],
    database: "Database"
) -> Dict[str, Any]:
    """Handle CRM node execution.

    Looks up the owner's lead by the triggering phone and applies the
    configured stage, tag and note changes. No lead is a successful no-op.
    """
    start_time = time.time()
    phone = resolve_contact_phone(context["state"])
    output: Dict[str, Any] = {"crmUpdated": False, "leadId": None}

    if not phone:
        logger.info("[CRM] No phone in state, skipping", node_id=node_id)
        return success_result(node_id, node_type, output, start_time)

    lead = await database.find_lead_by_phone(context["owner_id"], str(phone))
    if not lead:
        logger.info("[CRM] No lead for phone", node_id=node_id, phone=phone)
        return success_result(node_id, node_type, output, start_time)

    output["leadId"] = lead.id
    ledger_key = f"{context['idempotency_key']}:crm"
    if await database.has_side_effect(ledger_key):
        logger.info("[CRM] Already applied for this step", node_id=node_id, lead_id=lead.id)
        output["crmUpdated"] = True
        return success_result(node_id, node_type, output, start_time)

    tags = None
    if parameters.add_tags:
        existing = list(lead.tags or [])
        tags = existing + [tag for tag in parameters.add_tags if tag not in existing]

    notes = None
    if parameters.notes:
        notes = f"{lead.notes or ''}\n{parameters.notes}"

    updated = await database.update_lead(lead.id, stage_id=parameters.new_stage or None,
                                         tags=tags, notes=notes)
    if updated:
        await database.record_side_effect(ledger_key, "crm")

    logger.info("[CRM] Lead updated", node_id=node_id, lead_id=lead.id, updated=updated,
                stage=parameters.new_stage, added_tags=parameters.add_tags)
    output["crmUpdated"] = updated
    return success_result(node_id, node_type, output, start_time)
