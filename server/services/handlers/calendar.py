"""Scheduling node handlers - Calendar booking, Checkout link."""

import time
from datetime import date
from typing import Dict, Any, TYPE_CHECKING

from core.logging import get_logger
from constants import DEFAULT_APPOINTMENT_STATUS, DEFAULT_CLIENT_NAME
from models.database import Appointment
from services.handlers.results import success_result

if TYPE_CHECKING:
    from core.config import Settings
    from core.database import Database
    from models.nodes import CalendarNodeParams, CheckoutNodeParams

logger = get_logger(__name__)


async def handle_calendar(
    node_id: str,
    node_type: str,
    parameters: "CalendarNodeParams",
    context: Dict[str, Any],
    database: "Database"
) -> Dict[str, Any]:
    """Handle calendar node execution.

    Books a pending appointment on the owner's first active service for the
    triggering contact. The step's idempotency key is stored on the
    appointment so a re-run returns the same booking.

    Args:
        node_id: The node ID
        node_type: The node type (calendar)
        parameters: Validated calendar parameters
        context: Execution context
        database: Database service

    Returns:
        Execution result dict
    """
    start_time = time.time()
    trigger_data = context["state"].get("triggerData") or {}
    phone = trigger_data.get("phone")

    service = await database.get_first_active_service(context["owner_id"])
    if not service or not phone:
        logger.info("[Calendar] Skipping booking", node_id=node_id,
                    has_service=service is not None, has_phone=bool(phone))
        return success_result(node_id, node_type,
                              {"appointmentCreated": False, "appointmentId": None}, start_time)

    appointment = await database.create_appointment(Appointment(
        owner_id=context["owner_id"],
        service_id=service.id,
        client_name=trigger_data.get("name") or DEFAULT_CLIENT_NAME,
        client_email=trigger_data.get("email"),
        client_phone=str(phone),
        appointment_date=parameters.appointment_date or date.today().isoformat(),
        appointment_time=parameters.appointment_time,
        duration_minutes=service.duration_minutes,
        amount_cents=service.price_cents,
        status=DEFAULT_APPOINTMENT_STATUS,
        idempotency_key=context["idempotency_key"],
    ))

    logger.info("[Calendar] Appointment booked", node_id=node_id, appointment_id=appointment.id,
                date=appointment.appointment_date, time=appointment.appointment_time)
    return success_result(node_id, node_type,
                          {"appointmentCreated": True, "appointmentId": appointment.id}, start_time)


async def handle_checkout(
    node_id: str,
    node_type: str,
    parameters: "CheckoutNodeParams",
    context: Dict[str, Any],
    database: "Database",
    settings: "Settings"
) -> Dict[str, Any]:
    """Handle checkout node execution."""
    start_time = time.time()
    service = await database.get_first_active_service(context["owner_id"])
    link = f"{settings.checkout_base_url}/checkout/{service.id}" if service else None
    return success_result(node_id, node_type, {"checkoutLink": link}, start_time)
