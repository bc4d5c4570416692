"""Trigger matching.

Selects the active flows of an owner whose trigger accepts an inbound
event. Matching is pure: it reads flows and never writes.
"""

from typing import Dict, Any, List, TYPE_CHECKING

from pydantic import ValidationError

from core.exceptions import TriggerConfigError
from core.logging import get_logger
from constants import (
    KEYWORD_TRIGGER, EVENT_TRIGGER, WEBHOOK_TRIGGER, BUSINESS_EVENT_TRIGGERS,
)
from models.flow import Flow

if TYPE_CHECKING:
    from core.database import Database

logger = get_logger(__name__)


def matches_trigger(flow: Flow, trigger_type: str, payload: Dict[str, Any]) -> bool:
    """Check whether ``flow``'s trigger accepts an event.

    Raises:
        TriggerConfigError: if the flow's keyword configuration is malformed.
    """
    if flow.trigger_type != trigger_type:
        return False

    config = flow.trigger_config or {}

    if trigger_type == KEYWORD_TRIGGER:
        keywords = config.get("keywords") or []
        if not isinstance(keywords, list):
            raise TriggerConfigError(flow.id, "keywords must be a list")
        message = str(payload.get("message") or "").lower()
        for keyword in keywords:
            if not isinstance(keyword, str):
                raise TriggerConfigError(flow.id, f"keyword {keyword!r} is not a string")
            if keyword and keyword.lower() in message:
                return True
        return False

    if trigger_type == EVENT_TRIGGER:
        event = config.get("event")
        return bool(event) and event == payload.get("eventType")

    if trigger_type == WEBHOOK_TRIGGER:
        return True

    return False


class TriggerMatcher:
    """Loads candidate flows and applies trigger rules in flow order."""

    def __init__(self, database: "Database"):
        self.database = database

    async def match(self, owner_id: str, trigger_type: str, payload: Dict[str, Any]) -> List[Flow]:
        """Active flows of ``owner_id`` whose trigger matches ``payload``.

        A flow with a malformed trigger is logged and skipped; it never
        prevents other flows from matching.
        """
        records = await self.database.list_active_flows(owner_id, trigger_type)
        matched: List[Flow] = []

        for record in records:
            try:
                flow = Flow.from_record(record)
                if matches_trigger(flow, trigger_type, payload):
                    matched.append(flow)
            except TriggerConfigError as e:
                logger.warning("Skipping flow with invalid trigger", flow_id=record.id, error=str(e))
            except ValidationError as e:
                logger.warning("Skipping malformed flow", flow_id=record.id, errors=e.error_count())

        logger.debug("Trigger matched", owner_id=owner_id, trigger_type=trigger_type,
                     candidates=len(records), matched=[f.id for f in matched])
        return matched


def business_event_trigger(event_type: str) -> str:
    """Trigger type a business event is delivered as, or '' when unmapped."""
    return BUSINESS_EVENT_TRIGGERS.get(event_type, "")
