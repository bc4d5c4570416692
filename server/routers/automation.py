"""Automation routes: triggers, business events, flows and execution queries."""

from typing import Dict, Any, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from core.container import container
from core.database import Database
from core.exceptions import ExecutionNotFoundError, FlowNotFoundError
from core.logging import get_logger
from models.database import AutomationFlow, AutomationExecution, AutomationExecutionLog
from models.flow import Flow
from services.execution.coordinator import ExecutionCoordinator

logger = get_logger(__name__)
router = APIRouter(prefix="/api/automation", tags=["automation"])


class TriggerRequest(BaseModel):
    owner_id: str = Field(alias="ownerId", min_length=1)
    trigger_type: Literal["keyword", "event", "webhook"] = Field(alias="triggerType")
    trigger_data: Dict[str, Any] = Field(default_factory=dict, alias="triggerData")


class EventRequest(BaseModel):
    owner_id: str = Field(alias="ownerId", min_length=1)
    event_type: str = Field(alias="eventType", min_length=1)
    event_data: Dict[str, Any] = Field(default_factory=dict, alias="eventData")


class FlowUpsertRequest(BaseModel):
    owner_id: str = Field(alias="ownerId", min_length=1)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: bool = Field(default=False, alias="isActive")
    trigger_type: Literal["keyword", "event", "webhook"] = Field(alias="triggerType")
    trigger_config: Dict[str, Any] = Field(default_factory=dict, alias="triggerConfig")
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class HaltRequest(BaseModel):
    reason: str = "Halted by operator"


def serialize_execution(execution: AutomationExecution) -> Dict[str, Any]:
    return execution.model_dump(mode="json")


def serialize_log(entry: AutomationExecutionLog) -> Dict[str, Any]:
    return entry.model_dump(mode="json")


@router.post("/trigger")
async def trigger_automation(
    request: TriggerRequest,
    coordinator: ExecutionCoordinator = Depends(lambda: container.coordinator())
):
    """Start every active flow of the owner whose trigger matches."""
    executions = await coordinator.trigger(request.owner_id, request.trigger_type, request.trigger_data)
    return {
        "success": True,
        "executions": [serialize_execution(e) for e in executions],
    }


@router.post("/events")
async def check_event(
    request: EventRequest,
    coordinator: ExecutionCoordinator = Depends(lambda: container.coordinator())
):
    """Deliver a business event to flows with a matching event trigger."""
    executions = await coordinator.handle_event(request.owner_id, request.event_type, request.event_data)
    return {
        "success": True,
        "executions": [serialize_execution(e) for e in executions],
    }


@router.put("/flows/{flow_id}")
async def save_flow(
    flow_id: str,
    request: FlowUpsertRequest,
    database: Database = Depends(lambda: container.database())
):
    """Create or replace a flow definition after checking its graph."""
    flow = Flow(
        id=flow_id,
        owner_id=request.owner_id,
        name=request.name,
        is_active=request.is_active,
        trigger_type=request.trigger_type,
        trigger_config=request.trigger_config,
        nodes=request.nodes,
        edges=request.edges,
    )
    flow.validate_graph()

    record = await database.save_flow(AutomationFlow(
        id=flow_id,
        owner_id=request.owner_id,
        name=request.name,
        description=request.description,
        is_active=request.is_active,
        trigger_type=request.trigger_type,
        trigger_config=request.trigger_config,
        nodes=request.nodes,
        edges=request.edges,
    ))
    logger.info("Flow saved", flow_id=flow_id, owner_id=request.owner_id, active=request.is_active)
    return {"success": True, "flow": record.model_dump(mode="json")}


@router.get("/flows/{flow_id}/executions")
async def list_flow_executions(
    flow_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    database: Database = Depends(lambda: container.database())
):
    """Most recent executions of a flow."""
    if await database.get_flow(flow_id) is None:
        raise FlowNotFoundError(flow_id)
    executions = await database.list_flow_executions(flow_id, limit=limit)
    return {"success": True, "executions": [serialize_execution(e) for e in executions]}


@router.get("/executions/{execution_id}")
async def get_execution(
    execution_id: str,
    database: Database = Depends(lambda: container.database())
):
    execution = await database.get_execution(execution_id)
    if execution is None:
        raise ExecutionNotFoundError(execution_id)
    return {"success": True, "execution": serialize_execution(execution)}


@router.get("/executions/{execution_id}/logs")
async def get_execution_logs(
    execution_id: str,
    database: Database = Depends(lambda: container.database())
):
    """Execution log entries in step order."""
    if await database.get_execution(execution_id) is None:
        raise ExecutionNotFoundError(execution_id)
    logs = await database.list_execution_logs(execution_id)
    return {"success": True, "logs": [serialize_log(entry) for entry in logs]}


@router.post("/executions/{execution_id}/halt")
async def halt_execution(
    execution_id: str,
    request: Optional[HaltRequest] = None,
    coordinator: ExecutionCoordinator = Depends(lambda: container.coordinator())
):
    """Stop a running execution."""
    reason = request.reason if request else HaltRequest().reason
    execution = await coordinator.halt(execution_id, reason)
    return {"success": True, "execution": serialize_execution(execution)}
