"""SQLModel database models and tables."""

import time
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import UniqueConstraint, func


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# AUTOMATION
# =============================================================================

class AutomationFlow(SQLModel, table=True):
    """Tenant-owned automation definition (trigger + node graph)."""

    __tablename__ = "automation_flows"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=255)
    owner_id: str = Field(index=True, max_length=255)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    nodes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    edges: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    is_active: bool = Field(default=False, index=True)
    trigger_type: Optional[str] = Field(default=None, max_length=50, index=True)
    trigger_config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class AutomationExecution(SQLModel, table=True):
    """One run of one flow against one trigger occurrence.

    The row is the only carrier of state between steps: ``step`` and
    ``current_node_id`` form the cursor every dispatch is checked against.
    Lease/wake/progress times are epoch seconds.
    """

    __tablename__ = "automation_executions"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=255)
    flow_id: str = Field(foreign_key="automation_flows.id", index=True, max_length=255)
    owner_id: str = Field(index=True, max_length=255)
    status: str = Field(default="running", max_length=50, index=True)
    trigger_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    execution_state: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    step_outputs: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    current_node_id: Optional[str] = Field(default=None, max_length=255)
    step: int = Field(default=0)
    lease_expires_at: Optional[float] = Field(default=None)
    wake_at: Optional[float] = Field(default=None)
    last_progress_at: float = Field(default_factory=time.time)
    error_message: Optional[str] = Field(default=None, max_length=2000)
    started_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True))
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True))
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class AutomationExecutionLog(SQLModel, table=True):
    """Append-only record of one node step."""

    __tablename__ = "automation_execution_logs"
    __table_args__ = (
        UniqueConstraint("execution_id", "step", name="uq_execution_log_step"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    execution_id: str = Field(foreign_key="automation_executions.id", index=True, max_length=255)
    step: int
    node_id: str = Field(max_length=255)
    node_type: str = Field(max_length=50)
    input_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    output_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(max_length=20)
    error_message: Optional[str] = Field(default=None, max_length=2000)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class AutomationSideEffect(SQLModel, table=True):
    """Ledger of external side effects already performed for a step."""

    __tablename__ = "automation_side_effects"

    key: str = Field(primary_key=True, max_length=255)
    kind: str = Field(max_length=50)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


# =============================================================================
# COLLABORATOR RECORDS
# =============================================================================

class CrmLead(SQLModel, table=True):
    """CRM lead captured from the messaging channel."""

    __tablename__ = "crm_leads"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=255)
    owner_id: str = Field(index=True, max_length=255)
    phone: str = Field(index=True, max_length=50)
    name: Optional[str] = Field(default=None, max_length=255)
    stage_id: Optional[str] = Field(default=None, max_length=255)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    notes: Optional[str] = Field(default=None, max_length=10000)
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class Service(SQLModel, table=True):
    """Bookable service offering of an owner."""

    __tablename__ = "services"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=255)
    owner_id: str = Field(index=True, max_length=255)
    name: str = Field(max_length=255)
    duration_minutes: int = Field(default=50)
    price_cents: int = Field(default=0)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class Appointment(SQLModel, table=True):
    """Appointment booked for a client."""

    __tablename__ = "appointments"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=255)
    owner_id: str = Field(index=True, max_length=255)
    service_id: Optional[str] = Field(default=None, max_length=255)
    client_name: str = Field(max_length=255)
    client_email: Optional[str] = Field(default=None, max_length=255)
    client_phone: Optional[str] = Field(default=None, max_length=50)
    appointment_date: str = Field(max_length=10)
    appointment_time: str = Field(max_length=5)
    duration_minutes: int = Field(default=50)
    amount_cents: int = Field(default=0)
    status: str = Field(default="pending", max_length=20)
    idempotency_key: Optional[str] = Field(default=None, unique=True, max_length=255)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )


class WhatsAppSettings(SQLModel, table=True):
    """Per-owner Evolution API connection used by message nodes."""

    __tablename__ = "whatsapp_settings"

    owner_id: str = Field(primary_key=True, max_length=255)
    evolution_api_url: Optional[str] = Field(default=None, max_length=500)
    evolution_api_key: Optional[str] = Field(default=None, max_length=500)
    evolution_instance_name: Optional[str] = Field(default=None, max_length=255)


class AIAgentConfig(SQLModel, table=True):
    """Per-owner AI provider credentials used by ai_agent nodes."""

    __tablename__ = "ai_agent_configs"

    owner_id: str = Field(primary_key=True, max_length=255)
    openai_api_key: Optional[str] = Field(default=None, max_length=500)
    openai_preferred_model: Optional[str] = Field(default=None, max_length=100)
