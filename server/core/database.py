"""Async database service with SQLModel and SQLAlchemy 2.0."""

import logging
import time
from typing import Dict, Any, List, Optional
from contextlib import asynccontextmanager

from sqlmodel import SQLModel, select, col
from sqlalchemy import update, or_
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.exc import IntegrityError

from core.config import Settings
from core.logging import get_logger
from models.database import (
    AutomationFlow, AutomationExecution, AutomationExecutionLog, AutomationSideEffect,
    CrmLead, Service, Appointment, WhatsAppSettings, AIAgentConfig, utc_now,
)

logger = get_logger(__name__)


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            # Disable verbose database logging
            logging.getLogger("aiosqlite").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

            engine_kwargs: Dict[str, Any] = {"echo": self.settings.database_echo, "future": True}
            if not self.settings.is_sqlite:
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully", url=self.settings.database_url.split("@")[-1])

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # ============================================================================
    # Flows
    # ============================================================================

    async def save_flow(self, flow: AutomationFlow) -> AutomationFlow:
        """Insert or replace a flow definition by id."""
        async with self.get_session() as session:
            existing = await session.get(AutomationFlow, flow.id)
            if existing:
                existing.owner_id = flow.owner_id
                existing.name = flow.name
                existing.description = flow.description
                existing.nodes = list(flow.nodes or [])
                existing.edges = list(flow.edges or [])
                existing.is_active = flow.is_active
                existing.trigger_type = flow.trigger_type
                existing.trigger_config = dict(flow.trigger_config or {})
                existing.updated_at = utc_now()
                flow = existing
            else:
                session.add(flow)
            await session.commit()
            await session.refresh(flow)
            return flow

    async def get_flow(self, flow_id: str) -> Optional[AutomationFlow]:
        async with self.get_session() as session:
            return await session.get(AutomationFlow, flow_id)

    async def list_active_flows(self, owner_id: str, trigger_type: str) -> List[AutomationFlow]:
        """Active flows of an owner with the given trigger type, oldest first."""
        async with self.get_session() as session:
            stmt = (
                select(AutomationFlow)
                .where(
                    AutomationFlow.owner_id == owner_id,
                    AutomationFlow.trigger_type == trigger_type,
                    AutomationFlow.is_active == True,  # noqa: E712
                )
                .order_by(col(AutomationFlow.created_at))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ============================================================================
    # Executions
    # ============================================================================

    async def create_execution(self, execution: AutomationExecution) -> AutomationExecution:
        async with self.get_session() as session:
            session.add(execution)
            await session.commit()
            await session.refresh(execution)
            return execution

    async def get_execution(self, execution_id: str) -> Optional[AutomationExecution]:
        async with self.get_session() as session:
            return await session.get(AutomationExecution, execution_id)

    async def list_flow_executions(self, flow_id: str, limit: int = 50) -> List[AutomationExecution]:
        """Most recent executions of a flow, newest first."""
        async with self.get_session() as session:
            stmt = (
                select(AutomationExecution)
                .where(AutomationExecution.flow_id == flow_id)
                .order_by(col(AutomationExecution.created_at).desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def claim_step(self, execution_id: str, node_id: str, step: int, lease_seconds: float) -> bool:
        """Take the lease on ``step`` of a running execution.

        Returns False when another invocation holds an unexpired lease or
        the cursor has already moved past ``(node_id, step)``.
        """
        now = time.time()
        async with self.get_session() as session:
            stmt = (
                update(AutomationExecution)
                .where(
                    col(AutomationExecution.id) == execution_id,
                    col(AutomationExecution.status) == "running",
                    col(AutomationExecution.current_node_id) == node_id,
                    col(AutomationExecution.step) == step,
                    or_(
                        col(AutomationExecution.lease_expires_at).is_(None),
                        col(AutomationExecution.lease_expires_at) < now,
                    ),
                )
                .values(lease_expires_at=now + lease_seconds)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def commit_step(
        self,
        execution_id: str,
        claimed_step: int,
        log_entry: AutomationExecutionLog,
        execution_state: Dict[str, Any],
        step_outputs: Dict[str, Any],
        next_node_id: Optional[str],
        status: str,
        error_message: Optional[str] = None,
        wake_at: Optional[float] = None,
    ) -> bool:
        """Apply one finished step in a single transaction.

        Appends the log entry and moves the cursor only if the execution is
        still at ``claimed_step``. Returns False (nothing written) otherwise.
        """
        values: Dict[str, Any] = {
            "execution_state": execution_state,
            "step_outputs": step_outputs,
            "current_node_id": next_node_id,
            "step": claimed_step + 1,
            "status": status,
            "lease_expires_at": None,
            "wake_at": wake_at,
            "last_progress_at": time.time(),
            "updated_at": utc_now(),
        }
        if status != "running":
            values["completed_at"] = utc_now()
        if error_message is not None:
            values["error_message"] = error_message[:2000]

        async with self.get_session() as session:
            try:
                stmt = (
                    update(AutomationExecution)
                    .where(
                        col(AutomationExecution.id) == execution_id,
                        col(AutomationExecution.status) == "running",
                        col(AutomationExecution.step) == claimed_step,
                    )
                    .values(**values)
                )
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    await session.rollback()
                    return False

                session.add(log_entry)
                await session.commit()
                return True

            except IntegrityError:
                await session.rollback()
                logger.warning("Step already logged", execution_id=execution_id, step=claimed_step)
                return False

    async def halt_execution(self, execution_id: str, reason: str) -> bool:
        """Mark a running execution failed and clear its cursor."""
        async with self.get_session() as session:
            stmt = (
                update(AutomationExecution)
                .where(
                    col(AutomationExecution.id) == execution_id,
                    col(AutomationExecution.status) == "running",
                )
                .values(
                    status="failed",
                    error_message=reason[:2000],
                    current_node_id=None,
                    lease_expires_at=None,
                    wake_at=None,
                    completed_at=utc_now(),
                    updated_at=utc_now(),
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def touch_execution(self, execution_id: str) -> None:
        """Reset the progress clock of an execution."""
        async with self.get_session() as session:
            stmt = (
                update(AutomationExecution)
                .where(col(AutomationExecution.id) == execution_id)
                .values(last_progress_at=time.time())
            )
            await session.execute(stmt)
            await session.commit()

    async def list_stalled_executions(self, stall_timeout: float, limit: int = 100) -> List[AutomationExecution]:
        """Running executions with no progress, no live lease and no pending wake-up."""
        now = time.time()
        async with self.get_session() as session:
            stmt = (
                select(AutomationExecution)
                .where(
                    col(AutomationExecution.status) == "running",
                    col(AutomationExecution.current_node_id).is_not(None),
                    col(AutomationExecution.last_progress_at) < now - stall_timeout,
                    or_(
                        col(AutomationExecution.lease_expires_at).is_(None),
                        col(AutomationExecution.lease_expires_at) < now,
                    ),
                    or_(
                        col(AutomationExecution.wake_at).is_(None),
                        col(AutomationExecution.wake_at) <= now,
                    ),
                )
                .order_by(col(AutomationExecution.last_progress_at))
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_sleeping_executions(self) -> List[AutomationExecution]:
        """Running executions suspended on a future wake-up time."""
        now = time.time()
        async with self.get_session() as session:
            stmt = select(AutomationExecution).where(
                col(AutomationExecution.status) == "running",
                col(AutomationExecution.current_node_id).is_not(None),
                col(AutomationExecution.wake_at) > now,
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ============================================================================
    # Execution Logs
    # ============================================================================

    async def list_execution_logs(self, execution_id: str) -> List[AutomationExecutionLog]:
        async with self.get_session() as session:
            stmt = (
                select(AutomationExecutionLog)
                .where(AutomationExecutionLog.execution_id == execution_id)
                .order_by(col(AutomationExecutionLog.step))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ============================================================================
    # Side Effect Ledger
    # ============================================================================

    async def has_side_effect(self, key: str) -> bool:
        async with self.get_session() as session:
            return await session.get(AutomationSideEffect, key) is not None

    async def record_side_effect(self, key: str, kind: str) -> bool:
        """Record a performed side effect. False if it was already recorded."""
        try:
            async with self.get_session() as session:
                session.add(AutomationSideEffect(key=key, kind=kind))
                await session.commit()
                return True
        except IntegrityError:
            return False

    # ============================================================================
    # CRM
    # ============================================================================

    async def find_lead_by_phone(self, owner_id: str, phone: str) -> Optional[CrmLead]:
        try:
            async with self.get_session() as session:
                stmt = select(CrmLead).where(CrmLead.owner_id == owner_id, CrmLead.phone == phone)
                result = await session.execute(stmt)
                return result.scalars().first()

        except Exception as e:
            logger.error("Failed to find lead", owner_id=owner_id, error=str(e))
            return None

    async def update_lead(self, lead_id: str, stage_id: Optional[str] = None,
                          tags: Optional[List[str]] = None, notes: Optional[str] = None) -> bool:
        """Apply a partial update to a lead. Fields left as None are untouched."""
        try:
            async with self.get_session() as session:
                lead = await session.get(CrmLead, lead_id)
                if not lead:
                    return False
                if stage_id is not None:
                    lead.stage_id = stage_id
                if tags is not None:
                    lead.tags = list(tags)
                if notes is not None:
                    lead.notes = notes
                lead.updated_at = utc_now()
                await session.commit()
                return True

        except Exception as e:
            logger.error("Failed to update lead", lead_id=lead_id, error=str(e))
            return False

    async def save_lead(self, lead: CrmLead) -> CrmLead:
        async with self.get_session() as session:
            session.add(lead)
            await session.commit()
            await session.refresh(lead)
            return lead

    # ============================================================================
    # Scheduling
    # ============================================================================

    async def get_first_active_service(self, owner_id: str) -> Optional[Service]:
        try:
            async with self.get_session() as session:
                stmt = (
                    select(Service)
                    .where(Service.owner_id == owner_id, Service.is_active == True)  # noqa: E712
                    .order_by(col(Service.created_at))
                )
                result = await session.execute(stmt)
                return result.scalars().first()

        except Exception as e:
            logger.error("Failed to get active service", owner_id=owner_id, error=str(e))
            return None

    async def save_service(self, service: Service) -> Service:
        async with self.get_session() as session:
            session.add(service)
            await session.commit()
            await session.refresh(service)
            return service

    async def get_appointment_by_key(self, idempotency_key: str) -> Optional[Appointment]:
        async with self.get_session() as session:
            stmt = select(Appointment).where(Appointment.idempotency_key == idempotency_key)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def create_appointment(self, appointment: Appointment) -> Appointment:
        """Insert an appointment, returning the existing one for a repeated idempotency key."""
        if appointment.idempotency_key:
            existing = await self.get_appointment_by_key(appointment.idempotency_key)
            if existing:
                return existing
        try:
            async with self.get_session() as session:
                session.add(appointment)
                await session.commit()
                await session.refresh(appointment)
                return appointment
        except IntegrityError:
            existing = await self.get_appointment_by_key(appointment.idempotency_key)
            if existing is None:
                raise
            return existing

    async def list_appointments(self, owner_id: str) -> List[Appointment]:
        async with self.get_session() as session:
            stmt = select(Appointment).where(Appointment.owner_id == owner_id)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ============================================================================
    # Owner Settings
    # ============================================================================

    async def get_whatsapp_settings(self, owner_id: str) -> Optional[WhatsAppSettings]:
        try:
            async with self.get_session() as session:
                return await session.get(WhatsAppSettings, owner_id)

        except Exception as e:
            logger.error("Failed to get WhatsApp settings", owner_id=owner_id, error=str(e))
            return None

    async def get_ai_config(self, owner_id: str) -> Optional[AIAgentConfig]:
        try:
            async with self.get_session() as session:
                return await session.get(AIAgentConfig, owner_id)

        except Exception as e:
            logger.error("Failed to get AI config", owner_id=owner_id, error=str(e))
            return None

    async def save_owner_settings(self, record) -> None:
        """Insert or replace a per-owner settings row."""
        async with self.get_session() as session:
            await session.merge(record)
            await session.commit()
