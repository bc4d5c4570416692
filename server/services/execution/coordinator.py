"""Execution Coordinator.

Owns the lifecycle of an execution: creating it when a trigger matches,
running exactly one node per ``advance`` call, and handing the next step
to the dispatcher. The execution row carries everything between calls,
so any process can run any step.

Step protocol:
    1. ``advance`` is a no-op unless the execution is running with its
       cursor at ``(node_id, step)``.
    2. The step is claimed with a lease so a concurrent duplicate backs off.
    3. The node runs with idempotency key ``"{execution_id}:{step}"``.
    4. Log entry, state merge and cursor move commit in one transaction
       guarded by the claimed step.
    5. The next step is dispatched, or scheduled for a delay node.
"""

import time
from typing import Dict, Any, List, Optional, TYPE_CHECKING

from core.exceptions import (
    DispatchError, ExecutionNotFoundError, FlowDefinitionError, NodeNotFoundError,
    AutomationError,
)
from core.logging import get_logger, bind_step_context, clear_step_context
from models.database import AutomationExecution, AutomationExecutionLog, utc_now
from models.flow import Flow, FlowNode
from services import scheduler
from services.execution.conditions import select_next_edge
from services.execution.dispatch import wakeup_job_id
from services.execution.models import (
    AdvanceOutcome, ExecutionStatus, FailurePolicy, LogStatus, NodeResult, StepMessage,
)
from services.execution.triggers import TriggerMatcher, business_event_trigger

if TYPE_CHECKING:
    from core.config import Settings
    from core.database import Database
    from services.execution.dispatch import StepDispatcher
    from services.node_executor import NodeExecutor

logger = get_logger(__name__)

# Scheduler jobs may fire slightly before the stored wake time
WAKE_TOLERANCE_SECONDS = 1.0


class ExecutionCoordinator:
    """Creates executions and drives them one step at a time."""

    def __init__(
        self,
        database: "Database",
        node_executor: "NodeExecutor",
        dispatcher: "StepDispatcher",
        settings: "Settings",
        matcher: Optional[TriggerMatcher] = None,
    ):
        self.database = database
        self.node_executor = node_executor
        self.dispatcher = dispatcher
        self.settings = settings
        self.matcher = matcher or TriggerMatcher(database)
        self.dispatcher.bind(self.handle_step)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def trigger(self, owner_id: str, trigger_type: str,
                      payload: Dict[str, Any]) -> List[AutomationExecution]:
        """Start one execution per matching flow.

        A flow that fails to start is logged and skipped.
        """
        flows = await self.matcher.match(owner_id, trigger_type, payload)
        executions: List[AutomationExecution] = []

        for flow in flows:
            try:
                executions.append(await self.start(flow, payload))
            except AutomationError as e:
                logger.warning("Flow failed to start", flow_id=flow.id, error=str(e))
            except Exception as e:
                logger.error("Unexpected error starting flow", flow_id=flow.id, error=str(e))

        logger.info("Trigger processed", owner_id=owner_id, trigger_type=trigger_type,
                    matched=len(flows), started=len(executions))
        return executions

    async def handle_event(self, owner_id: str, event_type: str,
                           event_data: Dict[str, Any]) -> List[AutomationExecution]:
        """Deliver a business event to ``event`` triggers.

        Events the engine does not react to are acknowledged with no executions.
        """
        trigger_type = business_event_trigger(event_type)
        if not trigger_type:
            logger.info("Ignoring unmapped event", owner_id=owner_id, event_type=event_type)
            return []

        payload = {**(event_data or {}), "eventType": event_type}
        return await self.trigger(owner_id, trigger_type, payload)

    async def start(self, flow: Flow, payload: Dict[str, Any]) -> AutomationExecution:
        """Persist a new execution of ``flow`` and dispatch its first step.

        Raises:
            FlowDefinitionError: if the flow has no trigger node.
        """
        trigger_node = flow.trigger_node()
        if trigger_node is None:
            raise FlowDefinitionError(f"Flow {flow.id} has no trigger node")

        edges = flow.outgoing_edges(trigger_node.id)
        first_edge = select_next_edge(edges, {}) or (edges[0] if edges else None)
        now = utc_now()

        execution = AutomationExecution(
            flow_id=flow.id,
            owner_id=flow.owner_id,
            status=ExecutionStatus.RUNNING.value if first_edge else ExecutionStatus.COMPLETED.value,
            trigger_data=payload,
            execution_state={"triggerData": payload},
            step_outputs={},
            current_node_id=first_edge.target if first_edge else None,
            step=0,
            started_at=now,
            completed_at=None if first_edge else now,
        )
        execution = await self.database.create_execution(execution)

        logger.info("Execution started", execution_id=execution.id, flow_id=flow.id,
                    first_node=execution.current_node_id, status=execution.status)

        if first_edge:
            await self._dispatch(StepMessage(execution_id=execution.id, node_id=first_edge.target, step=0))
        return execution

    async def handle_step(self, message: StepMessage) -> AdvanceOutcome:
        """Dispatcher callback."""
        return await self.advance(message.execution_id, message.node_id, message.step)

    # =========================================================================
    # Step execution
    # =========================================================================

    async def advance(self, execution_id: str, node_id: str,
                      step: Optional[int] = None) -> AdvanceOutcome:
        """Run one node of an execution.

        Duplicate, stale or early calls are ignored and reported with
        ``applied=False``.

        Raises:
            ExecutionNotFoundError: if the execution does not exist.
            NodeNotFoundError: if ``node_id`` is not in the execution's flow; the
                execution is halted as failed first.
        """
        execution = await self.database.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        skip = self._skip_reason(execution, node_id, step)
        if skip:
            logger.debug("Ignoring advance", execution_id=execution_id, node_id=node_id,
                         step=step, reason=skip)
            return AdvanceOutcome(applied=False, reason=skip, status=execution.status,
                                  next_node_id=execution.current_node_id, step=execution.step)

        record = await self.database.get_flow(execution.flow_id)
        if record is None:
            await self.database.halt_execution(execution_id, f"Flow {execution.flow_id} no longer exists")
            logger.error("Flow missing for execution", execution_id=execution_id, flow_id=execution.flow_id)
            return AdvanceOutcome(applied=False, reason="flow_missing", status=ExecutionStatus.FAILED.value)

        flow = Flow.from_record(record)
        node = flow.get_node(node_id)
        if node is None:
            await self.database.halt_execution(execution_id, f"Node {node_id} not found in flow {flow.id}")
            logger.error("Node missing for execution", execution_id=execution_id, flow_id=flow.id, node_id=node_id)
            raise NodeNotFoundError(flow.id, node_id)

        claimed_step = execution.step
        claimed = await self.database.claim_step(execution_id, node_id, claimed_step,
                                                 self.settings.step_lease_seconds)
        if not claimed:
            logger.info("Step already claimed", execution_id=execution_id, node_id=node_id, step=claimed_step)
            return AdvanceOutcome(applied=False, reason="claimed", status=execution.status,
                                  next_node_id=node_id, step=claimed_step)

        bind_step_context(execution_id, node_id, claimed_step)
        try:
            result = await self.node_executor.run(node, execution, flow, f"{execution_id}:{claimed_step}")
            return await self._commit(execution, flow, node, claimed_step, result)
        finally:
            clear_step_context()

    def _skip_reason(self, execution: AutomationExecution, node_id: str,
                     step: Optional[int]) -> str:
        if execution.status != ExecutionStatus.RUNNING.value:
            return "not_running"
        if execution.current_node_id != node_id:
            return "cursor_moved"
        if step is not None and step != execution.step:
            return "stale_step"
        if execution.wake_at and execution.wake_at - time.time() > WAKE_TOLERANCE_SECONDS:
            return "sleeping"
        return ""

    def _failure_policy(self, node: FlowNode) -> FailurePolicy:
        value = (node.data or {}).get("onFailure")
        try:
            return FailurePolicy(value)
        except ValueError:
            return FailurePolicy(self.settings.default_failure_policy)

    async def _commit(self, execution: AutomationExecution, flow: Flow, node: FlowNode,
                      claimed_step: int, result: NodeResult) -> AdvanceOutcome:
        state_before = dict(execution.execution_state or {})
        data = result.data if result.success else {}
        error_message = None
        wake_at = None

        next_edge = select_next_edge(flow.outgoing_edges(node.id), data)

        if not result.success and self._failure_policy(node) == FailurePolicy.HALT:
            status = ExecutionStatus.FAILED.value
            next_node_id = None
            error_message = f"Node {node.id} ({node.type}) failed: {result.error}"
        elif next_edge is not None:
            status = ExecutionStatus.RUNNING.value
            next_node_id = next_edge.target
            if result.defer_seconds:
                wake_at = time.time() + result.defer_seconds
        else:
            status = ExecutionStatus.COMPLETED.value
            next_node_id = None

        log_entry = AutomationExecutionLog(
            execution_id=execution.id,
            step=claimed_step,
            node_id=node.id,
            node_type=node.type,
            input_data=state_before,
            output_data=data,
            status=LogStatus.SUCCESS.value if result.success else LogStatus.FAILED.value,
            error_message=result.error,
        )

        committed = await self.database.commit_step(
            execution.id,
            claimed_step,
            log_entry,
            execution_state={**state_before, **data},
            step_outputs={**(execution.step_outputs or {}), node.id: data},
            next_node_id=next_node_id,
            status=status,
            error_message=error_message,
            wake_at=wake_at,
        )
        if not committed:
            logger.warning("Step commit lost, execution moved on", execution_id=execution.id, step=claimed_step)
            return AdvanceOutcome(applied=False, reason="commit_conflict", step=claimed_step)

        logger.info("Step committed", node_type=node.type, success=result.success,
                    status=status, next_node_id=next_node_id, wake_at=wake_at)

        if status == ExecutionStatus.RUNNING.value:
            message = StepMessage(execution_id=execution.id, node_id=next_node_id, step=claimed_step + 1)
            if wake_at is not None:
                await self._schedule(message, wake_at)
            else:
                await self._dispatch(message)

        return AdvanceOutcome(applied=True, reason="applied", status=status,
                              next_node_id=next_node_id, step=claimed_step)

    # =========================================================================
    # Control
    # =========================================================================

    async def halt(self, execution_id: str, reason: str = "Halted") -> AutomationExecution:
        """Stop a running execution, marking it failed.

        Halting a finished execution leaves it unchanged.
        """
        execution = await self.database.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        if await self.database.halt_execution(execution_id, reason):
            logger.info("Execution halted", execution_id=execution_id, reason=reason)
            if execution.wake_at:
                scheduler.remove_job(wakeup_job_id(
                    StepMessage(execution_id=execution_id, node_id=execution.current_node_id or "",
                                step=execution.step)
                ))
            execution = await self.database.get_execution(execution_id)
        return execution

    async def resume(self, execution: AutomationExecution) -> None:
        """Re-dispatch the current step of a running execution."""
        if execution.status != ExecutionStatus.RUNNING.value or not execution.current_node_id:
            return
        await self.database.touch_execution(execution.id)
        await self._dispatch(StepMessage(execution_id=execution.id, node_id=execution.current_node_id,
                                         step=execution.step))

    async def rearm(self, execution: AutomationExecution) -> None:
        """Re-register the wake-up of a sleeping execution."""
        if execution.wake_at and execution.current_node_id:
            await self._schedule(
                StepMessage(execution_id=execution.id, node_id=execution.current_node_id, step=execution.step),
                execution.wake_at,
            )

    async def _dispatch(self, message: StepMessage) -> None:
        try:
            await self.dispatcher.dispatch(message)
        except DispatchError as e:
            logger.error("Dispatch failed, watchdog will retry", execution_id=message.execution_id,
                         node_id=message.node_id, error=str(e))

    async def _schedule(self, message: StepMessage, run_at: float) -> None:
        try:
            await self.dispatcher.schedule(message, run_at)
        except Exception as e:
            logger.error("Scheduling failed, watchdog will retry", execution_id=message.execution_id,
                         node_id=message.node_id, error=str(e))
