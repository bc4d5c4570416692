"""Execution watchdog for crash recovery.

Runs as background task to:
- Detect stalled executions (running, no progress, lease expired)
- Re-dispatch their current step
- Re-arm delayed steps after a restart
"""

import asyncio
from typing import List, Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.database import Database
    from services.execution.coordinator import ExecutionCoordinator

logger = get_logger(__name__)


class ExecutionWatchdog:
    """Background task that re-drives stalled executions.

    A lost continuation (crashed worker, failed dispatch) leaves an execution
    ``running`` with its cursor set and nobody working on it. Every sweep
    re-dispatches such executions; the step counter makes a re-dispatch of
    a step that is in fact still alive a no-op.
    """

    def __init__(self, database: "Database", coordinator: "ExecutionCoordinator",
                 stall_timeout: int = 300,   # 5 minutes
                 sweep_interval: int = 60,   # 1 minute
                 batch_size: int = 100):
        """Initialize watchdog.

        Args:
            database: Database for execution queries
            coordinator: Coordinator used to re-dispatch steps
            stall_timeout: Seconds without progress before an execution is stalled
            sweep_interval: Seconds between sweep runs
            batch_size: Max executions re-driven per sweep
        """
        self.database = database
        self.coordinator = coordinator
        self.stall_timeout = stall_timeout
        self.sweep_interval = sweep_interval
        self.batch_size = batch_size
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the watchdog background task."""
        if self._running:
            logger.warning("Watchdog already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Watchdog started",
                    stall_timeout=self.stall_timeout,
                    sweep_interval=self.sweep_interval)

    async def stop(self) -> None:
        """Stop the watchdog."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Watchdog stopped")

    async def _sweep_loop(self) -> None:
        """Main sweep loop - runs continuously."""
        while self._running:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("Sweep iteration failed", error=str(e))

            await asyncio.sleep(self.sweep_interval)

    async def sweep_once(self) -> List[str]:
        """Single sweep iteration.

        Returns:
            IDs of the executions that were re-dispatched
        """
        stalled = await self.database.list_stalled_executions(self.stall_timeout, limit=self.batch_size)
        if not stalled:
            return []

        logger.info("Re-driving stalled executions", count=len(stalled))
        redriven: List[str] = []

        for execution in stalled:
            try:
                await self.coordinator.resume(execution)
                redriven.append(execution.id)
                logger.info("Execution re-dispatched", execution_id=execution.id,
                            node_id=execution.current_node_id, step=execution.step)
            except Exception as e:
                logger.error("Failed to re-drive execution",
                             execution_id=execution.id, error=str(e))

        return redriven

    async def scan_on_startup(self) -> List[str]:
        """Re-arm delayed steps lost with the previous process's scheduler.

        Returns:
            IDs of the executions whose wake-up was re-registered
        """
        sleeping = await self.database.list_sleeping_executions()
        rearmed: List[str] = []

        for execution in sleeping:
            try:
                await self.coordinator.rearm(execution)
                rearmed.append(execution.id)
            except Exception as e:
                logger.error("Failed to re-arm execution", execution_id=execution.id, error=str(e))

        logger.info("Startup scan for sleeping executions", rearmed=len(rearmed))
        return rearmed


# Global watchdog instance (initialized by main.py)
_watchdog: Optional[ExecutionWatchdog] = None


def get_watchdog() -> Optional[ExecutionWatchdog]:
    """Get global watchdog instance."""
    return _watchdog


def set_watchdog(watchdog: Optional[ExecutionWatchdog]) -> None:
    """Set global watchdog instance."""
    global _watchdog
    _watchdog = watchdog
