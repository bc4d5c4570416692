"""Internal engine-to-engine routes (bearer token protected)."""

from fastapi import APIRouter, BackgroundTasks, Depends, status

from core.container import container
from core.database import Database
from core.exceptions import ExecutionNotFoundError
from core.logging import get_logger
from services.execution.coordinator import ExecutionCoordinator
from services.execution.models import StepMessage

logger = get_logger(__name__)
router = APIRouter(prefix="/internal/automation", tags=["internal"])


async def run_step(coordinator: ExecutionCoordinator, message: StepMessage) -> None:
    """Background step runner; failures are logged for the watchdog to pick up."""
    try:
        outcome = await coordinator.advance(message.execution_id, message.node_id, message.step)
        logger.debug("Advance finished", execution_id=message.execution_id,
                     applied=outcome.applied, reason=outcome.reason)
    except Exception as e:
        logger.error("Advance failed", execution_id=message.execution_id,
                     node_id=message.node_id, step=message.step, error=str(e))


@router.post("/advance", status_code=status.HTTP_202_ACCEPTED)
async def advance_execution(
    message: StepMessage,
    background_tasks: BackgroundTasks,
    database: Database = Depends(lambda: container.database()),
    coordinator: ExecutionCoordinator = Depends(lambda: container.coordinator())
):
    """Accept a continuation and run the step after responding."""
    if await database.get_execution(message.execution_id) is None:
        raise ExecutionNotFoundError(message.execution_id)

    background_tasks.add_task(run_step, coordinator, message)
    return {"accepted": True, "executionId": message.execution_id, "nodeId": message.node_id}
