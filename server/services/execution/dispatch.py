"""Continuation dispatch.

A dispatcher hands "run this step" messages to a fresh invocation of the
coordinator, either now or at a later time. Two transports exist:

- LocalDispatcher: detached asyncio task in this process
- HttpDispatcher: authenticated POST to the internal advance endpoint,
  so any worker behind the load balancer can pick the step up

Delayed messages go through the APScheduler-backed scheduler service and
fire back into ``dispatch``.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol, Set

import httpx

from core.config import Settings
from core.exceptions import DispatchError
from core.logging import get_logger
from services import scheduler
from services.execution.models import StepMessage, RetryPolicy

logger = get_logger(__name__)

StepHandler = Callable[[StepMessage], Awaitable[object]]


class StepDispatcher(Protocol):
    """Transport for continuation messages."""

    def bind(self, handler: StepHandler) -> None: ...

    async def dispatch(self, message: StepMessage) -> None: ...

    async def schedule(self, message: StepMessage, run_at: float) -> None: ...


def wakeup_job_id(message: StepMessage) -> str:
    return f"wake:{message.execution_id}:{message.step}"


class BaseDispatcher:
    """Shared scheduling of delayed messages."""

    def __init__(self):
        self._handler: Optional[StepHandler] = None

    def bind(self, handler: StepHandler) -> None:
        self._handler = handler

    async def dispatch(self, message: StepMessage) -> None:
        raise NotImplementedError

    async def schedule(self, message: StepMessage, run_at: float) -> None:
        """Fire ``dispatch(message)`` at epoch time ``run_at``."""
        scheduler.register_wakeup_job(wakeup_job_id(message), run_at, self._fire, message=message)
        logger.info("Step scheduled", execution_id=message.execution_id,
                    node_id=message.node_id, step=message.step, run_at=run_at)

    async def _fire(self, message: StepMessage) -> None:
        try:
            await self.dispatch(message)
        except DispatchError as e:
            logger.error("Scheduled dispatch failed, watchdog will retry",
                         execution_id=message.execution_id, error=str(e))


class LocalDispatcher(BaseDispatcher):
    """Runs each step as a detached task on the current event loop."""

    def __init__(self):
        super().__init__()
        self._tasks: Set[asyncio.Task] = set()

    async def dispatch(self, message: StepMessage) -> None:
        if self._handler is None:
            raise DispatchError(message.execution_id, message.node_id, "no step handler bound")

        task = asyncio.create_task(self._run(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, message: StepMessage) -> None:
        try:
            await self._handler(message)
        except Exception as e:
            logger.error("Detached step failed", execution_id=message.execution_id,
                         node_id=message.node_id, step=message.step, error=str(e))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no step tasks remain, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class HttpDispatcher(BaseDispatcher):
    """Posts each step to ``/internal/automation/advance`` with retry."""

    ADVANCE_PATH = "/internal/automation/advance"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self.settings = settings
        self._transport = transport
        self.retry_policy = RetryPolicy(
            max_attempts=settings.dispatch_max_attempts,
            initial_delay=settings.dispatch_initial_delay,
            max_delay=settings.dispatch_max_delay,
        )

    async def dispatch(self, message: StepMessage) -> None:
        """Deliver ``message``; raises DispatchError once retries run out."""
        url = f"{self.settings.engine_base_url}{self.ADVANCE_PATH}"
        headers = {"Authorization": f"Bearer {self.settings.internal_api_token}"}
        body = message.model_dump(by_alias=True)
        attempt = 0

        while True:
            try:
                async with httpx.AsyncClient(timeout=self.settings.dispatch_timeout,
                                             transport=self._transport) as client:
                    response = await client.post(url, json=body, headers=headers)
                    response.raise_for_status()
                logger.debug("Step dispatched", execution_id=message.execution_id,
                             node_id=message.node_id, step=message.step, attempts=attempt + 1)
                return

            except httpx.HTTPError as e:
                attempt += 1
                error = f"{type(e).__name__}: {e}"
                if not self.retry_policy.should_retry(error, attempt):
                    raise DispatchError(message.execution_id, message.node_id, error) from e

                delay = self.retry_policy.calculate_delay(attempt - 1)
                logger.warning("Dispatch failed, retrying", execution_id=message.execution_id,
                               attempt=attempt, delay=delay, error=error)
                await asyncio.sleep(delay)


def create_dispatcher(settings: Settings) -> BaseDispatcher:
    """Dispatcher for the configured ``DISPATCH_MODE``."""
    if settings.dispatch_mode == "http":
        return HttpDispatcher(settings)
    return LocalDispatcher()
