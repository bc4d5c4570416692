"""Tests for the execution watchdog."""

import time

import pytest
from sqlalchemy import update

from models.database import AutomationExecution
from services.execution.recovery import ExecutionWatchdog, get_watchdog, set_watchdog

from conftest import OWNER_ID, chain, node, save_flow, trigger_node

NODES = [
    trigger_node(),
    node("msg", "message", message="Olá"),
    node("wait", "delay", delayMinutes=5),
    node("end", "message", message="Fim"),
]
EDGES = chain("trigger-1", "msg", "wait", "end")


async def _age(database, execution_id: str, seconds: float, **values) -> None:
    """Pretend the execution last progressed ``seconds`` ago."""
    async with database.get_session() as session:
        await session.execute(
            update(AutomationExecution)
            .where(AutomationExecution.id == execution_id)
            .values(last_progress_at=time.time() - seconds, **values)
        )
        await session.commit()


@pytest.fixture
def watchdog(database, coordinator) -> ExecutionWatchdog:
    return ExecutionWatchdog(database, coordinator, stall_timeout=300, sweep_interval=1, batch_size=10)


async def _start(coordinator, database, dispatcher):
    await save_flow(database, NODES, EDGES)
    [execution] = await coordinator.trigger(OWNER_ID, "keyword", {"message": "oi", "phone": "5511"})
    dispatcher.dispatched.clear()
    return execution


class TestSweep:
    """Tests for re-driving stalled executions."""

    async def test_redrives_stalled_execution(self, watchdog, coordinator, database, dispatcher) -> None:
        execution = await _start(coordinator, database, dispatcher)
        await _age(database, execution.id, 600)

        assert await watchdog.sweep_once() == [execution.id]
        assert [(m.execution_id, m.node_id, m.step) for m in dispatcher.dispatched] == [
            (execution.id, "msg", 0)
        ]

        touched = await database.get_execution(execution.id)
        assert touched.last_progress_at > time.time() - 60

        # the re-dispatched step runs normally
        outcome = await dispatcher.deliver_next()
        assert outcome.applied is True

    async def test_redrive_after_lost_step_is_idempotent(
        self, watchdog, coordinator, database, dispatcher, channel
    ) -> None:
        execution = await _start(coordinator, database, dispatcher)
        await coordinator.advance(execution.id, "msg", 0)
        dispatcher.dispatched.clear()

        # the continuation to "wait" was lost; the watchdog re-sends it twice
        await _age(database, execution.id, 600)
        await watchdog.sweep_once()
        await _age(database, execution.id, 600)
        await watchdog.sweep_once()

        first = await dispatcher.deliver_next()
        second = await dispatcher.deliver_next()
        assert first.applied is True
        assert second.applied is False
        assert len(channel.sent) == 1

    async def test_leaves_fresh_executions_alone(self, watchdog, coordinator, database, dispatcher) -> None:
        await _start(coordinator, database, dispatcher)
        assert await watchdog.sweep_once() == []
        assert dispatcher.dispatched == []

    async def test_leaves_leased_executions_alone(self, watchdog, coordinator, database, dispatcher) -> None:
        execution = await _start(coordinator, database, dispatcher)
        await _age(database, execution.id, 600, lease_expires_at=time.time() + 60)
        assert await watchdog.sweep_once() == []

    async def test_expired_lease_is_redriven(self, watchdog, coordinator, database, dispatcher) -> None:
        execution = await _start(coordinator, database, dispatcher)
        await _age(database, execution.id, 600, lease_expires_at=time.time() - 1)
        assert await watchdog.sweep_once() == [execution.id]

    async def test_leaves_sleeping_executions_alone(self, watchdog, coordinator, database, dispatcher) -> None:
        execution = await _start(coordinator, database, dispatcher)
        await _age(database, execution.id, 600, wake_at=time.time() + 300)
        assert await watchdog.sweep_once() == []

    async def test_overdue_wake_is_redriven(self, watchdog, coordinator, database, dispatcher) -> None:
        execution = await _start(coordinator, database, dispatcher)
        await _age(database, execution.id, 600, wake_at=time.time() - 5)
        assert await watchdog.sweep_once() == [execution.id]

    async def test_ignores_finished_executions(self, watchdog, coordinator, database, dispatcher) -> None:
        execution = await _start(coordinator, database, dispatcher)
        await coordinator.halt(execution.id)
        await _age(database, execution.id, 600)
        assert await watchdog.sweep_once() == []

    async def test_batch_size(self, database, coordinator, dispatcher) -> None:
        watchdog = ExecutionWatchdog(database, coordinator, stall_timeout=300, batch_size=2)
        await save_flow(database, NODES, EDGES)
        for _ in range(3):
            [execution] = await coordinator.trigger(OWNER_ID, "keyword", {"message": "oi"})
            await _age(database, execution.id, 600)

        assert len(await watchdog.sweep_once()) == 2


class TestStartupScan:
    """Tests for re-arming delayed steps after a restart."""

    async def test_rearms_sleeping_executions(self, watchdog, coordinator, database, dispatcher) -> None:
        execution = await _start(coordinator, database, dispatcher)
        wake_at = time.time() + 120
        await _age(database, execution.id, 0, wake_at=wake_at)

        assert await watchdog.scan_on_startup() == [execution.id]
        [(message, run_at)] = dispatcher.scheduled
        assert (message.execution_id, message.node_id, message.step) == (execution.id, "msg", 0)
        assert run_at == wake_at

    async def test_nothing_to_rearm(self, watchdog, coordinator, database, dispatcher) -> None:
        await _start(coordinator, database, dispatcher)
        assert await watchdog.scan_on_startup() == []
        assert dispatcher.scheduled == []


class TestLifecycle:
    """Tests for the background task."""

    async def test_start_and_stop(self, watchdog) -> None:
        await watchdog.start()
        assert watchdog.running is True

        await watchdog.stop()
        assert watchdog.running is False

    async def test_global_instance(self, watchdog) -> None:
        set_watchdog(watchdog)
        try:
            assert get_watchdog() is watchdog
        finally:
            set_watchdog(None)
        assert get_watchdog() is None
