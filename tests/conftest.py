"""Shared fixtures: temporary SQLite database, fake collaborators, flow builders."""

import os
import tempfile
import time
from typing import Any, Dict, List, Optional, Tuple

# Settings are read from the environment at import time by main.py
os.environ.setdefault("INTERNAL_API_TOKEN", "test-internal-token-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{tempfile.gettempdir()}/automation-engine-tests.db")
os.environ.setdefault("WATCHDOG_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from sqlalchemy import update

from core.config import Settings
from core.database import Database
from models.database import AutomationExecution, AutomationFlow, CrmLead, Service
from services.execution.coordinator import ExecutionCoordinator
from services.execution.models import StepMessage
from services.node_executor import NodeExecutor

INTERNAL_TOKEN = os.environ["INTERNAL_API_TOKEN"]
OWNER_ID = "owner-1"


class FakeChannel:
    """Messaging channel that records sends instead of calling Evolution."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, str, str]] = []

    async def send_text(self, owner_id: str, number: str, text: str) -> bool:
        if self.fail:
            raise RuntimeError("channel down")
        self.sent.append((owner_id, number, text))
        return True


class FakeAIService:
    """AI provider returning a canned reply or raising a canned error."""

    def __init__(self, reply: Optional[str] = "Olá! Como posso ajudar?", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[Tuple[str, str, str]] = []

    async def complete(self, owner_id: str, system_prompt: str, message: str) -> Optional[str]:
        self.calls.append((owner_id, system_prompt, message))
        if self.error:
            raise self.error
        return self.reply


class RecordingDispatcher:
    """Dispatcher that queues messages so tests drive steps one at a time."""

    def __init__(self):
        self._handler = None
        self.dispatched: List[StepMessage] = []
        self.scheduled: List[Tuple[StepMessage, float]] = []

    def bind(self, handler) -> None:
        self._handler = handler

    async def dispatch(self, message: StepMessage) -> None:
        self.dispatched.append(message)

    async def schedule(self, message: StepMessage, run_at: float) -> None:
        self.scheduled.append((message, run_at))

    async def deliver_next(self):
        """Run the oldest queued immediate message."""
        message = self.dispatched.pop(0)
        return await self._handler(message)

    async def deliver_scheduled(self, database: Database):
        """Run the oldest scheduled message as if its wake-up time had come."""
        message, _ = self.scheduled.pop(0)
        await expire_wake(database, message.execution_id)
        return await self._handler(message)

    async def run_until_idle(self, database: Database, max_steps: int = 50) -> int:
        steps = 0
        while (self.dispatched or self.scheduled) and steps < max_steps:
            if self.dispatched:
                await self.deliver_next()
            else:
                await self.deliver_scheduled(database)
            steps += 1
        return steps


async def expire_wake(database: Database, execution_id: str) -> None:
    """Move an execution's wake-up time into the past."""
    async with database.get_session() as session:
        await session.execute(
            update(AutomationExecution)
            .where(AutomationExecution.id == execution_id)
            .values(wake_at=time.time() - 1)
        )
        await session.commit()


def trigger_node(node_id: str = "trigger-1") -> Dict[str, Any]:
    return {"id": node_id, "type": "trigger", "data": {}}


def node(node_id: str, node_type: str, **data) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "data": data, "position": {"x": 0, "y": 0}}


def edge(source: str, target: str, selector: Optional[str] = None) -> Dict[str, Any]:
    payload = {"id": f"{source}->{target}", "source": source, "target": target}
    if selector is not None:
        payload["sourceHandle"] = selector
    return payload


def chain(*node_ids: str) -> List[Dict[str, Any]]:
    return [edge(a, b) for a, b in zip(node_ids, node_ids[1:])]


async def save_flow(
    database: Database,
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    trigger_type: str = "keyword",
    trigger_config: Optional[Dict[str, Any]] = None,
    owner_id: str = OWNER_ID,
    is_active: bool = True,
    name: str = "Test flow",
) -> AutomationFlow:
    if trigger_config is None:
        trigger_config = {"keywords": ["oi"]} if trigger_type == "keyword" else {}
    return await database.save_flow(AutomationFlow(
        owner_id=owner_id,
        name=name,
        nodes=nodes,
        edges=edges,
        is_active=is_active,
        trigger_type=trigger_type,
        trigger_config=trigger_config,
    ))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/engine.db",
        internal_api_token=INTERNAL_TOKEN,
        checkout_base_url="https://shop.example.com",
        dispatch_initial_delay=0.0,
        watchdog_enabled=False,
        log_format="console",
    )


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings)
    await db.startup()
    yield db
    await db.shutdown()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def ai_service() -> FakeAIService:
    return FakeAIService()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def http_transport():
    """Default outbound transport: every request fails to connect."""
    import httpx

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


@pytest.fixture
def node_executor(database, channel, ai_service, settings, http_transport) -> NodeExecutor:
    return NodeExecutor(database, channel, ai_service, settings, http_transport=http_transport)


@pytest.fixture
def coordinator(database, node_executor, dispatcher, settings) -> ExecutionCoordinator:
    return ExecutionCoordinator(database, node_executor, dispatcher, settings)


@pytest_asyncio.fixture
async def lead(database) -> CrmLead:
    return await database.save_lead(CrmLead(
        owner_id=OWNER_ID,
        phone="5511999998888",
        name="Maria",
        stage_id="new",
        tags=["lead"],
        notes="Primeiro contato",
    ))


@pytest_asyncio.fixture
async def service(database) -> Service:
    return await database.save_service(Service(
        owner_id=OWNER_ID,
        name="Sessão de terapia",
        duration_minutes=50,
        price_cents=15000,
        is_active=True,
    ))
