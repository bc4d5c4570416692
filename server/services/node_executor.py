"""Node Executor - Single node execution with handler dispatch.

Uses a registry pattern for clean handler dispatch without if-else chains.
"""

import asyncio
import time
from functools import partial
from typing import Dict, Any, Optional, Callable, TYPE_CHECKING

import httpx
from pydantic import ValidationError

from core.logging import get_logger, log_node_step
from constants import (
    MESSAGE_NODE_TYPE, DELAY_NODE_TYPE, CONDITION_NODE_TYPE, CRM_NODE_TYPE,
    CALENDAR_NODE_TYPE, CHECKOUT_NODE_TYPE, API_NODE_TYPE, WEBHOOK_NODE_TYPE,
    AI_AGENT_NODE_TYPE,
)
from models.nodes import validate_node_params
from services.execution.models import NodeResult
from services.handlers import (
    handle_message, handle_delay, handle_condition, handle_crm,
    handle_calendar, handle_checkout, handle_api_request, handle_webhook,
    handle_ai_agent,
)

if TYPE_CHECKING:
    from core.config import Settings
    from core.database import Database
    from models.database import AutomationExecution
    from models.flow import Flow, FlowNode
    from services.ai import AIService
    from services.messaging import WhatsAppChannel

logger = get_logger(__name__)


class NodeExecutor:
    """Executes individual flow nodes using registry-based dispatch."""

    def __init__(
        self,
        database: "Database",
        channel: "WhatsAppChannel",
        ai_service: "AIService",
        settings: "Settings",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.database = database
        self.channel = channel
        self.ai_service = ai_service
        self.settings = settings
        self._http_transport = http_transport
        self._handlers = self._build_handler_registry()

    def _build_handler_registry(self) -> Dict[str, Callable]:
        """Build handler registry with service dependencies bound via partial."""
        return {
            # Messaging
            MESSAGE_NODE_TYPE: partial(handle_message, channel=self.channel, database=self.database),
            # Flow control
            DELAY_NODE_TYPE: handle_delay,
            CONDITION_NODE_TYPE: handle_condition,
            # CRM / scheduling
            CRM_NODE_TYPE: partial(handle_crm, database=self.database),
            CALENDAR_NODE_TYPE: partial(handle_calendar, database=self.database),
            CHECKOUT_NODE_TYPE: partial(handle_checkout, database=self.database, settings=self.settings),
            # HTTP
            API_NODE_TYPE: partial(handle_api_request, settings=self.settings, transport=self._http_transport),
            WEBHOOK_NODE_TYPE: partial(handle_webhook, settings=self.settings, transport=self._http_transport),
            # AI
            AI_AGENT_NODE_TYPE: partial(handle_ai_agent, ai_service=self.ai_service),
        }

    async def run(
        self,
        node: "FlowNode",
        execution: "AutomationExecution",
        flow: "Flow",
        idempotency_key: str,
    ) -> NodeResult:
        """Execute one node against the execution's current state.

        Never raises for node-level problems: validation errors and handler
        exceptions come back as ``success=False`` results.
        """
        start_time = time.time()
        handler = self._handlers.get(node.type)

        if handler is None:
            logger.debug("No handler for node type, skipping", node_id=node.id, node_type=node.type)
            return NodeResult(success=True, data={}, execution_time=time.time() - start_time)

        context: Dict[str, Any] = {
            "execution_id": execution.id,
            "flow_id": flow.id,
            "owner_id": flow.owner_id,
            "state": dict(execution.execution_state or {}),
            "idempotency_key": idempotency_key,
            "start_time": start_time,
        }

        try:
            params = validate_node_params(node.type, node.data)
            raw = await handler(node.id, node.type, params, context)
            result = NodeResult.from_handler(raw)

        except ValidationError as e:
            logger.warning("Invalid node parameters", node_id=node.id, node_type=node.type,
                           errors=e.errors(include_url=False))
            result = NodeResult(success=False, error=f"Invalid parameters: {e.error_count()} error(s)")

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.error("Node execution error", node_id=node.id, node_type=node.type, error=str(e))
            result = NodeResult(success=False, error=str(e))

        result.execution_time = time.time() - start_time
        log_node_step(logger, node.type, result.success, result.execution_time,
                      node_id=node.id, error=result.error)
        return result
