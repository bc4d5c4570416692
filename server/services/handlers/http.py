"""HTTP node handlers - API request and outbound Webhook."""

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

import httpx

from core.logging import get_logger
from services.handlers.results import success_result, error_result

if TYPE_CHECKING:
    from core.config import Settings
    from models.nodes import ApiNodeParams, WebhookNodeParams

logger = get_logger(__name__)


async def handle_api_request(
    node_id: str,
    node_type: str,
    parameters: "ApiNodeParams",
    context: Dict[str, Any],
    settings: "Settings",
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, Any]:
    """Handle API node execution.

    Makes one HTTP request and stores the parsed JSON response as
    ``apiResponse``. Network and parse errors fail the step.

    Args:
        node_id: The node ID
        node_type: The node type (api)
        parameters: Validated API parameters
        context: Execution context
        settings: Settings for the request timeout
        transport: Optional httpx transport override

    Returns:
        Execution result dict with response data
    """
    start_time = time.time()

    try:
        if not parameters.url:
            raise ValueError("URL is required")

        headers = {"Content-Type": "application/json", **parameters.headers}
        kwargs: Dict[str, Any] = {
            "method": parameters.method,
            "url": parameters.url,
            "headers": headers,
        }

        body = parameters.body
        if body:
            if isinstance(body, str):
                try:
                    kwargs["json"] = json.loads(body)
                except json.JSONDecodeError:
                    kwargs["content"] = body
            else:
                kwargs["json"] = body

        logger.info("[API Request] Executing", node_id=node_id, method=parameters.method, url=parameters.url)

        async with httpx.AsyncClient(timeout=settings.http_timeout, transport=transport) as client:
            response = await client.request(**kwargs)
            response_data = response.json()

        return success_result(node_id, node_type, {"apiResponse": response_data}, start_time)

    except Exception as e:
        logger.error("API request failed", node_id=node_id, url=parameters.url, error=str(e))
        return error_result(node_id, node_type, f"API error: {e}", start_time)


async def handle_webhook(
    node_id: str,
    node_type: str,
    parameters: "WebhookNodeParams",
    context: Dict[str, Any],
    settings: "Settings",
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, Any]:
    """Handle webhook node execution.

    Best-effort POST of the execution state. Errors are logged and the
    step still succeeds with ``webhookSent=False``.
    """
    start_time = time.time()
    sent = False

    if parameters.url:
        payload = {
            "execution_id": context["execution_id"],
            "flow_id": context["flow_id"],
            "node_id": node_id,
            "state": context["state"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            async with httpx.AsyncClient(timeout=settings.http_timeout, transport=transport) as client:
                response = await client.post(parameters.url, json=payload)
            sent = response.status_code < 400
            logger.info("[Webhook] Delivered", node_id=node_id, status=response.status_code)
        except Exception as e:
            logger.warning("[Webhook] Delivery failed", node_id=node_id, url=parameters.url, error=str(e))
    else:
        logger.info("[Webhook] No URL configured", node_id=node_id)

    return success_result(node_id, node_type, {"webhookSent": sent}, start_time)
