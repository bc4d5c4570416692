"""WhatsApp messaging channel over the Evolution API."""

from typing import Optional

import httpx

from core.config import Settings
from core.logging import get_logger, log_api_call

logger = get_logger(__name__)


class WhatsAppChannel:
    """Sends text messages through the owner's Evolution API instance.

    ``transport`` is only set in tests to route requests to a mock.
    """

    def __init__(self, database, settings: Settings,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.database = database
        self.settings = settings
        self._transport = transport

    async def send_text(self, owner_id: str, number: str, text: str) -> bool:
        """Send ``text`` to ``number``.

        Returns False when the owner has no usable Evolution configuration.
        HTTP and network errors propagate to the caller.
        """
        config = await self.database.get_whatsapp_settings(owner_id)
        if not config or not config.evolution_api_url or not config.evolution_instance_name:
            logger.warning("WhatsApp not configured", owner_id=owner_id)
            return False

        url = f"{config.evolution_api_url.rstrip('/')}/message/sendText/{config.evolution_instance_name}"
        headers = {"Content-Type": "application/json", "apikey": config.evolution_api_key or ""}

        async with httpx.AsyncClient(timeout=self.settings.http_timeout,
                                     transport=self._transport) as client:
            response = await client.post(url, headers=headers, json={"number": number, "text": text})
            response.raise_for_status()

        log_api_call(logger, "evolution", "sendText", True, owner_id=owner_id)
        return True
