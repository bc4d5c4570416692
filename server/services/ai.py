"""AI completion service backed by LangChain chat models."""

import time
from typing import Optional

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage

from constants import DEFAULT_AI_MODEL
from core.config import Settings
from core.logging import get_logger, log_api_call

logger = get_logger(__name__)


class AIService:
    """Answers a single message with the owner's configured OpenAI model."""

    def __init__(self, database, settings: Settings):
        self.database = database
        self.settings = settings

    def create_model(self, api_key: str, model: str) -> ChatOpenAI:
        """Create LangChain chat model instance."""
        return ChatOpenAI(
            api_key=api_key,
            model=model,
            base_url=self.settings.openai_base_url,
            timeout=self.settings.ai_timeout,
            max_retries=1,
        )

    async def complete(self, owner_id: str, system_prompt: str, message: str) -> Optional[str]:
        """Return the model's reply, or None when the owner has no API key.

        Provider errors propagate so the node can report them.
        """
        config = await self.database.get_ai_config(owner_id)
        if not config or not config.openai_api_key:
            logger.info("No AI provider configured", owner_id=owner_id)
            return None

        model = config.openai_preferred_model or DEFAULT_AI_MODEL
        chat_model = self.create_model(config.openai_api_key, model)

        start_time = time.time()
        try:
            response = await chat_model.ainvoke([
                SystemMessage(content=system_prompt),
                HumanMessage(content=message or ""),
            ])
        except Exception as e:
            log_api_call(logger, "openai", "chat", False, model=model, error=str(e))
            raise

        log_api_call(logger, "openai", "chat", True, model=model,
                     execution_time_seconds=round(time.time() - start_time, 4))
        content = response.content
        return content if isinstance(content, str) else str(content)
