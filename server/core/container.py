"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from services.ai import AIService
from services.messaging import WhatsAppChannel
from services.node_executor import NodeExecutor
from services.execution.dispatch import create_dispatcher
from services.execution.triggers import TriggerMatcher
from services.execution.coordinator import ExecutionCoordinator
from services.execution.recovery import ExecutionWatchdog


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Collaborators
    whatsapp_channel = providers.Singleton(
        WhatsAppChannel,
        database=database,
        settings=settings
    )

    ai_service = providers.Singleton(
        AIService,
        database=database,
        settings=settings
    )

    # Execution engine
    node_executor = providers.Singleton(
        NodeExecutor,
        database=database,
        channel=whatsapp_channel,
        ai_service=ai_service,
        settings=settings
    )

    dispatcher = providers.Singleton(
        create_dispatcher,
        settings=settings
    )

    trigger_matcher = providers.Factory(
        TriggerMatcher,
        database=database
    )

    coordinator = providers.Singleton(
        ExecutionCoordinator,
        database=database,
        node_executor=node_executor,
        dispatcher=dispatcher,
        settings=settings,
        matcher=trigger_matcher
    )

    watchdog = providers.Singleton(
        ExecutionWatchdog,
        database=database,
        coordinator=coordinator,
        stall_timeout=settings.provided.watchdog_stall_timeout,
        sweep_interval=settings.provided.watchdog_interval,
        batch_size=settings.provided.watchdog_batch_size
    )


# Global container instance
container = Container()
