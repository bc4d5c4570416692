"""Structured logging configuration."""

import sys
import structlog
import logging
from pathlib import Path
from core.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structured logging based on settings."""
    level = getattr(logging, settings.log_level.upper())

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)

        logging.basicConfig(
            level=level,
            handlers=[console_handler, file_handler],
            format="%(message)s"
        )
    else:
        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=level
        )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))
        processors.insert(0, structlog.stdlib.add_logger_name)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.insert(0, structlog.processors.TimeStamper(fmt="%H:%M:%S"))
        processors.append(structlog.dev.ConsoleRenderer(
            colors=False,
            pad_event=35,
            exception_formatter=structlog.dev.plain_traceback
        ))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_step_context(execution_id: str, node_id: str, step: int) -> None:
    """Attach the current step to every log line emitted while it runs.

    Each advance() call is its own asyncio task, so contextvars keep
    concurrent executions from leaking ids into each other's logs.
    """
    structlog.contextvars.bind_contextvars(
        execution_id=execution_id,
        node_id=node_id,
        step=step,
    )


def clear_step_context() -> None:
    structlog.contextvars.unbind_contextvars("execution_id", "node_id", "step")


def log_node_step(logger: structlog.BoundLogger, node_type: str, success: bool,
                  duration: float, **kwargs) -> None:
    """Log a finished node step with standardized fields."""
    log = logger.info if success else logger.warning
    log(
        "Node step finished",
        node_type=node_type,
        success=success,
        execution_time_seconds=round(duration, 4),
        **kwargs
    )


def log_api_call(logger: structlog.BoundLogger, provider: str, operation: str,
                 success: bool, **kwargs) -> None:
    """Log outbound collaborator calls with standardized format."""
    logger.info(
        "API call completed",
        provider=provider,
        operation=operation,
        success=success,
        **kwargs
    )
