"""Structured logging configuration using structlog.

Modules log through the standard library (``logging.getLogger(__name__)``);
this module routes those records through structlog so they come out as
console lines in debug mode and as JSON otherwise. Request ids bound by the
error-handling middleware are merged into every record, and every record is
stamped with the service name so scheduler logs can be told apart from the
crawl workers' own output.
"""

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from crawlgate.config import Settings

SERVICE_NAME = "crawlgate"

# Libraries that log every request or query at INFO
NOISY_LOGGERS = ("aiosqlite", "asyncio", "httpcore", "httpx", "uvicorn.access")


def _add_service(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(settings: "Settings") -> None:
    """Configure structured logging for the application.

    Args:
        settings: Application settings with debug and log_level configuration.
    """
    # Debug runs get readable console lines; everything else emits JSON
    is_dev = settings.debug

    # Processors shared by structlog loggers and stdlib records
    context_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    processors: list[structlog.types.Processor] = [
        *context_processors,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if is_dev:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route standard library logging (queue manager, services) the same way
    log_level = getattr(logging, settings.log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Replace handlers left by uvicorn or an earlier configure call
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if is_dev:
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    else:
        # stdlib records get the same shape as structlog events
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=context_processors,
        )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Keep per-request chatter out of the scheduler logs
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured structlog logger.
    """
    return structlog.get_logger(name)
