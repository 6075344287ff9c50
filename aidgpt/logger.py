"""Structured logging setup shared by the command service and the CLI."""

import logging
import sys
from typing import Optional

import structlog


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_logs: Optional[bool] = None,
) -> None:
    """
    Route structlog and stdlib logging to stderr.

    stdout stays free for CLI output such as ``aidgpt run --json``. Every
    event carries ``service=<service_name>``.

    Args:
        service_name: Bound into every event
        log_level: Minimum level name (case-insensitive)
        json_logs: Render JSON lines; defaults to on at DEBUG, console otherwise
    """
    level_name = log_level.upper()
    level = logging.getLevelName(level_name)
    if json_logs is None:
        json_logs = level_name == "DEBUG"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if json_logs
            else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # the CLI and the service may each reconfigure in one process
        cache_logger_on_first_use=False,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    structlog.get_logger(service_name).info("logging_configured", log_level=level_name, json=json_logs)
