"""Logging setup.

The engine only ever calls ``structlog.get_logger()``; applications
embedding it call ``configure_logging`` once at startup.
"""

import logging
import sys

import structlog

from checkoutflow.infrastructure.config import settings


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure stdlib logging and structlog.

    Args:
        level: Log level name, ``settings.log_level`` by default.
        json_logs: Render JSON lines instead of console output,
            ``settings.json_logs`` by default.
    """
    level = (level or settings.log_level).upper()
    json_logs = settings.json_logs if json_logs is None else json_logs

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(message)s",
        stream=sys.stderr,
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
