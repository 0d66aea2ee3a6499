"""
Structured logging configuration.

Uses structlog for JSON-formatted logs. Every purchase and settlement log
line carries the ids and amounts involved, so a disputed order can be traced
without parsing free text.
"""
import logging
import sys
from typing import Any, Callable, Optional

import structlog
from pythonjsonlogger import jsonlogger

from commerce_core.config import Settings, get_settings


def app_context_processor(settings: Settings) -> Callable[[Any, str, dict[str, Any]], dict[str, Any]]:
    """
    Build a processor that adds application context to log events.

    Args:
        settings: Settings whose app name and environment are stamped on every event

    Returns:
        Callable: structlog processor
    """

    def add_app_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict["app_name"] = settings.app_name
        event_dict["app_env"] = settings.app_env
        return event_dict

    return add_app_context


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structured logging.

    Sets up:
    - JSON-formatted logs (console rendering when log_json is off)
    - Context variables merged into every event (correlation ids)
    - Structured log fields
    """
    settings = settings or get_settings()

    renderer: Any
    if settings.log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            app_context_processor(settings),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json:
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(timestamp)s %(level)s %(name)s %(message)s",
                rename_fields={
                    "timestamp": "@timestamp",
                    "level": "level",
                    "name": "logger",
                    "message": "message",
                },
            )
        )
    root_logger.addHandler(handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
