from __future__ import annotations

import logging
import sys
import uuid
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

import structlog
from structlog.typing import Processor

from rtprobe.config.settings import LOG_FORMAT_JSON, LoggingSettings

BoundLogger = structlog.stdlib.BoundLogger

_configured_settings: Optional[LoggingSettings] = None


def _build_processors(json_logs: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


def _configure_structlog(settings: LoggingSettings) -> None:
    json_logs = settings.format == LOG_FORMAT_JSON
    structlog.configure(
        processors=_build_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _build_handler(level: int, handler: logging.Handler) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def configure_logging(settings: LoggingSettings) -> None:
    global _configured_settings

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(settings.level)

    console_handler = _build_handler(settings.level, logging.StreamHandler(sys.stderr))
    root_logger.addHandler(console_handler)

    if settings.file_path:
        file_handler = _build_handler(
            settings.level,
            RotatingFileHandler(
                settings.file_path,
                maxBytes=settings.max_bytes,
                backupCount=settings.backup_count,
            ),
        )
        root_logger.addHandler(file_handler)

    _configure_structlog(settings)
    _configured_settings = settings


def get_logger(name: str) -> BoundLogger:
    return structlog.get_logger(name)


def new_run_id() -> str:
    return f"diag-{uuid.uuid4().hex}"


def attach_run_context(
    logger: BoundLogger,
    *,
    run_id: Optional[str] = None,
    **base_fields: Any,
) -> BoundLogger:
    """Bind a diagnostic run id (generated when absent) plus non-empty extras."""
    bound = logger.bind(run_id=run_id or new_run_id())

    extras = {key: value for key, value in base_fields.items() if value is not None}
    if extras:
        bound = bound.bind(**extras)

    return bound


def log_event(
    logger: BoundLogger,
    event: str,
    *,
    level: int = logging.INFO,
    message: Optional[str] = None,
    **fields: Any,
) -> None:
    event_fields = {key: value for key, value in fields.items() if value is not None}
    event_logger = logger.bind(event_name=event)
    if event_fields:
        event_logger = event_logger.bind(**event_fields)
    event_logger.log(level, message or event)


__all__ = [
    "BoundLogger",
    "configure_logging",
    "get_logger",
    "new_run_id",
    "attach_run_context",
    "log_event",
]
