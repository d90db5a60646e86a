import logging
import sys
from typing import Any, Optional, TextIO

import structlog
from structlog.types import Processor

from keyward.core.config import Settings, get_settings
from keyward.infrastructure.logging_processors import (
    ServiceContext,
    format_exception_info,
    sanitize_sensitive_data,
    set_log_severity,
)


def setup_logging(
    settings: Optional[Settings] = None,
    stream: Optional[TextIO] = None,
) -> None:
    settings = settings or get_settings()
    stream = stream or sys.stdout
    timestamper = structlog.processors.TimeStamper(fmt="iso")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        ServiceContext(settings.app_name, settings.environment),
        structlog.processors.add_log_level,
        set_log_severity,
        format_exception_info,
        timestamper,
        # Sanitize sensitive data (should be last before rendering)
        sanitize_sensitive_data,
    ]

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.log_level))

    # SQL echo stays off unless explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.log_level == "DEBUG" else logging.WARNING
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
