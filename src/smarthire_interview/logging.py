"""Structured logging for the interview service.

Every event carries the service name and version so that lines from the HTTP
handlers and the scheduler thread can be told apart from the host
application's own logs. ``SMARTHIRE_LOG_FORMAT=console`` switches to the
human-readable renderer for local runs.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, List

import structlog

SERVICE_NAME = "smarthire-interview"
SERVICE_VERSION = "0.1.0"
LOG_FORMATS = ("json", "console")


def resolve_level(level: str) -> int:
    value = getattr(logging, str(level or "").strip().upper(), None)
    return value if isinstance(value, int) else logging.INFO


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # Request and scheduler threads start with an empty contextvars context.
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", SERVICE_VERSION)
    return event_dict


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    log_level = resolve_level(level)
    logging.basicConfig(level=log_level, format="%(message)s", stream=sys.stdout, force=True)

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_service_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
    ]
    if str(fmt or "").strip().lower() == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.extend([structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=True,
    )