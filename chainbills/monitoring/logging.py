"""
Structured logging for the gateway.

structlog renders each event as one JSON line on the root logger's stream.
Events carry the request's correlation id (bound by the API middleware),
the service name and environment, and never a VTpass credential.
"""
import logging
import sys
from typing import Any, Callable, Dict, Iterable, List, Optional, TextIO

import structlog
from pythonjsonlogger import jsonlogger

from chainbills.config import Settings, get_settings

EventDict = Dict[str, Any]
Processor = Callable[[Any, str, EventDict], EventDict]

REDACTED = "[redacted]"

# Event keys whose values are VTpass credentials
SECRET_KEYS = frozenset(
    {"api-key", "api_key", "secret-key", "secret_key", "public-key", "public_key"}
)

# Third-party loggers and the level they are held at
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential values, including inside a logged ``headers`` mapping."""
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in SECRET_KEYS else value
            for name, value in headers.items()
        }
    return event_dict


def service_context(settings: Settings) -> Processor:
    """Processor stamping every event with the service name and environment."""
    context = {"app_name": settings.app_name, "app_env": settings.app_env}

    def _add(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return _add


def build_processors(settings: Settings) -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        service_context(settings),
        redact_secrets,
        structlog.processors.JSONRenderer(),
    ]


def _json_handler(stream: TextIO) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def _quiet(levels: Iterable[tuple[str, int]], echo_sql: bool) -> None:
    for name, level in levels:
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if echo_sql else logging.WARNING)


def setup_logging(settings: Optional[Settings] = None, stream: Optional[TextIO] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Called once by the API at import and by the maintenance CLI before it
    runs. Replaces any handlers already on the root logger.

    Args:
        settings: Source of log level, service name and environment
        stream: Where JSON lines are written (stdout by default)
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.addHandler(_json_handler(stream or sys.stdout))

    _quiet(QUIET_LOGGERS.items(), settings.database_echo)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
