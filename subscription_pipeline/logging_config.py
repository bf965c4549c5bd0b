"""Structured logging for the pipeline (structlog over stdlib logging).

Every event carries the app name, logger name, level and an ISO timestamp.
Context bound with bind_context() or pipeline_context() (request id,
platform, notification id, DLQ entry id) is merged into each event.

Notification payloads can be large and are shortened before rendering.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.typing import EventDict, Processor

APP_NAME = "subscription-pipeline"

# Event fields holding notification bodies
PAYLOAD_FIELDS = ("raw_payload", "decoded_payload", "replay_payload")
MAX_PAYLOAD_CHARS = 512


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def truncate_payloads(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten payload fields to MAX_PAYLOAD_CHARS."""
    for field in PAYLOAD_FIELDS:
        value = event_dict.get(field)
        if value is None:
            continue
        text = value if isinstance(value, str) else str(value)
        if len(text) > MAX_PAYLOAD_CHARS:
            event_dict[field] = f"{text[:MAX_PAYLOAD_CHARS]}...(+{len(text) - MAX_PAYLOAD_CHARS} chars)"
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines when True, coloured console output otherwise
        include_timestamp: Add an ISO8601 timestamp to every event
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    logging.getLogger().setLevel(numeric_level)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        truncate_payloads,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context for the rest of the current request or thread.

    Example:
        bind_context(request_id="abc123", platform="apple")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def pipeline_context(**kwargs: Any) -> Iterator[None]:
    """Bind context for the duration of a block, restoring the previous values after.

    None values are skipped.

    Example:
        with pipeline_context(dlq_entry_id=entry.id):
            processor.replay(notification)
    """
    values = {key: value for key, value in kwargs.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**values):
        yield
