"""Structured logging for the subscription service.

Every event carries the service name and whatever billing context is bound for
the current request (request_id, user_id, the processor reference and the
webhook event type). Paystack authorization codes are reusable card tokens, so
they are masked wherever they appear in an event before it is rendered.
"""

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

import structlog
from structlog.typing import EventDict, Processor

SERVICE_NAME = "todo-subscriptions"

AUTHORIZATION_CODE_PREFIX = "AUTH_"

# Console output shows these first so one request's lines line up
BILLING_CONTEXT_KEYS = ("request_id", "user_id", "reference", "webhook_event")


def add_service_name(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def mask_authorization_code(value: str) -> str:
    """AUTH_abc123xyz -> AUTH_***3xyz"""
    tail = value[len(AUTHORIZATION_CODE_PREFIX):][-4:]
    return f"{AUTHORIZATION_CODE_PREFIX}***{tail}"


def mask_authorization_codes(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask top-level string values that are Paystack authorization codes."""
    for key, value in event_dict.items():
        if isinstance(value, str) and value.startswith(AUTHORIZATION_CODE_PREFIX):
            event_dict[key] = mask_authorization_code(value)
    return event_dict


def order_billing_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Move bound billing context to the front of the event, after the event name."""
    ordered: EventDict = {"event": event_dict.pop("event", "")}
    for key in BILLING_CONTEXT_KEYS:
        if key in event_dict:
            ordered[key] = event_dict.pop(key)
    ordered.update(event_dict)
    return ordered


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON; if False, use colored console output
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    logging.getLogger().setLevel(numeric_level)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        add_service_name,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        mask_authorization_codes,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(order_billing_context)
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                sort_keys=False,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_env(environ: Optional[Mapping[str, str]] = None) -> None:
    """Configure logging from LOG_LEVEL and LOG_FORMAT (json or console)."""
    environ = os.environ if environ is None else environ
    configure_logging(
        log_level=environ.get("LOG_LEVEL", "INFO"),
        json_format=environ.get("LOG_FORMAT", "json").lower() == "json",
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind billing context for the rest of the current request."""
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """Bind context for the duration of a block, restoring the previous values after.

    Example:
        with bound_context(webhook_event="charge.success", reference="ref_1"):
            reconciler.apply_event(event)
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
