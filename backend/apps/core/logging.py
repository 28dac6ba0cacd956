"""
Structured logging configuration using structlog.

Every provisioning state transition is emitted as a snake_case event name with
keyword fields, so the same stream serves humans (console renderer), log
platforms (JSON renderer) and tests (``structlog.testing.capture_logs``).

Usage:
    from apps.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("organization_resolved", organization_id=org.id, created=True)

Field naming follows Datadog standard attributes:
    - trace_id: Correlation ID of one provisioning run
    - usr.email: Email of the identity being provisioned
    - organization.id: Tenant identifier
    - duration: Step duration in nanoseconds

See: https://docs.datadoghq.com/logs/log_configuration/attributes_naming_convention/
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor


def _add_datadog_trace_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Rename saga_id/correlation_id to trace_id for Datadog APM compatibility.
    """
    for key in ("correlation_id", "saga_id"):
        if key in event_dict and "trace_id" not in event_dict:
            event_dict["trace_id"] = str(event_dict.pop(key))
    return event_dict


def _convert_duration_to_nanoseconds(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Convert duration_ms to duration (nanoseconds) for Datadog compatibility.
    """
    if "duration_ms" in event_dict:
        duration_ms = event_dict.pop("duration_ms")
        event_dict["duration"] = int(duration_ms * 1_000_000)  # ms to ns
    return event_dict


def _stringify_identifiers(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Render *_id fields as strings so numeric and opaque ids index the same way.
    """
    for key, value in event_dict.items():
        if key.endswith("_id") and value is not None and not isinstance(value, str):
            event_dict[key] = str(value)
    return event_dict


def configure_logging(json_format: bool = True, log_level: str = "INFO") -> None:
    """
    Configure structlog for the application.

    Uses stdlib integration so Django, Stripe and Stytch log records flow
    through the same renderer.

    Args:
        json_format: If True, output JSON (production). If False, pretty console output.
        log_level: Minimum log level to output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _add_datadog_trace_fields,
        _convert_duration_to_nanoseconds,
        _stringify_identifiers,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.
    """
    return structlog.get_logger(name)


def bind_contextvars(**kwargs: Any) -> None:
    """
    Bind key-value pairs to the current context.

    Values are included in every subsequent event of the current run.

    Usage:
        bind_contextvars(trace_id=saga_id, **{"usr.email": email})
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    """
    Clear all bound context variables.

    Call this when a provisioning run ends so context does not leak into
    the next request handled by the same worker.
    """
    structlog.contextvars.clear_contextvars()
