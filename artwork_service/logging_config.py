"""
Structured logging configuration for the Song Artwork service.

Every log record is rendered as one JSON object on **stdout** carrying
``timestamp`` (ISO 8601 UTC), ``level``, ``event``, ``service_name`` and,
inside a request, the ``correlation_id`` bound by the correlation-ID
middleware.

Third-party libraries that log through the standard library (Uvicorn,
httpx, redis) are passed through the same processor chain, so their
records are indistinguishable in shape from the service's own.
"""

import logging
import sys

import structlog

SERVICE_NAME = "song-artwork-api"


def _add_service_name(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    event_dict["service_name"] = SERVICE_NAME
    return event_dict


def _uppercase_level(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """
    Route structlog and standard library logging to JSON on stdout.

    Call once at application start, before the first record is emitted.
    Unknown level names fall back to ``INFO``.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service_name,
        structlog.stdlib.add_log_level,
        _uppercase_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    json_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(json_formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(stdout_handler)
    root_logger.setLevel(level)

    # The redis client logs every reconnect attempt at DEBUG.
    logging.getLogger("redis").setLevel(max(level, logging.INFO))
