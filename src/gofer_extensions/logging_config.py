import logging
import sys

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def parse_log_level(level: str) -> int | None:
    """Map a Gofer log level name to a stdlib level. Returns None if unrecognised."""
    return _LEVELS.get(level.strip().lower())


def configure_logging(level: str = "info", extension_id: str | None = None) -> None:
    """Configure structured logging for the extension process."""
    parsed = parse_log_level(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            parsed if parsed is not None else logging.DEBUG
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    structlog.contextvars.clear_contextvars()
    if extension_id:
        structlog.contextvars.bind_contextvars(extension=extension_id)

    if parsed is None:
        structlog.get_logger().error(
            "log level not recognized; defaulting to debug", log_level=level
        )


def get_logger(**kwargs: object) -> structlog.BoundLogger:
    """Get a structured logger, optionally bound to extra context."""
    log = structlog.get_logger()
    if kwargs:
        log = log.bind(**kwargs)
    return log
