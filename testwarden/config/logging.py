"""Structured logging shared by the API server and runner-side clients."""

import logging
import sys

import structlog

# Third-party loggers never logged below WARNING.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")


def setup_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    *,
    sql_echo: bool = False,
) -> None:
    """Configure structlog on top of the stdlib logging tree.

    Request-scoped values bound with ``structlog.contextvars`` (the request id
    set by ``RequestIDMiddleware``) are merged into every event.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output or not sys.stderr.isatty():
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if sql_echo else logging.WARNING)
