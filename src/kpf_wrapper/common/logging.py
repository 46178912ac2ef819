"""Structured logging for the tunnel supervisor.

Log records go to stderr by default so that a front end can keep stdout for
its own output. Tunnel identity is carried in context variables: every record
emitted inside :func:`tunnel_context` carries the tunnel name and pid.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

# noisy at DEBUG while subprocess pipes are open
QUIET_LOGGERS = ("asyncio",)


def _drop_empty_output(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Drop blank tunnel output lines (kubectl pads its banners with them)."""
    if "line" in event_dict and not str(event_dict["line"]).strip():
        raise structlog.DropEvent
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure structured logging for the supervisor.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON formatted logs
        log_file: Optional file path to write logs to
        stream: Console stream (stderr if None)
    """
    log_level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        _drop_empty_output,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)


@contextmanager
def tunnel_context(name: str, pid: int | None = None) -> Iterator[None]:
    """Bind a tunnel's name (and pid) to every record logged in this block."""
    bound: dict[str, object] = {"tunnel": name}
    if pid is not None:
        bound["pid"] = pid
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
