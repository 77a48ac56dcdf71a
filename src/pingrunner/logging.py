"""
Structured logging for pingrunner using structlog.

Library code only ever calls get_logger(); applications decide where the
events go by calling configure_logging() (or configure_from_settings()) once
at startup.
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

import structlog

if TYPE_CHECKING:
    from pingrunner.models import PingSettings

# Processors applied both to structlog events and to foreign stdlib records.
_PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_PRE_CHAIN)


def _console_renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Path] = None,
    console_output: bool = True,
) -> None:
    """
    Route pingrunner's structlog events through the stdlib root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Render console output as JSON instead of key=value
        log_file: Also write events to this file, always as JSON lines
        console_output: Write events to stderr
    """
    structlog.configure(
        processors=_PRE_CHAIN + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: List[logging.Handler] = []
    if console_output:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(_formatter(_console_renderer(json_output)))
        handlers.append(console)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        handlers.append(file_handler)

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True,
    )


def configure_from_settings(settings: "PingSettings", log_file: Optional[Path] = None) -> None:
    """Apply the log level and format carried by ``settings``."""
    configure_logging(level=settings.log_level, json_output=settings.log_json, log_file=log_file)


def get_logger(name: str = "pingrunner") -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


@contextmanager
def log_operation(logger: structlog.stdlib.BoundLogger, operation: str, **kwargs):
    """
    Log ``<operation>.started`` / ``.completed`` / ``.failed`` with timing.

    Start and completion are debug events; a failure is a warning and the
    exception is re-raised.

    Usage:
        with log_operation(log, "ping", host="localhost") as oplog:
            oplog.debug("ping.result", exit_code=0)
    """
    oplog = logger.bind(operation=operation, **kwargs)
    started = datetime.now()
    oplog.debug(f"{operation}.started")

    try:
        yield oplog
    except Exception as e:
        oplog.warning(
            f"{operation}.failed",
            error=str(e),
            error_type=type(e).__name__,
            duration_ms=_elapsed_ms(started),
        )
        raise
    oplog.debug(f"{operation}.completed", duration_ms=_elapsed_ms(started))


def _elapsed_ms(started: datetime) -> float:
    return round((datetime.now() - started).total_seconds() * 1000, 2)
