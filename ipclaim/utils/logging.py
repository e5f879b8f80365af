"""
Structured logging infrastructure using structlog.

All controller loops log through structlog so that every store failure,
assignment and liveness transition is emitted as an event with key/value
fields (claim, node, cidr, ...). Each loop runs inside loop_context(), so
its events also carry the name of the loop that produced them.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "ipclaim"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log entries."""
    event_dict["app"] = APP_NAME
    return event_dict


def log_destination(log_output: str) -> Dict[str, Any]:
    """
    Map a log output setting to logging.basicConfig arguments.

    Args:
        log_output: "stdout", "stderr" or a file path

    Returns:
        Either a stream or a filename keyword
    """
    if log_output == "stdout":
        return {"stream": sys.stdout}
    if log_output == "stderr":
        return {"stream": sys.stderr}
    return {"filename": log_output}


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_output: str = "stdout",
) -> None:
    """
    Configure structured logging for the controller process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_output: Output destination (stdout, stderr, or file path)
    """
    destination = log_destination(log_output)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        **destination,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        # No ANSI colors in log files
        renderer = structlog.dev.ConsoleRenderer(colors="stream" in destination)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def loop_context(loop: str, **fields: Any) -> Iterator[None]:
    """
    Tag every event logged inside the block with the controller loop name.

    Context variables are per asyncio task, so loops running as separate
    tasks never see each other's tag.

    Args:
        loop: Loop name (service_watcher, claim_watcher, node_monitor)
        **fields: Extra fields to bind for the same scope
    """
    with structlog.contextvars.bound_contextvars(loop=loop, **fields):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
