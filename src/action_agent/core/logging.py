"""structlog setup and the run_id correlation context.

Every log entry emitted while one message is being ingested carries the
same run_id, and the llm_request_log row for that message stores it too,
so a single extraction can be followed across the log stream and the
database.

Usage:
    from action_agent.core.logging import correlation_scope, get_logger

    logger = get_logger(__name__)

    with correlation_scope(run_id):
        logger.info("action_extracted", channel="Gmail", estimate=3)
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, TextIO

import structlog

RUN_ID_KEY = "run_id"

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "apscheduler")

_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)


def get_correlation_id() -> str | None:
    return _run_id.get()


@contextmanager
def correlation_scope(run_id: str) -> Iterator[str]:
    """Bind `run_id` for the duration of the block, restoring the previous value."""
    token = _run_id.set(run_id)
    try:
        yield run_id
    finally:
        _run_id.reset(token)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor: copy the current run_id into the event, unless already given."""
    run_id = _run_id.get()
    if run_id is not None:
        event_dict.setdefault(RUN_ID_KEY, run_id)
    return event_dict


def _processors(json_output: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_correlation_id,
    ]
    if json_output:
        # Server mode: one JSON object per line
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog on top of the standard library root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines (server) or human-readable output (CLI)
        stream: Destination, stdout by default
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=stream or sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
