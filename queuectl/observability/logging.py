"""
Structured logging for queuectl processes.

Every module logs through ``logging.getLogger(__name__)`` with ``extra=``
fields (``job_id``, ``worker_id``, ``attempt``...). structlog renders those
records, adding the bound worker context, the OpenTelemetry trace ids and
the process id, so lines from several worker processes sharing one
terminal or log file can be told apart.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog
from opentelemetry import trace

from queuectl.config import get_settings

# Libraries that log every statement or connection at INFO
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "opentelemetry")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current span's trace and span ids, if a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def add_process_id(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the OS process id of the emitting worker or CLI."""
    event_dict.setdefault("pid", os.getpid())
    return event_dict


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    # Workers are usually started detached, so colour codes would end up in files
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(stream: TextIO | None = None, level: str | None = None) -> None:
    """
    Route all queuectl logging through structlog.

    Args:
        stream: Output stream, stdout by default. The CLI passes stderr so
            the job listings it prints on stdout stay machine readable.
        level: Log level overriding ``QUEUECTL_LOG_LEVEL``.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        add_process_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings.log_format),
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


@contextmanager
def worker_log_context(worker_id: str) -> Iterator[None]:
    """
    Tag every record logged inside the block with ``worker_id``.

    The binding is removed on exit, even if the block raises.
    """
    with structlog.contextvars.bound_contextvars(worker_id=worker_id):
        yield
