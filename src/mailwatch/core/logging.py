"""Logging setup for mailwatch.

Call sites keep using ``logging.getLogger(__name__)``. :func:`configure_logging`
installs a structlog ``ProcessorFormatter`` on the root logger, so those stdlib
records come out as colored console lines (``text``) or JSON lines (``json``).

Context travels through ``structlog.contextvars``: the service name is bound
once at startup, and :func:`sync_log_context` tags every line of one
invocation with the mailbox and the notified historyId. Lines emitted inside
an OTel span also carry ``trace_id`` and ``span_id``.
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from pathlib import Path

import structlog
from opentelemetry import trace

# Transport chatter that would drown one line per pass.
QUIET_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "google.auth",
    "google.cloud",
    "urllib3",
)


def add_trace_ids(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Copy the active span's ids into the event; no-op outside a span."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def sync_log_context(email_address: str | None, history_id: str) -> AbstractContextManager:
    """Bind ``mailbox`` and ``history_id`` for the duration of one invocation."""
    return structlog.contextvars.bound_contextvars(
        mailbox=email_address or "",
        history_id=history_id,
    )


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_trace_ids,
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    service_name: str = "mailwatch",
) -> None:
    """Route all stdlib logging through structlog.

    With *log_root* set, a JSON copy of every record at DEBUG and above is
    also appended to ``{log_root}/{service_name}.log``.
    """
    structlog.contextvars.bind_contextvars(service=service_name)

    if fmt == "json":
        console = _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))
    else:
        console = _formatter(structlog.dev.ConsoleRenderer(), _pre_chain("%H:%M:%S"))

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_root / f"{service_name}.log")
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))
        )
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
