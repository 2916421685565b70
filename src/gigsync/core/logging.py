"""Structured logging for gigsync.

Modules keep using ``logging.getLogger(__name__)``; :func:`configure_logging`
routes every stdlib record through structlog's ``ProcessorFormatter`` so the
console shows either coloured text or JSON lines, and an optional file always
gets JSON.

Records carry a ``calendar_session`` field taken from a ContextVar, which lets
a CLI run and a long-lived sync loop be told apart in a shared log file.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog

_session_context: ContextVar[str | None] = ContextVar("calendar_session", default=None)

# Third-party loggers that log every request at INFO.
_NOISE_LOGGERS = ("httpx", "httpcore")

_CONSOLE_TIME_FORMATS = {"text": "%H:%M:%S", "json": "iso"}


def set_session_context(label: str | None) -> None:
    _session_context.set(label)


def get_session_context() -> str | None:
    return _session_context.get()


def add_session_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """structlog processor adding ``calendar_session``."""
    event_dict["calendar_session"] = _session_context.get()
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_session_context,
        structlog.stdlib.ExtraAdder(),
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
    log_file: Path | str | None = None,
    session_label: str | None = None,
) -> None:
    """Install gigsync's handlers on the root logger.

    Calling it again replaces the previous handlers.

    Parameters
    ----------
    level:
        Root log level name.
    fmt:
        ``"text"`` (coloured console) or ``"json"``.
    log_file:
        Extra JSON-lines file. It takes every record that passes the root
        *level*, at DEBUG when *level* is DEBUG. Missing parent directories
        are created.
    session_label:
        Value for the ``calendar_session`` field in this context.
    """
    if session_label:
        set_session_context(session_label)

    console_chain = _pre_chain(_CONSOLE_TIME_FORMATS.get(fmt, "%H:%M:%S"))
    renderer = (
        structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    )
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, console_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))
        )
        root.addHandler(file_handler)

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*console_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
