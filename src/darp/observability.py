"""Structured logging helpers shared by the core and the adapters.

Purpose
    Keep every diagnostic emitted by ``darp`` predictable and contextual
    without forcing a logging backend: the package logger is silent until the
    CLI (``--verbose``) or a host application attaches a handler.

Contents
    - ``TRACE_ID``: context variable storing the identifier of the current
      invocation.
    - ``get_logger``: returns the shared package logger (quiet by default).
    - ``bind_trace_id``: binds or clears the active trace identifier.
    - ``log_debug`` / ``log_info`` / ``log_error``: emit structured entries via a
      single private emitter.
    - ``make_event``: convenience builder for structured event payloads.
    - ``enable_console_logging``: attaches a stderr handler for ``--verbose``.

System Integration
    The mutation API, the deploy pass, and every adapter log through these
    helpers so a single ``--verbose`` run shows the whole operation with the
    same trace identifier on each line.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any, Final, Mapping

TRACE_ID: ContextVar[str | None] = ContextVar("darp_trace_id", default=None)
"""Identifier of the current CLI invocation, attached to every log entry."""

_LOGGER: Final[logging.Logger] = logging.getLogger("darp")
_LOGGER.addHandler(logging.NullHandler())

_CONSOLE_FORMAT: Final[str] = "%(levelname)s %(name)s %(message)s %(context)s"


def get_logger() -> logging.Logger:
    """Expose the package logger so applications may attach handlers."""

    return _LOGGER


def bind_trace_id(trace_id: str | None) -> None:
    """Bind or clear the active trace identifier.

    Examples
    --------
    >>> bind_trace_id('abc123')
    >>> TRACE_ID.get()
    'abc123'
    >>> bind_trace_id(None)
    >>> TRACE_ID.get() is None
    True
    """

    TRACE_ID.set(trace_id)


def log_debug(message: str, **fields: Any) -> None:
    """Emit a structured debug log entry that includes the trace context."""

    _emit(logging.DEBUG, message, fields)


def log_info(message: str, **fields: Any) -> None:
    """Emit a structured info log entry that includes the trace context."""

    _emit(logging.INFO, message, fields)


def log_error(message: str, **fields: Any) -> None:
    """Emit a structured error log entry that includes the trace context."""

    _emit(logging.ERROR, message, fields)


def make_event(
    entity: str,
    key: str | None,
    payload: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a structured payload describing an event on one configuration entity.

    Inputs
        entity: Kind of object touched (``"domain"``, ``"environment"``,
            ``"service"``, ``"artifact"`` ...).
        key: Identifier of that object, if any.
        payload: Optional mapping with extra diagnostic detail.

    Examples
    --------
    >>> make_event('domain', 'src', {'services': 2})
    {'entity': 'domain', 'key': 'src', 'services': 2}
    """

    event: dict[str, Any] = {"entity": entity, "key": key}
    if payload:
        event |= dict(payload)
    return event


def enable_console_logging(level: int = logging.DEBUG) -> logging.Handler:
    """Attach a stderr handler to the package logger and return it.

    The handler renders the structured ``context`` next to the message so the
    ``--verbose`` output stays greppable.
    """

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    _LOGGER.addHandler(handler)
    _LOGGER.setLevel(level)
    return handler


def _emit(level: int, message: str, fields: Mapping[str, Any]) -> None:
    """Send a log entry through the shared logger with contextual metadata."""

    _LOGGER.log(level, message, extra={"context": _with_trace(fields)})


def _with_trace(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Attach the current trace identifier to the provided structured fields."""

    context = {"trace_id": TRACE_ID.get()}
    context.update(fields)
    return context
