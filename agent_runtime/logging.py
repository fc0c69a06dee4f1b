"""Logging configuration for the agent runtime."""

import logging
import sys
from typing import Callable

import structlog

from agent_runtime.config import get_config

_system_log_sink: Callable[[str], None] | None = None


class _SinkWriter:
    """File-like sink for structlog that forwards lines to a callback."""

    def __init__(self, sink: Callable[[str], None]):
        self._sink = sink
        self._buffer = ""

    def write(self, text: str) -> int:
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if line:
                self._sink(line)
        return len(text)

    def flush(self) -> None:
        if self._buffer:
            self._sink(self._buffer)
            self._buffer = ""


def set_system_log_sink(sink: Callable[[str], None] | None) -> None:
    """Route rendered log lines to a callback instead of stderr."""
    global _system_log_sink
    _system_log_sink = sink


def configure_logging() -> None:
    """Configure structured logging for the runtime."""
    config = get_config()

    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.logging.format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(
            file=_SinkWriter(_system_log_sink) if _system_log_sink else sys.stderr
        ),
        cache_logger_on_first_use=True,
    )


def bind_invocation(invocation_id: str, session_id: str = "", agent: str = "") -> None:
    """Attach invocation identifiers to every log line of the current task."""
    values = {"invocation_id": invocation_id}
    if session_id:
        values["session_id"] = session_id
    if agent:
        values["agent"] = agent
    structlog.contextvars.bind_contextvars(**values)


def unbind_invocation() -> None:
    """Drop invocation identifiers bound by ``bind_invocation``."""
    structlog.contextvars.unbind_contextvars("invocation_id", "session_id", "agent")


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
