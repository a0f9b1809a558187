"""Request-scoped session context and the logging setup that reads it."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(session_id)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class SessionContext:
    session_id: str


_session_var: ContextVar[Optional[SessionContext]] = ContextVar("teams_mcp_session", default=None)


def current_session() -> Optional[SessionContext]:
    return _session_var.get()


@contextmanager
def session_context(session_id: str) -> Iterator[SessionContext]:
    """Bind ``session_id`` to the current task (and tasks it spawns) until exit."""
    context = SessionContext(session_id)
    token = _session_var.set(context)
    try:
        yield context
    finally:
        _session_var.reset(token)


class SessionLogFilter(logging.Filter):
    """Stamp every record with the session id of the task that emitted it."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _session_var.get()
        record.session_id = context.session_id if context else "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    # stderr only: stdout carries the protocol stream in stdio mode
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SessionLogFilter())

    root = logging.getLogger("teams_mcp")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
