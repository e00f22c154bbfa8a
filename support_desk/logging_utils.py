"""Logging setup shared by the CLI and the web server.

Every record is tagged with the chat session it was emitted for, so the
lines of one turn can be told apart when several stream at once.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from threading import Lock
from typing import Iterator

NO_SESSION = "-"
PLAIN_FORMAT = "[%(levelname)s] %(name)s [%(session_id)s] - %(message)s"

session_id_var: ContextVar[str] = ContextVar("session_id", default=NO_SESSION)

_CONFIG_LOCK = Lock()
_CONFIGURED = False


@contextmanager
def log_session(session_id: str | None) -> Iterator[None]:
    """Tag records logged inside the block with ``session_id``."""

    previous = session_id_var.get()
    session_id_var.set(session_id or NO_SESSION)
    try:
        yield
    finally:
        # reset() fails when an async generator is closed from another context.
        session_id_var.set(previous)


class SessionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = session_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "session_id": getattr(record, "session_id", NO_SESSION),
            "message": record.getMessage(),
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def build_handler(log_format: str = "plain") -> logging.Handler:
    handler = logging.StreamHandler()
    handler.addFilter(SessionFilter())
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    return handler


def configure_logging(level: int = logging.INFO) -> None:
    """Configure the root logger once; later calls are no-ops.

    ``SUPPORT_DESK_LOG_FORMAT=json`` switches to one JSON object per line.
    """

    global _CONFIGURED
    with _CONFIG_LOCK:
        if _CONFIGURED:
            return
        log_format = os.getenv("SUPPORT_DESK_LOG_FORMAT", "plain").lower()
        logging.basicConfig(level=level, handlers=[build_handler(log_format)])
        _CONFIGURED = True
