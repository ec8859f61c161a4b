"""
=============================================================================
LOGGING
=============================================================================

Logging setup for the server plus the one-line summary written when a
session ends.

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 2024-06-10 10:55:36 [INFO] bbsserver.sessions: 1a2b3c4d             │
    │   10.0.0.5:51234 user=alice commands=7 duration=42.1s end=exit      │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"time": "...", "level": "INFO", "logger": "bbsserver.sessions",    │
    │  "message": "...", "session_id": "1a2b3c4d", "user": "alice", ...}  │
    └─────────────────────────────────────────────────────────────────────┘

Passwords never reach a log line: the login phase only logs usernames.

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass, asdict
from typing import Optional


logger = logging.getLogger("bbsserver.sessions")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class SessionLog:
    """
    Structured summary of one finished session.

    session_id:  Connection id (also prefixed to the session's other logs)
    peer:        Client address
    user:        Logged-in user, None if login never completed
    commands:    Number of command lines the Router handled
    duration_s:  Seconds from accept to close
    end_reason:  Why the session ended (exit, closed, shutdown, ...)
    """

    session_id: str
    peer: str
    user: Optional[str]
    commands: int
    duration_s: float
    end_reason: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_s"] = round(self.duration_s, 3)
        return data

    def to_text(self) -> str:
        return (
            f"{self.session_id} {self.peer} user={self.user or '-'} "
            f"commands={self.commands} duration={self.duration_s:.1f}s "
            f"end={self.end_reason}"
        )

    def emit(self, level: int = logging.INFO) -> None:
        """Write this entry to the bbsserver.sessions logger."""
        logger.log(level, self.to_text(), extra={"session": self.to_dict()})


class JsonFormatter(logging.Formatter):
    """One JSON object per record; SessionLog fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": time.strftime(DATE_FORMAT, time.localtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        session = getattr(record, "session", None)
        if isinstance(session, dict):
            entry.update(session)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """Configure the root logger and the bbsserver logger level."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=numeric_level, handlers=[handler], force=True)
    else:
        logging.basicConfig(
            level=numeric_level,
            format=TEXT_FORMAT,
            datefmt=DATE_FORMAT,
            force=True,
        )

    logging.getLogger("bbsserver").setLevel(numeric_level)
