"""
=============================================================================
MESSAGE STORE
=============================================================================

The board's shared, append-only message log.

Every session posts into and reads from the SAME store object, which is
injected at construction. A single lock guards each read-modify-append, so
two users posting at the same moment never lose a message.

    ┌───────────┐  append_message()  ┌─────────────────────────────────────┐
    │ Session A │ ─────────────────► │  MessageStore                       │
    └───────────┘                    │  ┌───────────────────────────────┐  │
    ┌───────────┐  recent_messages() │  │ lock                          │  │
    │ Session B │ ─────────────────► │  │ in-memory list (oldest first) │  │
    └───────────┘                    │  └───────────────────────────────┘  │
                                     │          │ best-effort append       │
                                     │          ▼                          │
                                     │     messages.txt                    │
                                     └─────────────────────────────────────┘

Persistence is best-effort: a failed file write is logged and the message
stays in memory. Nothing is rolled back or retried.

File format, one message per line:

    [2024-05-01 12:00:00] alice: hello world

=============================================================================
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, List, Optional, Union


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class Message:
    """One board post."""
    user: str
    timestamp: str
    content: str

    def render(self) -> str:
        """Render as a single line, without the terminator."""
        return f"[{self.timestamp}] {self.user}: {self.content}"

    @classmethod
    def parse(cls, line: str) -> Optional["Message"]:
        """
        Parse a line written by render(). Returns None for malformed lines.
        """
        line = line.rstrip("\r\n")
        if not line.startswith("["):
            return None
        end = line.find("]")
        if end == -1:
            return None
        timestamp = line[1:end]
        rest = line[end + 1:].strip()
        user, sep, content = rest.partition(":")
        if not sep or not user.strip():
            return None
        return cls(user=user.strip(), timestamp=timestamp, content=content.strip())


class MessageStore(ABC):
    """
    Interface the sessions use to post and read messages.

    recent_messages() returns the tail of the log in chronological order:
    oldest first, newest last.
    """

    @abstractmethod
    def append_message(self, user: str, text: str) -> Message:
        """Append a message and return it."""

    @abstractmethod
    def recent_messages(self, limit: int) -> List[Message]:
        """Return up to ``limit`` most recent messages, oldest first."""

    @abstractmethod
    def count(self) -> int:
        """Number of messages currently held."""


class MemoryMessageStore(MessageStore):
    """Message store kept only in memory, bounded to max_messages."""

    def __init__(self, max_messages: int = 1_000_000, clock=time.localtime):
        self.max_messages = max_messages
        self._clock = clock
        self._lock = threading.Lock()
        self._messages: Deque[Message] = deque(maxlen=max_messages)

    def append_message(self, user: str, text: str) -> Message:
        message = Message(
            user=user,
            timestamp=time.strftime(TIMESTAMP_FORMAT, self._clock()),
            content=text,
        )
        with self._lock:
            self._messages.append(message)
            self._persist(message)
        return message

    def recent_messages(self, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        with self._lock:
            if limit >= len(self._messages):
                return list(self._messages)
            start = len(self._messages) - limit
            return [self._messages[i] for i in range(start, len(self._messages))]

    def count(self) -> int:
        with self._lock:
            return len(self._messages)

    def _persist(self, message: Message) -> None:
        """Hook called with the lock held, after the in-memory append."""


class FileMessageStore(MemoryMessageStore):
    """
    Message store backed by an append-only text file.

    Existing messages are loaded once at construction; afterwards the file
    is only ever appended to.
    """

    def __init__(
        self,
        path: Union[str, Path],
        max_messages: int = 1_000_000,
        clock=time.localtime,
    ):
        super().__init__(max_messages=max_messages, clock=clock)
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.debug(f"No message file at {self.path}, starting empty")
            return

        skipped = 0
        with self._lock:
            for line in text.splitlines():
                if not line:
                    continue
                message = Message.parse(line)
                if message is None:
                    skipped += 1
                    continue
                self._messages.append(message)

        logger.info(f"Loaded {len(self._messages)} messages from {self.path}")
        if skipped:
            logger.warning(f"Skipped {skipped} malformed lines in {self.path}")

    def _persist(self, message: Message) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(message.render() + "\n")
        except OSError as e:
            # The in-memory append already happened and stays
            logger.warning(f"Could not persist message to {self.path}: {e}")
