"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with the small API a session needs:

    read_chunk()   one recv(), sliced so shutdown can be noticed between reads
    send_text()    thread-safe write of a text response
    close()        orderly TCP close

=============================================================================
WHY POLL INSTEAD OF A PLAIN BLOCKING recv()?
=============================================================================

A thread blocked in recv() cannot be interrupted from Python. If the client
goes quiet, the thread sleeps until the client types something, and a
server shutdown would wait on it forever.

So the socket gets a SHORT timeout (poll_interval) and read_chunk() loops:

    ┌─────────────────────────────────────────────────────────────────┐
    │                    read_chunk() loop                             │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   while not should_stop():                                       │
    │       recv()  ── data ──────────────► return data                │
    │          │    ── b"" (EOF) ─────────► return b""                 │
    │          │                                                       │
    │          └── timeout (poll slice over)                           │
    │                 │                                                │
    │                 ├── silent longer than idle_timeout?             │
    │                 │       └── raise TimeoutError ("too slow")      │
    │                 └── loop, look at should_stop() again            │
    │                                                                  │
    │   return None   ◄── stop observed                                │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

Cancellation stays cooperative: a shutdown is observed within one
poll_interval, never by force.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► LOGIN ──────► ACTIVE ──────► CLOSING ──────► CLOSED
     │            │                              ▲
     └────────────┴──────────────────────────────┘

=============================================================================
"""

import socket
import threading
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states, used for logging and debugging."""
    NEW = "new"            # Just accepted, banner not sent yet
    LOGIN = "login"        # Asking for credentials
    ACTIVE = "active"      # Reader and Router running
    CLOSING = "closing"    # Shutdown sequence in progress
    CLOSED = "closed"      # Socket released


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Peer address as returned by accept().
        id: Short unique identifier (for logging).
        state: Current connection state.
        created_at: Timestamp when the connection was accepted.
        last_activity: Timestamp of the last data received from the client.
    """

    # Required parameters
    socket: socket.socket
    address: Any

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    bytes_received: int = 0
    bytes_sent: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 512
    poll_interval: float = 0.5
    idle_timeout: Optional[float] = None
    write_timeout: float = 10.0
    linger: float = 0.5

    # Two threads (Reader and Router) write to the same socket
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.poll_interval)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def peer(self) -> str:
        """Printable peer address, "ip:port" for TCP."""
        if isinstance(self.address, tuple) and len(self.address) >= 2:
            return f"{self.address[0]}:{self.address[1]}"
        return str(self.address) or "local"

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    @property
    def idle_time(self) -> float:
        """Seconds since the client last sent anything."""
        return time.time() - self.last_activity

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def read_chunk(self, should_stop: Callable[[], bool]) -> Optional[bytes]:
        """
        Read the next chunk of bytes from the client.

        Args:
            should_stop: Polled between recv() slices; when it returns True
                the read is abandoned.

        Returns:
            The bytes received, b"" at end of stream, or None if
            should_stop() became true first.

        Raises:
            TimeoutError: The client was silent for longer than idle_timeout.
            OSError: Any other socket failure (reset, broken pipe, ...).
        """
        while not should_stop():
            try:
                data = self.socket.recv(self.buffer_size)
            except socket.timeout:
                if self.idle_timeout is not None and self.idle_time >= self.idle_timeout:
                    raise TimeoutError(f"No input for {self.idle_timeout:g}s")
                continue

            self.last_activity = time.time()
            self.bytes_received += len(data)
            return data
        return None

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send bytes to the client.

        The socket's timeout is the short poll_interval shared with the
        Reader, so a full client window is waited out slice by slice, up to
        ``write_timeout`` seconds in total. Partial sends are resumed, never
        repeated or dropped.

        Returns:
            True if sent, False if the connection is gone or the client did
            not take the data within write_timeout.
        """
        if not data:
            return True
        with self._write_lock:
            if self.state == ConnectionState.CLOSED:
                return False

            view = memoryview(data)
            deadline = time.time() + self.write_timeout
            while view:
                try:
                    sent = self.socket.send(view)
                except socket.timeout:
                    if time.time() >= deadline:
                        logger.debug(
                            f"[{self.id}] Send timed out after {self.write_timeout:g}s "
                            f"with {len(view)} bytes left"
                        )
                        return False
                    continue
                except OSError as e:
                    logger.debug(f"[{self.id}] Send failed: {e}")
                    return False
                self.bytes_sent += sent
                view = view[sent:]
            return True

    def send_text(self, text: str) -> bool:
        """Encode ``text`` as UTF-8 and send it."""
        return self.send(text.encode("utf-8"))

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): tell the client we're done (sends FIN)
        2. drain for up to ``linger`` seconds so unread client bytes don't
           turn our FIN into a RST that could eat the final notice
        3. close(): release the file descriptor

        Safe to call more than once.
        """
        with self._close_lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSING

            try:
                self.socket.shutdown(socket.SHUT_WR)
            except OSError:
                pass  # Peer already gone

            deadline = time.time() + self.linger
            try:
                self.socket.settimeout(self.linger)
                while time.time() < deadline and self.socket.recv(1024):
                    pass
            except OSError:
                pass  # Timeout or reset, we're closing anyway

            with self._write_lock:
                try:
                    self.socket.close()
                except OSError:
                    pass
                self.state = ConnectionState.CLOSED

        logger.debug(
            f"[{self.id}] Connection closed after {self.age:.1f}s "
            f"({self.bytes_received} bytes in, {self.bytes_sent} bytes out)"
        )
