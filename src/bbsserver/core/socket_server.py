"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the listening socket: bind, listen, accept, hand each client socket to
a callback. Everything above the TCP level (sessions, commands) lives in
BBSServer.

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create the listening socket
    2. bind()      Reserve host:port (port 0 = let the OS pick)
    3. listen()    Start queueing incoming connections (backlog)
    4. accept()    Wait for a client, get a NEW socket just for it
    5. close()     Release the listening socket on shutdown

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    │                       │     Bound to 0.0.0.0:2323
                    └───────────┬───────────┘     Never sends/receives data
                                │
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Session 1 │         │ Session 2 │         │ Session 3 │
    └───────────┘         └───────────┘         └───────────┘

=============================================================================
ACCEPT ERRORS ARE NOT FATAL
=============================================================================

accept() can fail for reasons that say nothing about the server's health:
a client that reset before we got to it (ECONNABORTED), a momentary file
descriptor shortage (EMFILE). Those are logged and the loop goes on. Only
shutdown() ends the loop.

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd) stop the accept loop.
The caller of start() then runs the session shutdown. Python only allows
installing signal handlers from the main thread, so a server started on a
background thread (tests, embedding) leaves signals alone.

=============================================================================
"""

import socket
import signal
import logging
import threading
import time
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

ACCEPT_ERROR_BACKOFF = 0.1


class SocketServer:
    """
    Low-level TCP socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(handler)                                                    │
    │        ├──► _create_socket()   SO_REUSEADDR, TCP_NODELAY, timeout   │
    │        ├──► bind() / listen()                                        │
    │        ├──► _setup_signals()   (main thread only)                   │
    │        └──► _accept_loop()     BLOCKS until shutdown()              │
    │                 └──► accept() → Connection → handler(conn)          │
    │                                                                      │
    │    shutdown()     stop the loop (idempotent, any thread)            │
    │    _cleanup()     restore signals, close listening socket           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._bound_address: Optional[Tuple[str, int]] = None
        self._running = False

        # Set once the socket is listening, so callers can wait for it
        self._listening = threading.Event()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the configured one before start()."""
        if self._bound_address is not None:
            return self._bound_address
        return (self.config.host, self.config.port)

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        return self._listening.wait(timeout)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Restart without "Address already in use" while old sockets linger
        # in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Prompts are tiny writes; send them immediately
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up every poll_interval to look at _running
        sock.settimeout(self.config.poll_interval)

        return sock

    def _setup_signals(self):
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, leaving signal handlers alone")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept connections until shutdown() is called.

        Args:
            connection_handler: Called with each accepted Connection. It
                must not block; BBSServer starts a thread per session.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)
        self._bound_address = self._socket.getsockname()[:2]

        self._running = True
        self._setup_signals()

        host, port = self._bound_address
        logger.info(f"Server listening on {host}:{port}")
        self._listening.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        """Accept until shutdown; accept failures are logged and skipped."""
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                # Poll slice over, look at _running again
                continue
            except OSError as e:
                if not self._running:
                    break
                logger.error(f"Accept error: {e}")
                time.sleep(ACCEPT_ERROR_BACKOFF)
                continue

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            try:
                client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                pass

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                poll_interval=self.config.poll_interval,
                idle_timeout=self.config.idle_timeout,
                write_timeout=self.config.write_timeout,
            )

            try:
                connection_handler(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Connection handler failed: {e}")
                conn.close()

    def shutdown(self):
        """Stop accepting connections. Safe to call repeatedly, from any thread."""
        if self._running:
            logger.info("Shutting down socket server...")
        self._running = False

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._listening.clear()
        logger.info("Socket server stopped")
