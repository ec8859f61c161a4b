"""
=============================================================================
BBS SERVER
=============================================================================

The orchestrator that ties the components together: it accepts
connections, gives each one a ConnectionSession on its own thread, keeps
track of the live sessions and shuts them all down together.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         BBS SERVER                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │    BBSServer    │                          │
    │                        │  (Supervisor)   │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │      ┌──────────────────┬───────┴──────────┬──────────────────┐     │
    │      ▼                  ▼                  ▼                  ▼     │
    │ ┌──────────┐     ┌────────────┐     ┌────────────┐    ┌───────────┐│
    │ │ Socket   │     │ Shutdown   │     │ Session    │    │ Stores    ││
    │ │ Server   │     │ Signal     │     │ Group      │    │ msgs/users││
    │ └────┬─────┘     └─────┬──────┘     └─────┬──────┘    └─────┬─────┘│
    │      │ accept          │ observed by      │ joined by       │      │
    │      ▼                 ▼                  ▼                 ▼      │
    │ ┌───────────────────────────────────────────────────────────────┐ │
    │ │  ConnectionSession × N   (Reader + Router threads each)       │ │
    │ └───────────────────────────────────────────────────────────────┘ │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

    1. trigger the ShutdownSignal (once; later calls are no-ops)
    2. stop the accept loop
    3. every live session notices the signal within one poll_interval,
       writes the shutdown notice and closes
    4. wait on the SessionGroup until every session published completion

A failure inside one session never reaches the server or another session;
the only errors the server itself handles are accept errors, which are
logged and skipped.

=============================================================================
"""

import logging
import threading
from typing import List, Optional, Tuple

from ._version import __version__
from .config import ServerConfig
from .core import (
    Connection,
    ConnectionSession,
    SessionGroup,
    ShutdownSignal,
    SocketServer,
)
from .core.session import SHUTDOWN_NOTICE
from .motd import load_motd
from .protocol.commands import CommandDispatcher, CommandTable, default_commands
from .storage.messages import FileMessageStore, MemoryMessageStore, MessageStore
from .storage.users import JsonUserStore, UserStore


logger = logging.getLogger(__name__)

BUSY_NOTICE = "*** Server busy, try again later.\n"


class BBSServer:
    """
    Line-oriented bulletin board server.

    =========================================================================
    USAGE
    =========================================================================

        server = BBSServer(ServerConfig(port=2323))
        server.run()                  # blocks until Ctrl+C / SIGTERM

    From another thread (tests, embedding):

        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        server.wait_until_ready(5.0)
        ...
        server.shutdown(timeout=5.0)  # True once every session finished

    Stores, the command table and the banner can be injected; otherwise
    they are built from the config.

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        *,
        messages: Optional[MessageStore] = None,
        users: Optional[UserStore] = None,
        commands: Optional[CommandTable] = None,
        banner: Optional[str] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        # ─────────────────────────────────────────────────────────────────
        # CORE COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self._socket_server = SocketServer(self.config)
        self._shutdown_signal = ShutdownSignal()
        self._sessions = SessionGroup()

        # ─────────────────────────────────────────────────────────────────
        # APPLICATION COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self.messages = messages if messages is not None else self._build_message_store()
        self.users = users if users is not None else self._build_user_store()
        self._dispatcher = CommandDispatcher(commands or default_commands())
        if banner is None:
            banner = load_motd(
                self.config.motd_file, __version__, self.config.host, self.config.port
            )
        self.banner = banner

        self._running = False

    def _build_message_store(self) -> MessageStore:
        if self.config.messages_file:
            return FileMessageStore(self.config.messages_file, self.config.max_messages)
        return MemoryMessageStore(self.config.max_messages)

    def _build_user_store(self) -> Optional[UserStore]:
        if self.config.require_login and self.config.users_file:
            return JsonUserStore(self.config.users_file)
        return None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port), useful when the config asked for port 0."""
        return self._socket_server.address

    @property
    def shutdown_signal(self) -> ShutdownSignal:
        return self._shutdown_signal

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[ConnectionSession]:
        return self._sessions.snapshot()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listening socket is accepting."""
        return self._socket_server.wait_until_listening(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Serve until shutdown() is called or SIGINT/SIGTERM arrives, then
        shut every session down (bounded by config.shutdown_timeout).

        Raises:
            OSError: If the listening address cannot be bound.
        """
        self._running = True
        logger.info(
            f"Starting BBS server v{__version__} on {self.config.host}:{self.config.port}"
        )

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._running = False
            if not self.shutdown(timeout=self.config.shutdown_timeout):
                logger.warning(
                    f"{self.session_count} sessions still running after "
                    f"{self.config.shutdown_timeout:g}s"
                )
            logger.info("Server stopped")

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Broadcast shutdown to every session and wait for all of them.

        Safe to call more than once and from any thread.

        Returns:
            True when every session has completed, False if the timeout
            expired first.
        """
        if self._shutdown_signal.trigger():
            logger.info(f"Shutdown signal raised, {self.session_count} sessions live")
        self._socket_server.shutdown()
        return self._sessions.wait(timeout)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Start a session for a freshly accepted connection.

        Runs on the accept loop's thread, so it must not block.

        The session joins the SessionGroup BEFORE the shutdown signal is
        checked: a concurrent shutdown() either sees it in the group and
        waits for it, or the signal is already set here and it is rejected.
        """
        session = ConnectionSession(
            conn,
            self._dispatcher,
            self.messages,
            self._shutdown_signal,
            banner=self.banner,
            users=self.users,
            require_login=self.config.require_login,
            guest_name=self.config.guest_name,
            max_read_messages=self.config.max_read_messages,
            max_line_length=self.config.max_line_length,
            on_complete=self._sessions.done,
        )

        self._sessions.add(session)

        if self._shutdown_signal.is_set():
            self._reject_member(session, SHUTDOWN_NOTICE)
            return

        limit = self.config.max_sessions
        if limit is not None and len(self._sessions) > limit:
            logger.warning(f"[{conn.id}] Session limit ({limit}) reached, rejecting {conn.peer}")
            self._reject_member(session, BUSY_NOTICE)
            return

        thread = threading.Thread(
            target=session.run,
            name=f"session-{conn.id}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self._reject_member(session, BUSY_NOTICE)
            raise

    def _reject_member(self, session: ConnectionSession, notice: str) -> None:
        """Turn away a registered session that will never run."""
        try:
            self._reject(session.conn, notice)
        finally:
            self._sessions.done(session)

    @staticmethod
    def _reject(conn: Connection, notice: str) -> None:
        conn.send_text(notice)
        conn.linger = 0.0
        conn.close()


def create_server(config: Optional[ServerConfig] = None, **kwargs) -> BBSServer:
    """
    Factory for BBSServer instances.

    Example:
        server = create_server(ServerConfig(port=2424, require_login=False))
        server.run()
    """
    return BBSServer(config, **kwargs)
