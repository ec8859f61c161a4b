"""
=============================================================================
CONNECTION SESSION
=============================================================================

One ConnectionSession owns one accepted connection from the banner to the
final close.

=============================================================================
THREADS OF A SESSION
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ConnectionSession.run()                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   banner ──► login ──► prompt                                       │
    │                           │                                          │
    │              ┌────────────┴────────────┐                            │
    │              ▼                         ▼                            │
    │      ┌──────────────┐  line queue  ┌──────────────┐                 │
    │      │    Reader    │ ───────────► │    Router    │                 │
    │      │  recv+frame  │  (1 slot)    │  dispatch    │                 │
    │      └──────┬───────┘              └──────┬───────┘                 │
    │             │ _end(reason)                │ _end(reason)            │
    │             └──────────────┬──────────────┘                         │
    │                            ▼                                         │
    │               first caller wins: record reason,                     │
    │               write ONE final notice, set stop event                │
    │                            │                                         │
    │                            ▼                                         │
    │   run(): wait for stop ──► join Reader ──► join Router              │
    │          ──► close socket ──► publish completion (exactly once)     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHY A SINGLE COMPLETION PUBLISHER?
=============================================================================

Either duty can finish first: the Router on `exit`, the Reader on EOF, both
on shutdown. If each duty signalled completion itself, two writers would
race on one signal. Instead the duties only REQUEST an end; the session
thread observes both exits with join() and is the only code that ever sets
`completed` or calls `on_complete`.

=============================================================================
HANDOFF AND BACKPRESSURE
=============================================================================

The handoff is a rendezvous: the Reader puts a line into the one-slot queue
and then waits until the Router has HANDLED it (response written) before it
pushes the next line or calls recv() again.

    Reader                         Router
      │ put(line) ───────────────►  get()
      │ wait(handled)               dispatch, write response
      │ ◄──────────────────────────  handled.set()
      │ next line / recv()

So when the Reader meets EOF or a timeout, every line it framed before has
already been answered, and a slow Router pushes back on the client through
the kernel's TCP window. Both waits are sliced by poll_interval so a
blocked Reader still notices that the session or the server is going away.

=============================================================================
"""

import logging
import queue
import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, List, Optional, Tuple

from ..errors import LineTooLongError, RegistrationError
from ..protocol.commands import CommandContext, CommandDispatcher
from ..protocol.framer import LineFramer
from ..session_log import SessionLog
from ..storage.messages import MessageStore
from ..storage.users import UserStore
from .connection import Connection, ConnectionState
from .signals import ShutdownSignal


logger = logging.getLogger(__name__)


PROMPT = "> "
SHUTDOWN_NOTICE = "\n*** Server is shutting down. Goodbye.\n"
TIMEOUT_NOTICE = "\n*** Too slow, closing the connection.\n"
LINE_TOO_LONG_NOTICE = "\n*** Line too long, closing the connection.\n"

USERNAME_PROMPT = "Enter username (or type 'register'): "
PASSWORD_PROMPT = "Enter password: "
CHOOSE_USERNAME_PROMPT = "Choose a username: "
CHOOSE_PASSWORD_PROMPT = "Choose a password: "
REGISTERED = "Registration successful.\n"
LOGIN_FAILED = "Login failed. Goodbye.\n"


class EndReason(Enum):
    """Why a session ended."""
    EXIT = "exit"                      # User typed exit/quit
    CLOSED = "closed"                  # Client closed the stream
    SHUTDOWN = "shutdown"              # Server-wide shutdown signal
    TIMEOUT = "timeout"                # Client idle past idle_timeout
    PROTOCOL_ERROR = "protocol_error"  # Unframeable input (line too long)
    LOGIN_FAILED = "login_failed"      # Bad credentials or registration
    ERROR = "error"                    # Socket failure or unexpected exception
    STOPPED = "stopped"                # Duty left because the session already ended


Outcome = Tuple[EndReason, Optional[str]]


class _SessionEnd(Exception):
    """Unwinds a read that cannot continue; carries the outcome."""

    def __init__(self, reason: EndReason, notice: Optional[str] = None):
        super().__init__(reason.value)
        self.reason = reason
        self.notice = notice


class ConnectionSession:
    """
    Runs the protocol for one client.

    Usage (the server does this on a dedicated thread per connection):

        session = ConnectionSession(
            conn, dispatcher, messages, shutdown_signal,
            banner=motd, users=user_store, require_login=True,
            on_complete=session_group.done,
        )
        session.run()          # returns after the socket is closed

    Attributes:
        user: Logged-in username (None until login succeeds).
        end_reason: Why the session ended (None while running).
        commands_handled: Command lines dispatched by the Router.
        completed: Event set exactly once, after both duties exited and the
            connection was closed.
    """

    def __init__(
        self,
        conn: Connection,
        dispatcher: CommandDispatcher,
        messages: MessageStore,
        shutdown: ShutdownSignal,
        *,
        banner: str = "",
        users: Optional[UserStore] = None,
        require_login: bool = False,
        guest_name: str = "guest",
        max_read_messages: int = 30,
        max_line_length: int = 4096,
        on_complete: Optional[Callable[["ConnectionSession"], None]] = None,
    ):
        self.conn = conn
        self.dispatcher = dispatcher
        self.messages = messages
        self.shutdown = shutdown
        self.banner = banner
        self.users = users
        self.require_login = require_login
        self.guest_name = guest_name
        self.max_read_messages = max_read_messages
        self.framer = LineFramer(max_line_length=max_line_length)

        self.user: Optional[str] = None
        self.end_reason: Optional[EndReason] = None
        self.commands_handled = 0
        self.completed = threading.Event()

        self._on_complete = on_complete
        self._stopped = threading.Event()
        self._end_lock = threading.Lock()
        self._lines: "queue.Queue[str]" = queue.Queue(maxsize=1)
        self._handled = threading.Event()
        self._line_overflow = False
        self._pending: Deque[str] = deque()
        self._threads: List[threading.Thread] = []

    def __repr__(self) -> str:
        return f"<ConnectionSession {self.id} {self.conn.peer} user={self.user}>"

    @property
    def id(self) -> str:
        return self.conn.id

    @property
    def poll_interval(self) -> float:
        return self.conn.poll_interval

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self) -> None:
        """Serve the connection until it ends. Never raises."""
        started = time.time()
        logger.info(f"[{self.id}] Incoming connection from {self.conn.peer}")
        try:
            self._serve()
        except Exception as e:
            logger.exception(f"[{self.id}] Session failed: {e}")
            self._end(EndReason.ERROR)
        finally:
            self._join_duties()
            self.conn.close()
            self._complete(time.time() - started)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session has completed."""
        return self.completed.wait(timeout)

    def _serve(self) -> None:
        if self.banner:
            self.conn.send_text(self.banner)

        if self.require_login and self.users is not None:
            self.conn.state = ConnectionState.LOGIN
            self.user = self._login()
            if self.user is None:
                return
        else:
            self.user = self.guest_name

        self.conn.state = ConnectionState.ACTIVE
        self.conn.send_text(PROMPT)

        # Both duties are started together; neither runs before the prompt
        self._threads = [
            threading.Thread(
                target=self._run_duty,
                args=("reader", self._read_loop),
                name=f"session-{self.id}-reader",
                daemon=True,
            ),
            threading.Thread(
                target=self._run_duty,
                args=("router", self._route_loop),
                name=f"session-{self.id}-router",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()

        self._stopped.wait()

    def _join_duties(self) -> None:
        for thread in self._threads:
            thread.join()

    def _complete(self, duration: float) -> None:
        """Publish completion. Called once, by run(), after everything stopped."""
        if self.completed.is_set():
            raise RuntimeError(f"Session {self.id} completed twice")
        self.completed.set()

        reason = self.end_reason or EndReason.ERROR
        logger.info(f"[{self.id}] Connection closed: {self.conn.peer} ({reason.value})")
        SessionLog(
            session_id=self.id,
            peer=self.conn.peer,
            user=self.user,
            commands=self.commands_handled,
            duration_s=duration,
            end_reason=reason.value,
        ).emit()

        if self._on_complete is not None:
            self._on_complete(self)

    def _end(self, reason: EndReason, notice: Optional[str] = None) -> bool:
        """
        Request the end of the session.

        The first request records its reason, writes its notice (the final
        line the client sees) and wakes run(). Later requests do nothing.

        Returns:
            True for the request that ended the session.
        """
        with self._end_lock:
            if self.end_reason is not None:
                return False
            self.end_reason = reason
            if notice:
                self.conn.send_text(notice)
            self._stopped.set()
        logger.debug(f"[{self.id}] Session ending: {reason.value}")
        return True

    def _should_stop(self) -> bool:
        return self._stopped.is_set() or self.shutdown.is_set()

    def _stop_outcome(self) -> Outcome:
        if self.shutdown.is_set():
            return EndReason.SHUTDOWN, SHUTDOWN_NOTICE
        return EndReason.STOPPED, None

    def _run_duty(self, name: str, loop: Callable[[], Outcome]) -> None:
        reason, notice = EndReason.ERROR, None
        try:
            reason, notice = loop()
        except Exception as e:
            logger.exception(f"[{self.id}] {name} crashed: {e}")
        finally:
            logger.debug(f"[{self.id}] {name} exited ({reason.value})")
            self._end(reason, notice)

    # =========================================================================
    # INPUT
    # =========================================================================

    def _receive_lines(self) -> List[str]:
        """
        Read one chunk and frame it.

        Raises:
            _SessionEnd: On shutdown/stop, EOF, idle timeout, socket error
                or an over-long line.
        """
        if self._line_overflow:
            raise _SessionEnd(EndReason.PROTOCOL_ERROR, LINE_TOO_LONG_NOTICE)

        try:
            chunk = self.conn.read_chunk(self._should_stop)
        except TimeoutError:
            raise _SessionEnd(EndReason.TIMEOUT, TIMEOUT_NOTICE)
        except OSError as e:
            logger.info(f"[{self.id}] Read failed: {e}")
            raise _SessionEnd(EndReason.ERROR)

        if chunk is None:
            raise _SessionEnd(*self._stop_outcome())
        if not chunk:
            raise _SessionEnd(EndReason.CLOSED)

        try:
            return self.framer.feed(chunk)
        except LineTooLongError as e:
            logger.warning(f"[{self.id}] {e}")
            if e.lines:
                # Answer what the chunk completed first; the next call ends
                self._line_overflow = True
                return e.lines
            raise _SessionEnd(EndReason.PROTOCOL_ERROR, LINE_TOO_LONG_NOTICE)

    def _read_line(self) -> Optional[str]:
        """
        Synchronous line read used by the login phase, before the duties
        start. Ends the session and returns None if no line can be read.
        """
        try:
            while True:
                while self._pending:
                    line = self._pending.popleft().strip()
                    if line:
                        return line
                self._pending.extend(self._receive_lines())
        except _SessionEnd as end:
            self._end(end.reason, end.notice)
            return None

    def _push(self, line: str) -> bool:
        """
        Hand a line to the Router and wait until it has been handled.

        Returns:
            False if the session ended before the Router finished the line.
        """
        self._handled.clear()
        while True:
            if self._should_stop():
                return False
            try:
                self._lines.put(line, timeout=self.poll_interval)
                break
            except queue.Full:
                continue

        while not self._handled.wait(self.poll_interval):
            if self._should_stop():
                return False
        return True

    # =========================================================================
    # DUTIES
    # =========================================================================

    def _read_loop(self) -> Outcome:
        """Reader: socket → framer → line queue."""
        # Lines framed during login but not consumed by it go first
        while self._pending:
            line = self._pending.popleft()
            if line.strip() and not self._push(line):
                return self._stop_outcome()

        try:
            while True:
                for line in self._receive_lines():
                    if not line.strip():
                        continue
                    if not self._push(line):
                        return self._stop_outcome()
        except _SessionEnd as end:
            return end.reason, end.notice

    def _route_loop(self) -> Outcome:
        """Router: line queue → dispatcher → socket."""
        ctx = CommandContext(
            user=self.user or self.guest_name,
            messages=self.messages,
            max_read_messages=self.max_read_messages,
        )
        while True:
            if self.shutdown.is_set():
                return EndReason.SHUTDOWN, SHUTDOWN_NOTICE
            if self._stopped.is_set():
                return EndReason.STOPPED, None

            try:
                line = self._lines.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            # Framed lines carry no terminators; tolerate them anyway
            for part in line.split("\n"):
                command = part.strip()
                if not command:
                    continue
                result = self.dispatcher.dispatch(command, ctx)
                self.commands_handled += 1
                if result.end_session:
                    return EndReason.EXIT, result.text
                if not self.conn.send_text(result.text + PROMPT):
                    return EndReason.ERROR, None
            self._handled.set()

    # =========================================================================
    # LOGIN
    # =========================================================================

    def _login(self) -> Optional[str]:
        """
        Ask for credentials, or register a new account.

        Returns:
            The username, or None if the session ended instead.
        """
        self.conn.send_text(USERNAME_PROMPT)
        username = self._read_line()
        if username is None:
            return None

        if username.lower() == "register":
            return self._register()

        self.conn.send_text(PASSWORD_PROMPT)
        password = self._read_line()
        if password is None:
            return None

        if not self.users.authenticate(username, password):
            logger.info(f"[{self.id}] Failed login for {username!r}")
            self._end(EndReason.LOGIN_FAILED, LOGIN_FAILED)
            return None

        logger.info(f"[{self.id}] {username} logged in")
        self.conn.send_text(f"Welcome back, {username}!\n")
        return username

    def _register(self) -> Optional[str]:
        self.conn.send_text(CHOOSE_USERNAME_PROMPT)
        username = self._read_line()
        if username is None:
            return None

        self.conn.send_text(CHOOSE_PASSWORD_PROMPT)
        password = self._read_line()
        if password is None:
            return None

        try:
            self.users.register(username, password)
        except RegistrationError as e:
            logger.info(f"[{self.id}] Registration refused: {e}")
            self._end(EndReason.LOGIN_FAILED, f"Registration failed: {e}\n")
            return None

        self.conn.send_text(REGISTERED)
        return username
