"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Generator, List, Tuple

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bbsserver import BBSServer, ServerConfig
from bbsserver.core import Connection, ConnectionSession, ShutdownSignal
from bbsserver.protocol import CommandDispatcher, default_commands
from bbsserver.storage import MemoryMessageStore, MemoryUserStore


POLL = 0.05


class Client:
    """Test-side end of a connection with simple blocking helpers."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.sock.settimeout(0.1)
        self._buffer = b""

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def send_line(self, text: str) -> None:
        self.send(text.encode("utf-8") + b"\r\n")

    def read_until(self, marker: str, timeout: float = 5.0) -> str:
        """Read until ``marker`` arrives; return everything up to and including it."""
        wanted = marker.encode("utf-8")
        deadline = time.time() + timeout
        while wanted not in self._buffer:
            if time.time() > deadline:
                raise AssertionError(f"Timed out waiting for {marker!r}, got {self._buffer!r}")
            try:
                chunk = self.sock.recv(4096)
            except socket.timeout:
                continue
            if not chunk:
                raise AssertionError(f"Connection closed waiting for {marker!r}, got {self._buffer!r}")
            self._buffer += chunk
        end = self._buffer.index(wanted) + len(wanted)
        data, self._buffer = self._buffer[:end], self._buffer[end:]
        return data.decode("utf-8")

    def read_to_eof(self, timeout: float = 5.0) -> str:
        """Read until the server closes the connection."""
        deadline = time.time() + timeout
        while True:
            if time.time() > deadline:
                raise AssertionError(f"Connection still open, got {self._buffer!r}")
            try:
                chunk = self.sock.recv(4096)
            except socket.timeout:
                continue
            except ConnectionResetError:
                break
            if not chunk:
                break
            self._buffer += chunk
        data, self._buffer = self._buffer, b""
        return data.decode("utf-8")

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


class SessionHarness:
    """A ConnectionSession running on a socketpair."""

    def __init__(self, session: ConnectionSession, client: Client, thread: threading.Thread):
        self.session = session
        self.client = client
        self.thread = thread

    def join(self, timeout: float = 5.0) -> None:
        self.thread.join(timeout)
        assert not self.thread.is_alive(), "session thread did not finish"


@pytest.fixture
def messages() -> MemoryMessageStore:
    return MemoryMessageStore(max_messages=1000)


@pytest.fixture
def users() -> MemoryUserStore:
    store = MemoryUserStore()
    store.register("alice", "secret")
    return store


@pytest.fixture
def shutdown_signal() -> ShutdownSignal:
    return ShutdownSignal()


@pytest.fixture
def make_session(messages, shutdown_signal) -> Generator[Callable[..., SessionHarness], None, None]:
    """Factory starting sessions over socketpairs; all are torn down after the test."""
    dispatcher = CommandDispatcher(default_commands())
    started: List[SessionHarness] = []

    def factory(**kwargs) -> SessionHarness:
        server_sock, client_sock = socket.socketpair()
        conn = Connection(
            socket=server_sock,
            address=("127.0.0.1", 40000 + len(started)),
            poll_interval=POLL,
            idle_timeout=kwargs.pop("idle_timeout", None),
            linger=0.1,
        )
        kwargs.setdefault("banner", "")
        session = ConnectionSession(
            conn,
            dispatcher,
            kwargs.pop("messages", messages),
            kwargs.pop("shutdown", shutdown_signal),
            **kwargs,
        )
        thread = threading.Thread(target=session.run, daemon=True)
        thread.start()
        harness = SessionHarness(session, Client(client_sock), thread)
        started.append(harness)
        return harness

    yield factory

    shutdown_signal.trigger()
    for harness in started:
        harness.thread.join(5.0)
        harness.client.close()


@pytest.fixture
def config() -> ServerConfig:
    """Test server configuration: loopback, OS-chosen port, fast polling."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        poll_interval=POLL,
        require_login=False,
        messages_file="",
        users_file="",
        motd_file="",
        shutdown_timeout=5.0,
    )


class RunningServer:
    """BBSServer running in a background thread."""

    def __init__(self, server: BBSServer):
        self.server = server
        self._thread = threading.Thread(target=server.run, daemon=True)
        self.clients: List[Client] = []

    def start(self) -> "RunningServer":
        self._thread.start()
        if not self.server.wait_until_ready(5.0):
            raise RuntimeError("Server failed to start")
        return self

    @property
    def address(self) -> Tuple[str, int]:
        return self.server.address

    def connect(self) -> Client:
        client = Client(socket.create_connection(self.address, timeout=5.0))
        self.clients.append(client)
        return client

    def stop(self) -> None:
        self.server.shutdown(timeout=5.0)
        self._thread.join(timeout=5.0)
        for client in self.clients:
            client.close()


@pytest.fixture
def make_server(config) -> Generator[Callable[..., RunningServer], None, None]:
    running: List[RunningServer] = []

    def factory(cfg: ServerConfig = None, **kwargs) -> RunningServer:
        kwargs.setdefault("messages", MemoryMessageStore(max_messages=1000))
        kwargs.setdefault("banner", "Welcome!\n")
        srv = RunningServer(BBSServer(cfg or config, **kwargs)).start()
        running.append(srv)
        return srv

    yield factory

    for srv in running:
        srv.stop()
