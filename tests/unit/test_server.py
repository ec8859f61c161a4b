"""
Tests for BBSServer and SocketServer over real loopback sockets.
"""

import dataclasses
import socket
import threading

import pytest

from bbsserver import create_server
from bbsserver.__main__ import build_parser, main
from bbsserver.config import ServerConfig
from bbsserver.core import socket_server as socket_server_module
from bbsserver.core.connection import Connection
from bbsserver.core.session import PROMPT, SHUTDOWN_NOTICE
from bbsserver.core.socket_server import SocketServer
from bbsserver.protocol.commands import POSTED
from bbsserver.server import BUSY_NOTICE, BBSServer
from bbsserver.storage import MemoryMessageStore, MemoryUserStore


HELP_END = "\n\n" + PROMPT


class TestBBSServer:
    """End-to-end behaviour of the server."""

    def test_banner_and_prompt(self, make_server):
        srv = make_server()
        client = srv.connect()
        assert client.read_until(PROMPT) == "Welcome!\n" + PROMPT

    def test_binds_ephemeral_port(self, make_server):
        srv = make_server()
        host, port = srv.address
        assert host == "127.0.0.1"
        assert port != 0
        assert srv.server.is_running

    def test_sessions_are_independent(self, make_server):
        srv = make_server()
        a, b = srv.connect(), srv.connect()
        a.read_until(PROMPT)
        b.read_until(PROMPT)

        a.send_line("post from a")
        assert a.read_until(PROMPT) == POSTED + PROMPT
        b.send_line("read")
        assert "guest: from a" in b.read_until(PROMPT)

        a.send_line("exit")
        a.read_to_eof()
        b.send_line("help")
        assert b.read_until(HELP_END).startswith("*** Commands:")

    def test_shutdown_reaches_every_session(self, make_server):
        srv = make_server()
        clients = [srv.connect() for _ in range(5)]
        for client in clients:
            client.read_until(PROMPT)
        sessions = srv.server.sessions()
        assert len(sessions) == 5

        assert srv.server.shutdown(timeout=5.0) is True

        # shutdown() only returns once every session has completed
        assert all(s.completed.is_set() for s in sessions)
        assert srv.server.session_count == 0
        for client in clients:
            assert client.read_to_eof() == SHUTDOWN_NOTICE

    def test_shutdown_is_idempotent(self, make_server):
        srv = make_server()
        assert srv.server.shutdown(timeout=5.0)
        assert srv.server.shutdown(timeout=5.0)
        assert srv.server.shutdown_signal.is_set()

    def test_session_count_drops_after_exit(self, make_server):
        srv = make_server()
        client = srv.connect()
        client.read_until(PROMPT)
        [session] = srv.server.sessions()

        client.send_line("exit")
        client.read_to_eof()
        assert session.wait(5.0)
        assert srv.server.session_count == 0

    def test_max_sessions(self, make_server, config):
        srv = make_server(dataclasses.replace(config, max_sessions=1))
        first = srv.connect()
        first.read_until(PROMPT)

        second = srv.connect()
        assert second.read_to_eof() == BUSY_NOTICE

        first.send_line("help")
        assert first.read_until(HELP_END).startswith("*** Commands:")

    def test_concurrent_posts(self, make_server):
        srv = make_server()
        writers, posts = 8, 10
        clients = [srv.connect() for _ in range(writers)]
        errors = []

        def run(n, client):
            try:
                client.read_until(PROMPT)
                for i in range(posts):
                    client.send_line(f"post {n}-{i}")
                    assert client.read_until(PROMPT) == POSTED + PROMPT
            except AssertionError as e:
                errors.append(e)

        threads = [threading.Thread(target=run, args=(n, c)) for n, c in enumerate(clients)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10.0)

        assert errors == []
        assert srv.server.messages.count() == writers * posts

    def test_login_required(self, make_server, config):
        users = MemoryUserStore()
        users.register("alice", "secret")
        srv = make_server(dataclasses.replace(config, require_login=True), users=users)

        client = srv.connect()
        client.read_until("Enter username (or type 'register'): ")
        client.send_line("alice")
        client.read_until("Enter password: ")
        client.send_line("secret")
        assert client.read_until(PROMPT).endswith("Welcome back, alice!\n" + PROMPT)

    def test_default_banner_from_motd(self, config):
        server = create_server(config)
        assert "Type 'help'" in server.banner
        assert "127.0.0.1:0" in server.banner

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            create_server(ServerConfig(port=-1))


class TestConnectionRegistration:
    """_handle_connection() against a concurrent shutdown."""

    def make_conn(self):
        ours, theirs = socket.socketpair()
        theirs.settimeout(5.0)
        self.peers.append(theirs)
        return Connection(socket=ours, address=("127.0.0.1", 1), poll_interval=0.05)

    def setup_method(self):
        self.peers = []

    def teardown_method(self):
        for sock in self.peers:
            sock.close()

    def read_to_eof(self, sock):
        data = b""
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                return data.decode("utf-8")
            data += chunk

    def test_connection_after_shutdown_is_rejected(self, config):
        server = BBSServer(config, messages=MemoryMessageStore(), banner="")
        server.shutdown_signal.trigger()

        server._handle_connection(self.make_conn())

        assert self.read_to_eof(self.peers[0]) == SHUTDOWN_NOTICE
        assert server.session_count == 0
        assert server.shutdown(timeout=1.0) is True

    def test_session_registered_before_shutdown_check(self, config, monkeypatch):
        """A shutdown() racing the handler always has the session to wait on."""
        server = BBSServer(config, messages=MemoryMessageStore(), banner="")
        signal = server.shutdown_signal
        is_set = signal.is_set
        seen = []

        def recording_is_set():
            if not seen:
                seen.append(server.session_count)
            return is_set()

        monkeypatch.setattr(signal, "is_set", recording_is_set)
        server._handle_connection(self.make_conn())

        assert seen == [1]
        assert server.shutdown(timeout=5.0) is True
        assert server.session_count == 0
        assert self.read_to_eof(self.peers[0]).endswith(SHUTDOWN_NOTICE)

    def test_rejected_over_limit_leaves_group(self, config):
        server = BBSServer(
            dataclasses.replace(config, max_sessions=1),
            messages=MemoryMessageStore(),
            banner="",
        )
        server._handle_connection(self.make_conn())
        server._handle_connection(self.make_conn())

        assert self.read_to_eof(self.peers[1]) == BUSY_NOTICE
        assert server.session_count == 1
        assert server.shutdown(timeout=5.0) is True


class FakeListener:
    """Stands in for a listening socket with a scripted accept()."""

    def __init__(self, server, script):
        self.server = server
        self.script = list(script)

    def accept(self):
        if not self.script:
            self.server.shutdown()
            raise socket.timeout()
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


class TestSocketServer:
    """Accept loop behaviour."""

    @pytest.fixture(autouse=True)
    def no_backoff(self, monkeypatch):
        monkeypatch.setattr(socket_server_module, "ACCEPT_ERROR_BACKOFF", 0)

    def make_accepted(self):
        ours, theirs = socket.socketpair()
        self.peers.append(theirs)
        return ours, ("127.0.0.1", 50000 + len(self.peers))

    def setup_method(self):
        self.peers = []

    def teardown_method(self):
        for peer in self.peers:
            peer.close()

    def test_accept_error_does_not_stop_loop(self, config):
        server = SocketServer(config)
        handled = []
        server._running = True
        server._socket = FakeListener(server, [
            OSError(24, "Too many open files"),
            self.make_accepted(),
            ConnectionAbortedError(),
            self.make_accepted(),
        ])

        server._accept_loop(handled.append)

        assert [c.peer for c in handled] == ["127.0.0.1:50001", "127.0.0.1:50002"]
        for conn in handled:
            conn.linger = 0
            conn.close()

    def test_handler_failure_closes_connection(self, config):
        server = SocketServer(config)
        seen = []

        def handler(conn):
            seen.append(conn)
            raise RuntimeError("handler bug")

        server._running = True
        server._socket = FakeListener(server, [self.make_accepted(), self.make_accepted()])
        server._accept_loop(handler)

        assert len(seen) == 2
        assert all(conn.is_closed for conn in seen)

    def test_bind_failure_raises(self, config):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            port = blocker.getsockname()[1]
            server = SocketServer(dataclasses.replace(config, port=port))
            with pytest.raises(OSError):
                server.start(lambda conn: None)
            assert not server.wait_until_listening(0)
        finally:
            blocker.close()

    def test_address_before_start(self, config):
        assert SocketServer(config).address == ("127.0.0.1", 0)


class TestCLI:
    """Tests for the command-line entry point."""

    def test_parser_defaults(self):
        args = build_parser(ServerConfig()).parse_args([])
        assert args.port == 2323
        assert args.require_login is True
        assert args.log_level == "INFO"

    def test_parser_options(self):
        args = build_parser(ServerConfig()).parse_args(
            ["--port", "2424", "--no-login", "--idle-timeout", "60", "-l", "debug"]
        )
        assert args.port == 2424
        assert args.require_login is False
        assert args.idle_timeout == 60.0
        assert args.log_level == "DEBUG"

    def test_invalid_config_exits_with_error(self, capsys):
        assert main(["--port", "70000"]) == 1
        assert "Invalid port" in capsys.readouterr().err

    def test_invalid_environment(self, monkeypatch, capsys):
        monkeypatch.setenv("BBS_PORT", "abc")
        assert main([]) == 1
        assert "environment" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "bbsserver" in capsys.readouterr().out
