"""
=============================================================================
BBSSERVER - A Line-Oriented Bulletin Board Server
=============================================================================

Clients connect with a Telnet client (or plain netcat), log in, and type
newline-terminated commands:

    $ telnet localhost 2323
    Enter username (or type 'register'): alice
    Enter password: ********
    Welcome back, alice!
    > post hello world
    Message posted.
    > read
    [2024-06-10 10:55:36] alice: hello world
    > exit
    Bye!

=============================================================================
PACKAGE LAYOUT
=============================================================================

    bbsserver/
    ├── __main__.py       CLI entry point (python -m bbsserver)
    ├── server.py         BBSServer: accept, spawn, track, shut down sessions
    ├── config.py         ServerConfig dataclass
    ├── motd.py           Welcome banner rendering
    ├── session_log.py    Logging setup and per-session summaries
    ├── errors.py         Exception hierarchy
    ├── core/
    │   ├── socket_server.py   Listening socket and accept loop
    │   ├── connection.py      Client socket wrapper
    │   ├── session.py         Reader/Router duties of one connection
    │   └── signals.py         ShutdownSignal and SessionGroup
    ├── protocol/
    │   ├── framer.py          Bytes → lines, Telnet negotiation stripped
    │   └── commands.py        Command table and dispatcher
    └── storage/
        ├── messages.py        Shared message board
        └── users.py           Credential store

=============================================================================
QUICK START
=============================================================================

    from bbsserver import BBSServer, ServerConfig

    server = BBSServer(ServerConfig(port=2323, require_login=False))
    server.run()

=============================================================================
"""

from ._version import __version__
from .config import ServerConfig
from .errors import BBSError, ConfigError, LineTooLongError, RegistrationError
from .server import BBSServer, create_server
from .core import ConnectionSession, EndReason, ShutdownSignal, SessionGroup
from .protocol import LineFramer, strip_negotiation, CommandTable, default_commands
from .storage import (
    Message,
    MessageStore,
    MemoryMessageStore,
    FileMessageStore,
    UserStore,
    MemoryUserStore,
    JsonUserStore,
)

__all__ = [
    "__version__",
    "BBSServer",
    "create_server",
    "ServerConfig",
    "BBSError",
    "ConfigError",
    "LineTooLongError",
    "RegistrationError",
    "ConnectionSession",
    "EndReason",
    "ShutdownSignal",
    "SessionGroup",
    "LineFramer",
    "strip_negotiation",
    "CommandTable",
    "default_commands",
    "Message",
    "MessageStore",
    "MemoryMessageStore",
    "FileMessageStore",
    "UserStore",
    "MemoryUserStore",
    "JsonUserStore",
]
