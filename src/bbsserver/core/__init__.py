"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking and concurrency plumbing under the BBS protocol.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  SOCKET SERVER                                                       │
    │  • Listening socket, accept loop, SIGINT/SIGTERM                    │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ one Connection per client
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  CONNECTION SESSION (one thread)                                     │
    │  • Banner, login, prompt                                            │
    │  • Reader thread + Router thread joined by a one-slot line queue    │
    │  • Publishes its completion exactly once                            │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ reads/writes through
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  CONNECTION                                                          │
    │  • recv() in poll slices, thread-safe writes, orderly close         │
    └─────────────────────────────────────────────────────────────────────┘

    SIGNALS: ShutdownSignal (one-shot broadcast) and SessionGroup (join set)
    are shared by the server and every session.

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .session import ConnectionSession, EndReason
from .signals import ShutdownSignal, SessionGroup

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "ConnectionSession",
    "EndReason",
    "ShutdownSignal",
    "SessionGroup",
]
