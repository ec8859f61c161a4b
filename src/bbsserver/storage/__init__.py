"""
Shared state collaborators: the message board and the user accounts.

Both are explicit objects injected into every session. Each guards its own
state with a lock, so sessions never touch process-wide variables.
"""

from .messages import (
    Message,
    MessageStore,
    MemoryMessageStore,
    FileMessageStore,
)
from .users import (
    UserStore,
    MemoryUserStore,
    JsonUserStore,
    hash_password,
    verify_password,
)

__all__ = [
    "Message",
    "MessageStore",
    "MemoryMessageStore",
    "FileMessageStore",
    "UserStore",
    "MemoryUserStore",
    "JsonUserStore",
    "hash_password",
    "verify_password",
]
