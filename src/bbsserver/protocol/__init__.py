"""
The text protocol spoken over each connection.

    bytes ──► LineFramer ──► logical line ──► CommandDispatcher ──► text

- framer:   byte stream → lines, Telnet negotiation stripped
- commands: command table and dispatcher (help, post, read, exit)
"""

from .framer import LineFramer, strip_negotiation, IAC
from .commands import (
    Command,
    CommandContext,
    CommandDispatcher,
    CommandResult,
    CommandTable,
    default_commands,
    split_command,
)

__all__ = [
    "LineFramer",
    "strip_negotiation",
    "IAC",
    "Command",
    "CommandContext",
    "CommandDispatcher",
    "CommandResult",
    "CommandTable",
    "default_commands",
    "split_command",
]
