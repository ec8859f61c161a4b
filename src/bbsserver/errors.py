"""
Exception hierarchy for the BBS server.

Only conditions a caller can act on get their own type. Plain I/O failures
stay as the builtin ``OSError`` / ``TimeoutError`` the socket layer raises.
"""

from typing import Sequence


class BBSError(Exception):
    """Base class for all server-specific errors."""


class ConfigError(BBSError, ValueError):
    """Raised by ServerConfig.validate() for an unusable configuration."""


class LineTooLongError(BBSError):
    """
    A client kept sending bytes without ever terminating the line.

    ``lines`` holds the lines the same chunk completed before the overflow;
    they are valid input and still owed an answer.
    """

    def __init__(self, limit: int, lines: Sequence[str] = ()):
        super().__init__(f"Line exceeds {limit} bytes")
        self.limit = limit
        self.lines = list(lines)


class RegistrationError(BBSError):
    """A new account could not be created (blank or taken username, ...)."""
