"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the BBS server.

The configuration is a flat dataclass read ONCE at startup. Nothing in the
server re-reads it later, so a running server never changes behaviour
underneath a connected client.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m bbsserver --port 2424                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── BBS_PORT=2424 python -m bbsserver                         │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_optional_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


@dataclass
class ServerConfig:
    """
    Configuration for the BBS server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size

    SESSION SETTINGS
    - poll_interval, idle_timeout, write_timeout, max_sessions, max_line_length,
      shutdown_timeout, require_login, guest_name

    BOARD SETTINGS
    - max_messages, max_read_messages

    FILES
    - messages_file, users_file, motd_file

    LOGGING
    - debug, log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """The IP address to bind to."""

    port: int = 2323
    """
    The port number to listen on.
    - 23 - Standard Telnet (requires root on Unix)
    - 2323 - The usual unprivileged Telnet port
    - 0 - Let the OS pick a free port (tests)
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 512
    """How many bytes one recv() asks for."""

    # ─────────────────────────────────────────────────────────────────────
    # SESSION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    poll_interval: float = 0.5
    """
    Seconds a blocking read or queue wait lasts before the session looks at
    the shutdown signal again. Smaller = faster shutdown, more wakeups.
    """

    idle_timeout: Optional[float] = None
    """
    Seconds of client silence before the session is closed as "too slow".
    None = wait forever.
    """

    write_timeout: float = 10.0
    """
    Seconds a response may wait on a client that is not reading (full TCP
    window) before the session gives up on it.
    """

    max_sessions: Optional[int] = None
    """Concurrent session limit. None = unbounded."""

    max_line_length: int = 4096
    """Bytes a single command line may accumulate before it is rejected."""

    shutdown_timeout: float = 10.0
    """How long run() waits for live sessions to finish during shutdown."""

    require_login: bool = True
    """Ask for username/password (or registration) before the prompt."""

    guest_name: str = "guest"
    """Author name used for posts when login is disabled."""

    # ─────────────────────────────────────────────────────────────────────
    # BOARD SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_messages: int = 1_000_000
    """Messages kept in memory; the oldest are dropped beyond this."""

    max_read_messages: int = 30
    """Upper bound (and default) for the number of messages `read` shows."""

    # ─────────────────────────────────────────────────────────────────────
    # FILES
    # ─────────────────────────────────────────────────────────────────────

    messages_file: str = "messages.txt"
    """Append-only message log. Empty string = keep messages in memory only."""

    users_file: str = "users.json"
    """JSON credential store."""

    motd_file: str = "motd.txt"
    """Welcome banner template ({{VERSION}}, {{HOST}}, {{PORT}})."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    debug: bool = False
    """Verbose logging; overrides log_level with DEBUG."""

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """Log format: 'json' or 'text'."""

    @property
    def effective_log_level(self) -> str:
        """The level actually applied to the loggers."""
        return "DEBUG" if self.debug else self.log_level.upper()

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        BBS_HOST           Server host (default: 0.0.0.0)
        BBS_PORT           Server port (default: 2323)
        BBS_DEBUG          Debug logging (default: off)
        BBS_MAX_MESSAGES   Messages kept in memory (default: 1000000)
        BBS_MAX_READ       Messages shown by `read` (default: 30)
        BBS_IDLE_TIMEOUT   Idle seconds before disconnect (default: none)
        BBS_MAX_SESSIONS   Concurrent session limit (default: none)
        BBS_REQUIRE_LOGIN  Ask for credentials (default: on)
        BBS_MESSAGES_FILE  Message log path (default: messages.txt)
        BBS_USERS_FILE     Credential store path (default: users.json)
        BBS_MOTD_FILE      Banner template path (default: motd.txt)
        BBS_LOG_LEVEL      Logging level (default: INFO)
        BBS_LOG_FORMAT     text or json (default: text)

        =====================================================================
        """
        return cls(
            host=os.getenv("BBS_HOST", "0.0.0.0"),
            port=int(os.getenv("BBS_PORT", "2323")),
            debug=_env_bool("BBS_DEBUG", False),
            max_messages=int(os.getenv("BBS_MAX_MESSAGES", "1000000")),
            max_read_messages=int(os.getenv("BBS_MAX_READ", "30")),
            idle_timeout=_env_optional_float("BBS_IDLE_TIMEOUT", None),
            max_sessions=_env_optional_int("BBS_MAX_SESSIONS", None),
            require_login=_env_bool("BBS_REQUIRE_LOGIN", True),
            messages_file=os.getenv("BBS_MESSAGES_FILE", "messages.txt"),
            users_file=os.getenv("BBS_USERS_FILE", "users.json"),
            motd_file=os.getenv("BBS_MOTD_FILE", "motd.txt"),
            log_level=os.getenv("BBS_LOG_LEVEL", "INFO"),
            log_format=os.getenv("BBS_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        We validate at startup, not at first use, so a bad value is reported
        before any client connects.
        """
        if not 0 <= self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ConfigError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ConfigError("buffer_size must be >= 1")

        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be > 0")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ConfigError("idle_timeout must be > 0")

        if self.write_timeout <= 0:
            raise ConfigError("write_timeout must be > 0")

        if self.max_sessions is not None and self.max_sessions < 1:
            raise ConfigError("max_sessions must be >= 1")

        if self.max_line_length < 1:
            raise ConfigError("max_line_length must be >= 1")

        if self.max_messages < 1:
            raise ConfigError("max_messages must be >= 1")

        if not 1 <= self.max_read_messages <= self.max_messages:
            raise ConfigError("max_read_messages must be between 1 and max_messages")

        if not self.guest_name.strip():
            raise ConfigError("guest_name must not be blank")

        if self.log_format not in ("text", "json"):
            raise ConfigError(f"Invalid log_format: {self.log_format!r}. Use 'text' or 'json'.")
