"""
=============================================================================
BBS SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (0.0.0.0:2323, login required)
    python -m bbsserver

    # Custom port, verbose logging
    python -m bbsserver --port 2424 --debug

    # Open board, no accounts, messages kept in memory only
    python -m bbsserver --no-login --messages-file ""

Every option falls back to the matching BBS_* environment variable (see
ServerConfig.from_env), then to the built-in default.

=============================================================================
"""

import argparse
import sys
from typing import List, Optional

from ._version import __version__
from .config import ServerConfig
from .errors import ConfigError
from .server import BBSServer
from .session_log import setup_logging


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bbsserver",
        description="Line-oriented bulletin board server (Telnet compatible)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m bbsserver                         # Run with defaults
  python -m bbsserver --port 2424             # Custom port
  python -m bbsserver --no-login              # Everyone posts as 'guest'
  python -m bbsserver --idle-timeout 300      # Drop clients idle for 5 minutes
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})",
    )

    # ─────────────────────────────────────────────────────────────────────
    # SESSION ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=defaults.idle_timeout,
        help="Seconds of client silence before disconnecting (default: never)",
    )
    parser.add_argument(
        "--max-sessions",
        type=int,
        default=defaults.max_sessions,
        help="Maximum concurrent sessions (default: unlimited)",
    )
    parser.add_argument(
        "--no-login",
        dest="require_login",
        action="store_false",
        default=defaults.require_login,
        help="Skip login; all posts are made as 'guest'",
    )

    # ─────────────────────────────────────────────────────────────────────
    # BOARD ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--max-messages",
        type=int,
        default=defaults.max_messages,
        help=f"Messages kept in memory (default: {defaults.max_messages})",
    )
    parser.add_argument(
        "--max-read",
        type=int,
        default=defaults.max_read_messages,
        help=f"Messages shown by 'read' (default: {defaults.max_read_messages})",
    )
    parser.add_argument(
        "--messages-file",
        default=defaults.messages_file,
        help="Append-only message log, empty for memory only "
             f"(default: {defaults.messages_file})",
    )
    parser.add_argument(
        "--users-file",
        default=defaults.users_file,
        help=f"Credential store (default: {defaults.users_file})",
    )
    parser.add_argument(
        "--motd",
        dest="motd_file",
        default=defaults.motd_file,
        help=f"Welcome banner template (default: {defaults.motd_file})",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        default=defaults.debug,
        help="Verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level})",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=defaults.log_format,
        help=f"Log output format (default: {defaults.log_format})",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"bbsserver {__version__}",
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig(
        host=args.host,
        port=args.port,
        debug=args.debug,
        max_messages=args.max_messages,
        max_read_messages=args.max_read,
        idle_timeout=args.idle_timeout,
        max_sessions=args.max_sessions,
        require_login=args.require_login,
        messages_file=args.messages_file,
        users_file=args.users_file,
        motd_file=args.motd_file,
        log_level=args.log_level,
        log_format=args.log_format,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, build the server and run it until shutdown."""
    try:
        defaults = ServerConfig.from_env()
    except ValueError as e:
        print(f"Error: invalid environment configuration: {e}", file=sys.stderr)
        return 1

    args = build_parser(defaults).parse_args(argv)
    config = config_from_args(args)

    try:
        config.validate()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.effective_log_level, config.log_format)

    try:
        server = BBSServer(config)
        server.run()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
