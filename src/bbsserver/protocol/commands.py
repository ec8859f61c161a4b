"""
=============================================================================
COMMAND DISPATCH
=============================================================================

Maps a command line typed by the user to the function that answers it.

=============================================================================
DISPATCH FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         DISPATCH FLOW                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Logical line                                                       │
    │   "POST Hello World"                                                 │
    │        │                                                             │
    │        ▼                                                             │
    │   split: keyword="post" (lowercased)   args="Hello World" (verbatim)│
    │        │                                                             │
    │        ▼                                                             │
    │   ┌─────────────────────────────────────────────────────────────┐   │
    │   │  COMMAND TABLE (immutable after startup)                     │   │
    │   │    help  → help_command                                      │   │
    │   │    post  → post_command        ← MATCH!                      │   │
    │   │    read  → read_command                                      │   │
    │   │    exit  → exit_command   (alias: quit)                      │   │
    │   └─────────────────────────────────────────────────────────────┘   │
    │        │                                                             │
    │        ▼                                                             │
    │   post_command(ctx, "Hello World") → CommandResult("Message posted.")│
    │                                                                      │
    │   No match → "*** Invalid command, try 'help'" (session continues)  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Only the keyword is case-insensitive. Everything after it is handed to the
handler exactly as typed, minus surrounding whitespace.

=============================================================================
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ..storage.messages import MessageStore


logger = logging.getLogger(__name__)


INVALID_COMMAND = "*** Invalid command, try 'help'\n"
INTERNAL_ERROR = "*** Something went wrong, please try again\n"
GOODBYE = "Bye!\n"
POST_USAGE = "Usage: post <message>\n"
READ_USAGE = "Usage: read [count]\n"
POSTED = "Message posted.\n"
NO_MESSAGES = "No messages yet.\n"


@dataclass(frozen=True)
class CommandResult:
    """What a handler wants written back, and whether the session ends."""
    text: str = ""
    end_session: bool = False


@dataclass
class CommandContext:
    """Per-session state a handler may use."""
    user: str
    messages: MessageStore
    max_read_messages: int = 30


Handler = Callable[[CommandContext, str], CommandResult]


@dataclass(frozen=True)
class Command:
    """
    A registered command.

        @table.command("post", "post a message to the board", usage="post <message>")
        def post_command(ctx, args):
            ...

        Command(
            name="post",
            handler=post_command,
            summary="post a message to the board",
            usage="post <message>",
            aliases=(),
        )
    """
    name: str
    handler: Handler
    summary: str
    usage: str
    aliases: Tuple[str, ...] = ()


class CommandTable:
    """
    Registry of commands, frozen into an immutable mapping at startup.

    Usage:
        table = CommandTable()

        @table.command("ping", "answer with pong")
        def ping(ctx, args):
            return CommandResult("pong\\n")

        dispatcher = CommandDispatcher(table)
    """

    def __init__(self):
        self._commands: List[Command] = []
        self._by_keyword: Dict[str, Command] = {}
        self._frozen: Optional[Mapping[str, Command]] = None

    def add_command(
        self,
        name: str,
        handler: Handler,
        summary: str,
        usage: Optional[str] = None,
        aliases: Tuple[str, ...] = (),
    ) -> Command:
        """
        Register a command under its name and aliases.

        Raises:
            RuntimeError: If the table was already frozen.
            ValueError: If a keyword is already taken.
        """
        if self._frozen is not None:
            raise RuntimeError("Command table is frozen")

        command = Command(
            name=name.lower(),
            handler=handler,
            summary=summary,
            usage=usage or name.lower(),
            aliases=tuple(a.lower() for a in aliases),
        )
        for keyword in (command.name,) + command.aliases:
            if keyword in self._by_keyword:
                raise ValueError(f"Command keyword already registered: {keyword}")

        self._commands.append(command)
        for keyword in (command.name,) + command.aliases:
            self._by_keyword[keyword] = command
        return command

    def command(
        self,
        name: str,
        summary: str,
        usage: Optional[str] = None,
        aliases: Tuple[str, ...] = (),
    ) -> Callable[[Handler], Handler]:
        """Decorator form of add_command()."""
        def decorator(handler: Handler) -> Handler:
            self.add_command(name, handler, summary, usage=usage, aliases=aliases)
            return handler
        return decorator

    def freeze(self) -> Mapping[str, Command]:
        """Return the read-only keyword → Command mapping."""
        if self._frozen is None:
            self._frozen = MappingProxyType(dict(self._by_keyword))
        return self._frozen

    def match(self, keyword: str) -> Optional[Command]:
        return self._by_keyword.get(keyword.lower())

    @property
    def commands(self) -> List[Command]:
        """Registered commands in registration order (aliases not repeated)."""
        return list(self._commands)

    def help_text(self) -> str:
        """
        Render the command summary:

            *** Commands:
                help           --- show this help message
                post <message> --- post a message to the board
        """
        width = max((len(c.usage) for c in self._commands), default=0)
        lines = ["*** Commands:"]
        for c in self._commands:
            lines.append(f"    {c.usage.ljust(width)} --- {c.summary}")
        return "\n".join(lines) + "\n\n"


def split_command(line: str) -> Tuple[str, str]:
    """
    Split a line into (lowercased keyword, trimmed argument text).

        >>> split_command("  POST  Hello World ")
        ('post', 'Hello World')
    """
    parts = line.strip().split(None, 1)
    if not parts:
        return "", ""
    keyword = parts[0].lower()
    args = parts[1].strip() if len(parts) > 1 else ""
    return keyword, args


class CommandDispatcher:
    """
    Resolves a command line against a frozen CommandTable and runs it.

    Handler exceptions are logged and answered with a generic error line;
    they never end the session.
    """

    def __init__(self, table: CommandTable):
        self._commands = table.freeze()

    @property
    def commands(self) -> Mapping[str, Command]:
        return self._commands

    def dispatch(self, line: str, ctx: CommandContext) -> CommandResult:
        keyword, args = split_command(line)
        command = self._commands.get(keyword)
        if command is None:
            logger.debug(f"Unknown command from {ctx.user}: {keyword!r}")
            return CommandResult(INVALID_COMMAND)

        try:
            return command.handler(ctx, args)
        except Exception as e:
            logger.exception(f"Command {command.name!r} failed for {ctx.user}: {e}")
            return CommandResult(INTERNAL_ERROR)


# =============================================================================
# BUILT-IN COMMANDS
# =============================================================================

def default_commands() -> CommandTable:
    """Build the board's command table: help, post, read, exit."""
    table = CommandTable()

    @table.command("help", "show this help message")
    def help_command(ctx: CommandContext, args: str) -> CommandResult:
        return CommandResult(table.help_text())

    @table.command("post", "post a message to the board", usage="post <message>")
    def post_command(ctx: CommandContext, args: str) -> CommandResult:
        if not args:
            return CommandResult(POST_USAGE)
        ctx.messages.append_message(ctx.user, args)
        return CommandResult(POSTED)

    @table.command("read", "read recent messages", usage="read [count]")
    def read_command(ctx: CommandContext, args: str) -> CommandResult:
        limit = ctx.max_read_messages
        if args:
            try:
                limit = int(args)
            except ValueError:
                return CommandResult(READ_USAGE)
            if limit < 1:
                return CommandResult(READ_USAGE)
            limit = min(limit, ctx.max_read_messages)

        messages = ctx.messages.recent_messages(limit)
        if not messages:
            return CommandResult(NO_MESSAGES)
        return CommandResult("".join(m.render() + "\n" for m in messages))

    @table.command("exit", "quit the session", aliases=("quit",))
    def exit_command(ctx: CommandContext, args: str) -> CommandResult:
        return CommandResult(GOODBYE, end_session=True)

    table.freeze()
    return table
