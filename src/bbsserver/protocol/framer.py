"""
=============================================================================
LINE FRAMING
=============================================================================

Turns the raw byte stream of a connection into logical command lines.

=============================================================================
TCP IS A BYTE STREAM, NOT A LINE PROTOCOL!
=============================================================================

A client typing "post hello" and pressing Enter may reach us as:

    recv() → b"post hel"
    recv() → b"lo\\r\\nread\\r\\n"      (rest of one line + a whole second one)

so the framer keeps an accumulation buffer across reads and only emits a
line once its terminator has arrived.

=============================================================================
TELNET NEGOTIATION BYTES
=============================================================================

Telnet clients interleave option negotiation with the text they send:

    ┌──────┬─────────┬────────┐
    │ IAC  │ COMMAND │ OPTION │      IAC = 255, e.g. 255 251 31 (WILL NAWS)
    └──────┴─────────┴────────┘

We never interpret these. Every 3-byte sequence starting with IAC is dropped,
wherever it appears, including in the middle of a line.

=============================================================================
SCANNER STATE MACHINE
=============================================================================

    ┌──────────┐   255    ┌──────────────┐  byte  ┌──────────────┐
    │  GROUND  │ ───────► │  SKIP (2)    │ ─────► │  SKIP (1)    │
    └──────────┘          └──────────────┘        └──────┬───────┘
         ▲                                               │ byte
         └───────────────────────────────────────────────┘

    In GROUND:   \\r → dropped
                 \\n → emit buffer as a line, reset buffer
                 anything else → appended to buffer

The skip counter survives between feed() calls, so a negotiation sequence
split across two reads is still removed completely. The output therefore
does not depend on how the stream was chunked.

=============================================================================
"""

from typing import List

from ..errors import LineTooLongError


IAC = 255
"""Telnet "Interpret As Command" escape byte."""

CR = 13
LF = 10

NEGOTIATION_LENGTH = 3
"""IAC + command + option."""


def strip_negotiation(data: bytes) -> bytes:
    """
    Remove every IAC sequence from a complete byte string.

    A sequence truncated at the end of ``data`` is dropped too, never read
    past the end.

        >>> strip_negotiation(b"he\\xff\\xfb\\x01llo")
        b'hello'
    """
    out = bytearray()
    skip = 0
    for byte in data:
        if skip:
            skip -= 1
        elif byte == IAC:
            skip = NEGOTIATION_LENGTH - 1
        else:
            out.append(byte)
    return bytes(out)


class LineFramer:
    """
    Stateful scanner that splits a byte stream into logical lines.

    Usage:
        framer = LineFramer()
        for chunk in chunks:
            for line in framer.feed(chunk):
                handle(line)

    Lines are decoded as UTF-8 (invalid bytes replaced) and never contain
    CR, LF or negotiation bytes. Empty lines are emitted; callers decide
    whether to ignore them. Bytes after the last LF stay buffered until
    their terminator arrives and are never flushed on their own.
    """

    def __init__(self, max_line_length: int = 4096, encoding: str = "utf-8"):
        self.max_line_length = max_line_length
        self.encoding = encoding
        self._buffer = bytearray()
        self._skip = 0

    @property
    def pending(self) -> bytes:
        """Bytes of the line currently being accumulated."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> List[str]:
        """
        Consume one chunk and return the lines it completed.

        Raises:
            LineTooLongError: If the unterminated line outgrows
                max_line_length. Lines completed earlier in the same
                chunk travel on the exception as ``lines``.
        """
        lines: List[str] = []
        for byte in chunk:
            if self._skip:
                self._skip -= 1
                continue
            if byte == IAC:
                self._skip = NEGOTIATION_LENGTH - 1
            elif byte == CR:
                continue
            elif byte == LF:
                lines.append(self._buffer.decode(self.encoding, errors="replace"))
                self._buffer.clear()
            else:
                self._buffer.append(byte)
                if len(self._buffer) > self.max_line_length:
                    self._buffer.clear()
                    raise LineTooLongError(self.max_line_length, lines)
        return lines

    def reset(self) -> None:
        """Forget any partial line and any half-skipped sequence."""
        self._buffer.clear()
        self._skip = 0
