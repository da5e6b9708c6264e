"""Field tokenizer for mmCIF data rows.

Reads whitespace separated values straight from a seekable binary stream,
leaving the cursor at the start of the next row. Values may be quoted three
ways, and only one quoting mode is ever active:

    'single quoted'   opens after whitespace, closes on ' + whitespace
    "double quoted"   same rules with "
    ;text field       opens on ; at the start of a line, closes on the next
    ;                 ; at the start of a line (may span many lines)

The tokenizer never raises on malformed rows: when the stream runs out it
returns what it has and the caller compares the token count.
"""

from __future__ import annotations

import io
from typing import BinaryIO, Iterator, Optional

_NEWLINE = 0x0A
_SEMICOLON = 0x3B
_QUOTES = (0x27, 0x22)  # ' and "
_BLANKS = frozenset((0x20, 0x0A, 0x09, 0x0D))

_CHUNK_SIZE = 8192


def _is_blank(byte: int) -> bool:
    return byte in _BLANKS


class _ByteCursor:
    """Byte-at-a-time view over a binary stream, read in chunks.

    ``last`` is the byte just before the cursor, so a cursor can be kept
    across rows. Every chunk read seeks first, so other readers may move the
    stream in between.
    """

    def __init__(self, stream: BinaryIO, limit: Optional[int] = None, chunk_size: int = _CHUNK_SIZE):
        self._stream = stream
        self._chunk_size = chunk_size
        self._origin = stream.tell()
        self._limit = limit
        self._buffer = b""
        self._index = 0
        self._fetched = 0
        self._carry = _previous_byte(stream)
        self.last = self._carry
        self.consumed = 0

    @property
    def position(self) -> int:
        return self._origin + self.consumed

    def next(self) -> Optional[int]:
        if self._limit is not None and self.position >= self._limit:
            return None
        if self._index >= len(self._buffer):
            size = self._chunk_size
            if self._limit is not None:
                size = min(size, self._limit - self._origin - self._fetched)
            self._stream.seek(self._origin + self._fetched)
            chunk = self._stream.read(size)
            if not chunk:
                return None
            self._carry = self.last
            self._buffer = chunk
            self._index = 0
            self._fetched += len(chunk)
        byte = self._buffer[self._index]
        self._index += 1
        self.consumed += 1
        self.last = byte
        return byte

    def unread(self) -> None:
        self._index -= 1
        self.consumed -= 1
        self.last = self._buffer[self._index - 1] if self._index > 0 else self._carry

    def sync(self) -> None:
        """Move the underlying stream to just after the last consumed byte."""
        self._stream.seek(self.position)


def _previous_byte(stream: BinaryIO) -> int:
    position = stream.tell()
    if position == 0:
        return _NEWLINE
    stream.seek(position - 1)
    previous = stream.read(1)
    return previous[0] if previous else _NEWLINE


def _decode(raw: bytearray) -> str:
    return raw.decode("utf-8", errors="replace")


def _unquote(raw: bytearray) -> bytearray:
    # 'x' -> x, but a lone quote stays a quote
    if len(raw) >= 2:
        return raw[1:-1]
    return raw


def _strip_text_field(raw: bytearray) -> bytearray:
    # drop the opening ';' and the '\n' that preceded the closing ';'
    text = raw[1:]
    if text.endswith(b"\n"):
        text = text[:-1]
    if text.endswith(b"\r"):
        text = text[:-1]
    return text


def _read_row(cursor: _ByteCursor, n: int) -> list[str]:
    start = cursor.consumed
    last = cursor.last
    tokens: list[str] = []
    current = bytearray()
    quote: Optional[int] = None

    while True:
        byte = cursor.next()
        if byte is None:
            break

        if quote is None:
            if byte in _QUOTES and _is_blank(last):
                quote = byte
                current.append(byte)
            elif byte == _SEMICOLON and last == _NEWLINE:
                quote = _SEMICOLON
                current.append(byte)
            elif _is_blank(byte):
                # a run of blanks is one boundary
                if not _is_blank(last):
                    tokens.append(_decode(current))
                    current = bytearray()
            else:
                current.append(byte)
        elif quote == _SEMICOLON:
            if byte == _SEMICOLON and last == _NEWLINE:
                quote = None
                current = _strip_text_field(current)
            else:
                current.append(byte)
        else:
            if _is_blank(byte) and last == quote:
                quote = None
                tokens.append(_decode(_unquote(current)))
                current = bytearray()
            else:
                current.append(byte)

        last = byte
        if len(tokens) == n:
            break

    if len(tokens) < n and cursor.consumed > start and (current or not _is_blank(last)):
        # stream ended in the middle of the last token
        if quote in _QUOTES and len(current) >= 2 and current[-1] == quote:
            current = _unquote(current)
        tokens.append(_decode(current))

    # land on the first byte of the next row
    while True:
        byte = cursor.next()
        if byte is None:
            break
        if not _is_blank(byte):
            cursor.unread()
            break

    return tokens


def tokenize_fields(stream: BinaryIO, n: int, limit: Optional[int] = None) -> list[str]:
    """Read the next ``n`` tokens from ``stream``.

    After the n-th token any trailing spaces and newlines are consumed so
    that the stream sits on the first byte of the next row. Fewer than ``n``
    tokens are returned only when the stream is exhausted, or when ``limit``
    (an absolute byte offset) is reached first.
    """
    if n <= 0:
        return []
    cursor = _ByteCursor(stream, limit)
    tokens = _read_row(cursor, n)
    cursor.sync()
    return tokens


def iter_rows(
    stream: BinaryIO,
    n: int,
    start: int,
    end: int,
    chunk_size: int = _CHUNK_SIZE,
) -> Iterator[list[str]]:
    """Yield rows of up to ``n`` tokens from the byte span [start, end).

    One cursor serves the whole span, so bytes are read once. The stream
    position between rows is not meaningful.
    """
    if n <= 0:
        return
    stream.seek(start)
    cursor = _ByteCursor(stream, limit=end, chunk_size=chunk_size)
    while cursor.position < end:
        row = _read_row(cursor, n)
        if not row:
            # stream shorter than the span
            return
        yield row


def tokenize_value(text: str) -> str:
    """Unquote a single inline value such as ``'ALPHA HELIX'`` or a ;-text block."""
    tokens = tokenize_fields(io.BytesIO(text.strip(" \t").encode("utf-8")), 1)
    return tokens[0] if tokens else ""
