"""Streaming token scanner.

``TokenScanner`` reads a byte stream once and sends it two ways:

- every token cut by the split function goes to a consumer callback
- the sink writer receives either the raw bytes as they are read, or the
  tokens joined by a separator when one is configured

Split functions have the shape
``split(data, at_eof) -> (advance, token)``.  ``data`` is the unconsumed
input as a bytes-like object (``bytes`` or a read-only ``memoryview``) and
is only valid during the call.  ``advance`` is how many bytes of ``data``
were consumed, ``token`` is ``None`` when more data is needed.  Raising
:class:`FinalToken` stops the scan after delivering its token.

Delimiter splits (:func:`scan_lines`, :func:`scan_delim`) are searched
incrementally by the scanner, so a token costs time proportional to its own
length no matter how many reads it spans.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Protocol

from pipexec.errors import ScanError
from pipexec.streams import NullBuffer, Writer

DEFAULT_CHUNK_SIZE = 64 * 1024

SplitFunc = Callable[[bytes | memoryview, bool], tuple[int, bytes | None]]


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Token:
    """One delimited unit of output, delimiter removed."""

    data: bytes

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def __str__(self) -> str:
        return self.text

    def __bytes__(self) -> bytes:
        return self.data


class TokenConsumer(Protocol):
    def __call__(self, token: Token, /) -> Awaitable[None] | None: ...


class FinalToken(Exception):  # noqa: N818
    """Raised by a split function to end scanning.

    ``token`` (if not ``None``) is delivered before the scanner stops.
    """

    def __init__(self, token: bytes | None = None) -> None:
        super().__init__("final token")
        self.token = token


# ---------------------------------------------------------------------------
# Split functions
# ---------------------------------------------------------------------------


class DelimiterSplit:
    """Cut on a fixed, non-empty delimiter.

    Callable as a plain split function.  The last token may be unterminated.
    With ``drop_cr`` a ``\\r`` right before the delimiter is removed as well.
    """

    def __init__(self, delim: bytes, *, drop_cr: bool = False) -> None:
        if not delim:
            msg = "delimiter must not be empty"
            raise ValueError(msg)
        self.delim = delim
        self.drop_cr = drop_cr
        self._pattern = re.compile(re.escape(delim))

    def __repr__(self) -> str:
        return f"DelimiterSplit({self.delim!r})"

    def finish(self, token: bytes) -> bytes:
        if self.drop_cr and token.endswith(b"\r"):
            return token[:-1]
        return token

    def __call__(self, data: bytes | memoryview, at_eof: bool) -> tuple[int, bytes | None]:
        m = self._pattern.search(data)
        if m is not None:
            return m.end(), self.finish(bytes(data[: m.start()]))
        if at_eof and len(data):
            return len(data), self.finish(bytes(data))
        return 0, None


scan_lines = DelimiterSplit(b"\n", drop_cr=True)
"""Split on ``\\n``; a trailing ``\\r`` is dropped and the last line may be unterminated."""

_WORD = re.compile(rb"\S+")


def scan_words(data: bytes | memoryview, at_eof: bool) -> tuple[int, bytes | None]:
    """Split on runs of whitespace; empty words are never produced."""
    m = _WORD.search(data)
    if m is None:
        return len(data), None
    if m.end() < len(data):
        return m.end() + 1, bytes(data[m.start() : m.end()])
    if at_eof:
        return len(data), bytes(data[m.start() : m.end()])
    return m.start(), None


def scan_delim(delim: bytes | str) -> DelimiterSplit:
    """Build a split function cutting on a fixed delimiter."""
    if isinstance(delim, str):
        delim = delim.encode()
    return DelimiterSplit(delim)


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class TokenScanner:
    """Tee a stream into a sink while handing tokens to a consumer.

    Parameters
    ----------
    sink:
        Receives the scanned bytes.  ``None`` means :class:`NullBuffer`.
    source:
        Object with ``read(n)``; the result may be ``bytes`` or an awaitable
        of ``bytes`` (``asyncio.StreamReader`` works as-is).
    split:
        Split function, :func:`scan_lines` by default.
    consumer:
        Called once per token, in stream order.  May be a coroutine function.
    separator:
        ``None`` mirrors the raw bytes into ``sink``.  Otherwise ``sink``
        gets the tokens joined by ``separator`` (no leading or trailing one).
    """

    def __init__(
        self,
        sink: Writer | None,
        source: object,
        split: SplitFunc | None = None,
        consumer: TokenConsumer | None = None,
        *,
        separator: bytes | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.sink = sink if sink is not None else NullBuffer()
        self.source = source
        self.split = split or scan_lines
        self.consumer = consumer
        self.separator = separator
        self.chunk_size = chunk_size
        self._written = False
        self._start = 0
        self._searched = 0

    async def _read(self) -> bytes:
        try:
            data = self.source.read(self.chunk_size)  # type: ignore[attr-defined]
            if inspect.isawaitable(data):
                data = await data
        except OSError as e:
            raise ScanError(f"read: {e}") from e
        if isinstance(data, str):
            data = data.encode()
        return data or b""

    async def _emit(self, data: bytes) -> None:
        if self.separator is not None:
            if self._written:
                self.sink.write(self.separator)
            self.sink.write(data)
            self._written = True
        if self.consumer is not None:
            result = self.consumer(Token(data))
            if inspect.isawaitable(result):
                await result

    async def _drain(self) -> None:
        while await self._read():
            pass

    def _cut_delimited(self, split: DelimiterSplit, buf: bytearray, at_eof: bool) -> Iterator[bytes]:
        delim = split.delim
        while (i := buf.find(delim, self._searched)) >= 0:
            token = bytes(buf[self._start : i])
            self._start = self._searched = i + len(delim)
            yield split.finish(token)
        # a delimiter may straddle the next read
        self._searched = max(self._start, len(buf) - len(delim) + 1)
        if at_eof and self._start < len(buf):
            token = bytes(buf[self._start :])
            self._start = self._searched = len(buf)
            yield split.finish(token)

    def _cut(self, buf: bytearray, at_eof: bool) -> Iterator[bytes]:
        if self._start >= len(buf) and not at_eof:
            return
        # one snapshot per read; the split sees zero-copy slices of it
        view = memoryview(bytes(buf))
        while self._start < len(view) or at_eof:
            rest = view[self._start :]
            advance, token = self.split(rest, at_eof)
            if not 0 <= advance <= len(rest):
                raise ScanError(f"split function returned invalid advance {advance} for {len(rest)} bytes")
            self._start += advance
            if token is not None:
                yield bytes(token)
            if advance == 0:
                break

    async def scan(self) -> None:
        """Run until end of stream.

        Raises :class:`ScanError` on a read fault or an invalid split result.
        """
        buf = bytearray()
        at_eof = False
        self._start = self._searched = 0
        while True:
            if isinstance(self.split, DelimiterSplit):
                tokens = self._cut_delimited(self.split, buf, at_eof)
            else:
                tokens = self._cut(buf, at_eof)
            try:
                for token in tokens:
                    await self._emit(token)
            except FinalToken as final:
                if final.token is not None:
                    await self._emit(bytes(final.token))
                await self._drain()
                return
            # compact once per read, not once per token
            del buf[: self._start]
            self._searched -= self._start
            self._start = 0
            if at_eof:
                return
            chunk = await self._read()
            if not chunk:
                at_eof = True
                continue
            if self.separator is None:
                self.sink.write(chunk)
            buf.extend(chunk)
