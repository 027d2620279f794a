"""Byte sinks and async pumps shared by the runner and the pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import io
import threading
from typing import Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class Writer(Protocol):
    """Anything accepting ``write(bytes)``."""

    def write(self, data: bytes, /) -> object: ...


class NullBuffer:
    """Discard sink: writes are dropped, reads are always at EOF."""

    def write(self, data: bytes, /) -> int:
        return 0

    def read(self, size: int = -1, /) -> bytes:
        return b""

    def flush(self) -> None:
        pass


class ConcurrentWriter:
    """Serialize writes to a shared sink.

    Every stage of a pipeline writes its stderr here; the lock keeps each
    chunk whole so output from concurrent stages never interleaves mid-write.
    """

    def __init__(self, writer: Writer | None) -> None:
        self.writer = writer if writer is not None else NullBuffer()
        self._lock = threading.Lock()

    def write(self, data: bytes, /) -> int:
        with self._lock:
            self.writer.write(data)
        return len(data)

    def flush(self) -> None:
        with self._lock:
            flush = getattr(self.writer, "flush", None)
            if flush is not None:
                flush()


class MultiWriter:
    """Duplicate each write to every sink, in order."""

    def __init__(self, *writers: Writer | None) -> None:
        self.writers = [w for w in writers if w is not None]

    def write(self, data: bytes, /) -> int:
        for w in self.writers:
            w.write(data)
        return len(data)


def binary_sink(sink: Writer | None) -> Writer | None:
    """Return the binary buffer behind a text stream such as ``sys.stdout``."""
    if isinstance(sink, io.TextIOBase) and hasattr(sink, "buffer"):
        return sink.buffer
    return sink


# ---------------------------------------------------------------------------
# Async pumps
# ---------------------------------------------------------------------------

PUMP_CHUNK_SIZE = 64 * 1024


def stdin_argument(stdin: object) -> tuple[int, object | None]:
    """Decide how ``stdin`` reaches a child process.

    Returns ``(popen_stdin, feed_source)``.  Real files are handed over by
    descriptor; bytes, text and in-memory readers are fed through a pipe.
    """
    if stdin is None:
        return asyncio.subprocess.DEVNULL, None
    if isinstance(stdin, str):
        return asyncio.subprocess.PIPE, stdin.encode()
    if isinstance(stdin, bytes | bytearray | memoryview):
        return asyncio.subprocess.PIPE, bytes(stdin)
    fileno = getattr(stdin, "fileno", None)
    if fileno is not None:
        try:
            return fileno(), None
        except (OSError, ValueError):
            pass  # in-memory stream without a descriptor
    return asyncio.subprocess.PIPE, stdin


async def feed(writer: asyncio.StreamWriter, source: object) -> None:
    """Write ``source`` (bytes or a reader) into a child's stdin, then close it.

    A child that exits without reading its input is not an error.
    """
    try:
        if isinstance(source, bytes):
            writer.write(source)
            await writer.drain()
        else:
            while True:
                chunk = source.read(PUMP_CHUNK_SIZE)  # type: ignore[attr-defined]
                if inspect.isawaitable(chunk):
                    chunk = await chunk
                if not chunk:
                    break
                if isinstance(chunk, str):
                    chunk = chunk.encode()
                writer.write(chunk)
                await writer.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("stdin closed by child before input was consumed")
    finally:
        writer.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await writer.wait_closed()


async def copy_stream(reader: asyncio.StreamReader, sink: Writer) -> None:
    """Copy ``reader`` into ``sink`` until EOF."""
    while chunk := await reader.read(PUMP_CHUNK_SIZE):
        sink.write(chunk)
