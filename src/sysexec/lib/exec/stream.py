"""Threaded line-by-line consumption of child process output streams."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import IO, Final

import structlog

logger = structlog.get_logger(__name__)

LineListener = Callable[[str, str], None]
"""Callback receiving `(stream_tag, line)` for each line of process output."""

DEFAULT_CHUNK_SIZE: Final[int] = 1024
DEFAULT_ENCODING: Final[str] = "utf-8"

_CR: Final[int] = ord("\r")
_LF: Final[int] = ord("\n")


class LineSplitter:
    """Incremental byte line splitter.

    `\\n`, `\\r` and `\\r\\n` each end one line. Feed raw chunks as they are
    read; call `flush()` at end-of-stream to get the trailing partial line.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._pending_cr = False

    def feed(self, chunk: bytes) -> list[bytes]:
        lines: list[bytes] = []
        for byte in chunk:
            if self._pending_cr:
                self._pending_cr = False
                if byte == _LF:
                    continue
            if byte == _CR:
                self._pending_cr = True
                lines.append(bytes(self._buffer))
                self._buffer.clear()
            elif byte == _LF:
                lines.append(bytes(self._buffer))
                self._buffer.clear()
            else:
                self._buffer.append(byte)
        return lines

    def flush(self) -> bytes | None:
        self._pending_cr = False
        if not self._buffer:
            return None
        line = bytes(self._buffer)
        self._buffer.clear()
        return line


class StreamConsumer(threading.Thread):
    """Drain one process stream on its own thread, notifying listeners per line.

    Nothing raised while reading or by a listener escapes the thread: a
    broken listener must never leave a child blocked on a full pipe.
    """

    def __init__(
        self,
        stream: IO[bytes],
        tag: str,
        listeners: Iterable[LineListener] = (),
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        encoding: str = DEFAULT_ENCODING,
    ) -> None:
        super().__init__(name=f"StreamConsumer-{tag}", daemon=True)
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1.")
        self._stream = stream
        self._tag = tag
        self._listeners: tuple[LineListener, ...] = tuple(listeners)
        self._chunk_size = chunk_size
        self._encoding = encoding
        self.lines_streamed = 0

    @property
    def tag(self) -> str:
        return self._tag

    @property
    def listeners(self) -> tuple[LineListener, ...]:
        return self._listeners

    def run(self) -> None:
        splitter = LineSplitter()
        read = getattr(self._stream, "read1", self._stream.read)
        try:
            while True:
                chunk = read(self._chunk_size)
                if not chunk:
                    break
                for raw_line in splitter.feed(chunk):
                    self._fire(raw_line)
            trailing = splitter.flush()
            if trailing is not None:
                self._fire(trailing)
        except (OSError, ValueError):
            # ValueError: the pipe was closed underneath us (process aborted).
            logger.warning("Problem consuming process stream.", stream=self._tag, exc_info=True)
        finally:
            try:
                self._stream.close()
            except OSError:
                logger.debug("Could not close process stream.", stream=self._tag, exc_info=True)

    def _fire(self, raw_line: bytes) -> None:
        line = raw_line.decode(self._encoding, errors="replace")
        self.lines_streamed += 1
        for listener in self._listeners:
            try:
                listener(self._tag, line)
            except Exception:
                logger.warning("Stream listener failed.", stream=self._tag, exc_info=True)


def consume(
    stream: IO[bytes],
    tag: str,
    *listeners: LineListener,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = DEFAULT_ENCODING,
) -> StreamConsumer:
    """Start consuming `stream` in the background and return the consumer thread."""

    consumer = StreamConsumer(
        stream, tag, listeners, chunk_size=chunk_size, encoding=encoding
    )
    consumer.start()
    return consumer


def consume_and_wait(
    stream: IO[bytes],
    tag: str,
    *listeners: LineListener,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = DEFAULT_ENCODING,
) -> int:
    """Consume `stream` to end-of-stream and return the number of lines seen."""

    consumer = consume(stream, tag, *listeners, chunk_size=chunk_size, encoding=encoding)
    consumer.join()
    return consumer.lines_streamed
