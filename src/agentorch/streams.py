"""Incremental decoding of process pipes into text lines."""

from __future__ import annotations

import asyncio
import codecs

STDERR_PREFIX = "[stderr] "

_READ_SIZE = 4096


class LineSplitter:
    """Feed raw bytes, get back complete lines.

    Multi-byte UTF-8 sequences split across chunks are held until complete;
    invalid bytes decode to U+FFFD. A ``\\r`` before the newline is dropped.
    """

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending: list[str] = []  # pieces of the current unterminated line

    def feed(self, chunk: bytes) -> list[str]:
        text = self._decoder.decode(chunk)
        if "\n" not in text:
            if text:
                self._pending.append(text)
            return []
        first, *rest = text.split("\n")
        self._pending.append(first)
        lines = ["".join(self._pending), *rest[:-1]]
        self._pending = [rest[-1]] if rest[-1] else []
        return [self._format(line) for line in lines]

    def flush(self) -> list[str]:
        """Return the trailing partial line, if any."""
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._pending.append(tail)
        rest = "".join(self._pending)
        self._pending = []
        if not rest:
            return []
        return [self._format(rest)]

    def _format(self, line: str) -> str:
        if line.endswith("\r"):
            line = line[:-1]
        return f"{self.prefix}{line}" if self.prefix else line


async def drain(
    reader: asyncio.StreamReader,
    sink: asyncio.Queue[str | None],
    prefix: str = "",
) -> None:
    """Read *reader* to EOF, pushing each decoded line onto *sink*.

    A ``None`` is pushed once the stream is exhausted so the consumer can
    count finished producers.
    """
    splitter = LineSplitter(prefix)
    try:
        while True:
            chunk = await reader.read(_READ_SIZE)
            if not chunk:
                break
            for line in splitter.feed(chunk):
                await sink.put(line)
        for line in splitter.flush():
            await sink.put(line)
    finally:
        sink.put_nowait(None)
