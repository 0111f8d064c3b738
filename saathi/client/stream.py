"""
Stream frame parser — turns the proxy's SSE body into text deltas.

Bytes are decoded with carry-over state, so a UTF-8 sequence split across
two chunks comes out whole. Only complete lines are parsed; a data line cut
by a chunk boundary stays in the buffer until the rest of it arrives.

    parser = StreamFrameParser()
    for chunk in chunks:
        for delta in parser.feed(chunk):
            ...
        if parser.done:
            break
    for delta in parser.close():
        ...
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

from saathi.errors import MalformedFrame

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

_MISSING = object()


def dig(obj, *path, default=None):
    """
    Follow keys/indexes into nested JSON; return default on any miss.
    dig(chunk, "choices", 0, "delta", "content")
    """
    for step in path:
        if isinstance(step, int):
            if not isinstance(obj, list) or not -len(obj) <= step < len(obj):
                return default
            obj = obj[step]
        else:
            if not isinstance(obj, dict):
                return default
            obj = obj.get(step, _MISSING)
            if obj is _MISSING:
                return default
    return obj


def parse_data_payload(payload: str) -> str:
    """
    Extract the delta text from one data payload.
    Raises MalformedFrame if the payload is not JSON; returns "" when the
    JSON has no usable delta (role-only chunks, usage chunks, schema drift).
    """
    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedFrame(f"undecodable data line: {e}") from e
    content = dig(chunk, "choices", 0, "delta", "content")
    return content if isinstance(content, str) else ""


class StreamFrameParser:
    """
    Incremental SSE parser for one response. Not reusable across requests:
    make a new one per stream.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped = 0

    def feed(self, data: bytes) -> list[str]:
        """Add bytes; return the deltas completed by them, in order."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(data)
        return self._drain()

    def close(self) -> list[str]:
        """
        The byte stream ended. Flush the decoder and parse a final line
        that had no trailing newline.
        """
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        deltas = self._drain()
        if not self.done and self._buffer:
            tail, self._buffer = self._buffer, ""
            deltas.extend(self._handle_line(tail))
        self.done = True
        return deltas

    def _drain(self) -> list[str]:
        deltas: list[str] = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            deltas.extend(self._handle_line(line))
        return deltas

    def _handle_line(self, line: str) -> list[str]:
        if line.endswith("\r"):
            line = line[:-1]
        if not line or line.startswith(":"):
            return []
        if not line.startswith(DATA_PREFIX):
            return []

        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            self._buffer = ""
            return []

        try:
            delta = parse_data_payload(payload)
        except MalformedFrame as e:
            # A complete line that still isn't JSON will never become JSON.
            self.skipped += 1
            logger.debug("Skipping frame: %s", e)
            return []
        return [delta] if delta else []


async def iter_deltas(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """
    Async loop over a byte stream, yielding deltas until [DONE] or the
    stream closes. Stops reading as soon as [DONE] is seen.
    """
    parser = StreamFrameParser()
    async for chunk in chunks:
        for delta in parser.feed(chunk):
            yield delta
        if parser.done:
            return
    for delta in parser.close():
        yield delta
