"""Incremental SSE assembler for streamed chat completions.

Turns a byte stream such as::

    data: {"choices":[{"delta":{"content":"Hel"}}]}

    data: {"choices":[{"delta":{"content":"lo"}}]}

    data: [DONE]

into the text fragments ``"Hel"``, ``"lo"``, regardless of where the
transport splits the bytes: mid-line, mid-JSON or mid-UTF-8 codepoint.

- UTF-8 is decoded with an incremental decoder that carries partial
  codepoints over to the next chunk. Invalid bytes become U+FFFD.
- Decoded text is split on ``\\n``; the trailing partial line is held back
  and prefixed to the next chunk. A trailing ``\\r`` is dropped.
- Blank lines, ``data: [DONE]`` and non-``data:`` lines yield nothing.
- A ``data:`` line whose JSON does not parse is skipped, never raised.
- End of stream is signalled by the transport, not by ``[DONE]``. The held
  back partial line is processed as a final line at that point.
"""
from __future__ import annotations

import codecs
from typing import AsyncIterable, AsyncIterator, Iterable, List, Optional

import structlog
from pydantic import ValidationError

from chat_relay.models import ChatCompletionChunk
from chat_relay.services.errors import MalformedEventError

logger = structlog.get_logger(__name__)

SSE_DATA_PREFIX = "data: "
DONE_SENTINEL = "data: [DONE]"


def parse_chunk(payload: str) -> ChatCompletionChunk:
    """Parse the JSON after ``data: `` into a typed chunk.

    Raises:
        MalformedEventError: If the payload is not valid JSON or not a chunk object
    """
    try:
        return ChatCompletionChunk.model_validate_json(payload)
    except ValidationError as e:
        raise MalformedEventError(payload) from e


def parse_event_line(line: str) -> Optional[str]:
    """Return the text fragment carried by one complete SSE line, if any.

    Raises:
        MalformedEventError: If the line is a data event with unparseable JSON
    """
    if line.endswith("\r"):
        line = line[:-1]
    if not line.strip() or line == DONE_SENTINEL:
        return None
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return parse_chunk(line[len(SSE_DATA_PREFIX):]).delta_text()


class StreamAssembler:
    """Stateful byte-to-fragment converter for one response stream.

    Not restartable: once ``close()`` has run, ``feed()`` raises.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._closed = False
        self.skipped_events = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk: bytes) -> List[str]:
        """Consume one transport chunk and return the fragments it completed."""
        if self._closed:
            raise RuntimeError("StreamAssembler is closed")
        text = self._pending + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._pending = lines.pop()
        return self._process(lines)

    def close(self) -> List[str]:
        """Flush the decoder and the held-back line at end of stream."""
        if self._closed:
            return []
        self._closed = True
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return self._process(tail.split("\n"))

    def _process(self, lines: Iterable[str]) -> List[str]:
        fragments: List[str] = []
        for line in lines:
            try:
                fragment = parse_event_line(line)
            except MalformedEventError:
                self.skipped_events += 1
                logger.debug("assembler.event.skipped", line=line[:80])
                continue
            if fragment:
                fragments.append(fragment)
        return fragments


async def iter_fragments(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield text fragments from an async byte stream, in arrival order.

    Errors raised by the underlying stream propagate to the caller.
    """
    assembler = StreamAssembler()
    async for chunk in chunks:
        for fragment in assembler.feed(chunk):
            yield fragment
    for fragment in assembler.close():
        yield fragment
    if assembler.skipped_events:
        logger.info("assembler.stream.closed", skipped_events=assembler.skipped_events)


async def iter_text(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield decoded text from a plain (non-SSE) byte stream."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in chunks:
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


def assemble(chunks: Iterable[bytes]) -> str:
    """Assemble a complete reply from an in-memory sequence of chunks."""
    assembler = StreamAssembler()
    parts: List[str] = []
    for chunk in chunks:
        parts.extend(assembler.feed(chunk))
    parts.extend(assembler.close())
    return "".join(parts)
