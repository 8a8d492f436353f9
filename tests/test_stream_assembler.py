import asyncio

import httpx
import pytest

from chat_relay.client.assembler import (
    StreamAssembler,
    assemble,
    iter_fragments,
    iter_text,
    parse_event_line,
)
from chat_relay.routers import agent
from chat_relay.services.errors import MalformedEventError

from conftest import sse


def _fragments(chunks) -> list[str]:
    assembler = StreamAssembler()
    out: list[str] = []
    for chunk in chunks:
        out.extend(assembler.feed(chunk))
    out.extend(assembler.close())
    return out


def test_basic_stream_yields_fragments_in_order():
    assert _fragments([sse("Hel", "lo")]) == ["Hel", "lo"]
    assert assemble([sse("Hel", "lo")]) == "Hello"


def test_every_two_way_split_gives_the_same_reply():
    stream = sse("Bonjour, ", "je parle ", "Français ", "🙂", " fin")
    expected = "Bonjour, je parle Français 🙂 fin"
    for i in range(len(stream) + 1):
        assert assemble([stream[:i], stream[i:]]) == expected, f"split at byte {i}"


def test_byte_by_byte_feed_handles_multibyte_codepoints():
    stream = sse("Fran", "çais", " 日本語")
    chunks = [stream[i:i + 1] for i in range(len(stream))]
    assert assemble(chunks) == "Français 日本語"


def test_done_blank_and_non_data_lines_yield_nothing():
    stream = (
        b": keep-alive\n\n"
        b"event: message\n"
        + sse("A")
        + b"\n\n\n"
        + b'data: {"choices":[]}\n\n'
        + b"data: [DONE]\n\n"
    )
    assert _fragments([stream]) == ["A"]


def test_malformed_event_is_skipped_and_stream_continues():
    stream = sse("one ", done=False) + b"data: {not json\n\n" + sse("two")
    assembler = StreamAssembler()
    assert assembler.feed(stream) == ["one ", "two"]
    assert assembler.skipped_events == 1


def test_crlf_line_endings():
    stream = sse("x", "y").replace(b"\n", b"\r\n")
    assert assemble([stream]) == "xy"


def test_stream_without_done_or_trailing_newline_flushes_last_line():
    stream = sse("first ", done=False) + b'data: {"choices":[{"delta":{"content":"last"}}]}'
    assembler = StreamAssembler()
    assert assembler.feed(stream) == ["first "]
    assert assembler.close() == ["last"]


def test_truncated_final_line_is_skipped():
    stream = sse("kept", done=False) + b'data: {"choices":[{"delta":{"cont'
    assert assemble([stream]) == "kept"


def test_invalid_utf8_becomes_replacement_character():
    stream = b'data: {"choices":[{"delta":{"content":"a\xffb"}}]}\n\n'
    assert assemble([stream]) == "a�b"


def test_feed_after_close_raises():
    assembler = StreamAssembler()
    assembler.close()
    assert assembler.closed
    with pytest.raises(RuntimeError, match="closed"):
        assembler.feed(b"data: [DONE]\n")


def test_parse_event_line():
    assert parse_event_line("") is None
    assert parse_event_line("data: [DONE]") is None
    assert parse_event_line("data: [DONE]\r") is None
    assert parse_event_line('data: {"choices":[{"delta":{}}]}') is None
    assert parse_event_line('data: {"choices":[{"delta":{"content":"hi"}}]}') == "hi"
    with pytest.raises(MalformedEventError):
        parse_event_line("data: [1, 2")


async def _chunks(*parts: bytes, error: Exception | None = None):
    for part in parts:
        yield part
    if error is not None:
        raise error


def test_iter_fragments_over_async_stream():
    stream = sse("async ", "works")

    async def collect():
        return [f async for f in iter_fragments(_chunks(stream[:7], stream[7:]))]

    assert asyncio.run(collect()) == ["async ", "works"]


def test_iter_fragments_propagates_transport_errors():
    received: list[str] = []

    async def collect():
        async for fragment in iter_fragments(_chunks(sse("partial", done=False), error=httpx.ReadError("reset"))):
            received.append(fragment)

    with pytest.raises(httpx.ReadError):
        asyncio.run(collect())
    assert received == ["partial"]


def test_iter_text_decodes_across_chunks():
    data = "Français".encode("utf-8")

    async def collect():
        return "".join([t async for t in iter_text(_chunks(data[:4], data[4:]))])

    assert asyncio.run(collect()) == "Français"


def test_mock_event_stream_assembles_to_reply(monkeypatch):
    monkeypatch.setattr(agent, "MOCK_TOKEN_DELAY", 0)

    async def collect():
        return [event.encode("utf-8") async for event in agent.mock_event_stream("Hello mock world")]

    events = asyncio.run(collect())
    assert events[-1] == b"data: [DONE]\n\n"
    assert assemble(events) == "Hello mock world"


def test_unread_fields_with_unexpected_types_are_ignored():
    stream = (
        b'data: {"id": 7, "model": ["x"], "choices":[{"index":"zero","finish_reason":3,'
        b'"delta":{"role":42,"content":"hi"}}]}\n\n'
        b'data: {"choices":[{"delta":null,"finish_reason":"stop"}],"usage":{"total_tokens":9}}\n\n'
    )
    assembler = StreamAssembler()
    assert assembler.feed(stream) == ["hi"]
    assert assembler.skipped_events == 0
