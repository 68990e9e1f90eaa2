"""Tests for SSE stream decoding."""

import pytest

from llm_reviewer.errors import ProviderError, ProviderErrorKind
from llm_reviewer.llm.base import StreamItem
from llm_reviewer.llm.dialects import AnthropicDialect, GeminiDialect, OpenAIDialect
from llm_reviewer.llm.sse import SSEDecoder, iter_stream_items


ANTHROPIC_STREAM = (
    'event: message_start\n'
    'data: {"type":"message_start","message":{"usage":{"input_tokens":25,"output_tokens":1}}}\n\n'
    'event: ping\n'
    'data: {"type": "ping"}\n\n'
    'event: content_block_start\n'
    'data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}\n\n'
    'event: content_block_delta\n'
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Héllo "}}\n\n'
    'event: content_block_delta\n'
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"wörld ✓"}}\n\n'
    'event: content_block_stop\n'
    'data: {"type":"content_block_stop","index":0}\n\n'
    'event: message_delta\n'
    'data: {"type":"message_delta","delta":{"stop_reason":"max_tokens"},"usage":{"output_tokens":12}}\n\n'
    'event: message_stop\n'
    'data: {"type":"message_stop"}\n\n'
).encode("utf-8")

OPENAI_STREAM = (
    'data: {"choices":[{"delta":{"role":"assistant","content":""}}]}\n\n'
    'data: {"choices":[{"delta":{"content":"Héllo "}}]}\n\n'
    ': keep-alive\n\n'
    'data: {"choices":[{"delta":{"content":"wörld ✓"}}]}\n\n'
    'data: {"choices":[{"delta":{},"finish_reason":"length"}]}\n\n'
    'data: {"choices":[],"usage":{"prompt_tokens":25,"completion_tokens":12}}\n\n'
    'data: [DONE]\n\n'
).encode("utf-8")

GEMINI_STREAM = (
    'data: {"candidates":[{"content":{"parts":[{"text":"Héllo "}],"role":"model"}}]}\r\n\r\n'
    'data: {"candidates":[{"content":{"parts":[{"text":"wörld ✓"}],"role":"model"},'
    '"finishReason":"STOP"}],'
    '"usageMetadata":{"promptTokenCount":25,"candidatesTokenCount":12}}\r\n\r\n'
).encode("utf-8")


EXPECTED = {
    "anthropic": [
        StreamItem(input_tokens=25),
        StreamItem(content="Héllo "),
        StreamItem(content="wörld ✓"),
        StreamItem(is_complete=True, stop_reason="length", output_tokens=12),
    ],
    "openai": [
        StreamItem(content="Héllo "),
        StreamItem(content="wörld ✓"),
        StreamItem(is_complete=True, stop_reason="length",
                   input_tokens=25, output_tokens=12),
    ],
    "gemini": [
        StreamItem(content="Héllo "),
        StreamItem(content="wörld ✓", is_complete=True, stop_reason="stop",
                   input_tokens=25, output_tokens=12),
    ],
}

STREAMS = {
    "anthropic": (ANTHROPIC_STREAM, AnthropicDialect),
    "openai": (OPENAI_STREAM, OpenAIDialect),
    "gemini": (GEMINI_STREAM, GeminiDialect),
}


def _chunks(data: bytes, size):
    if size is None:
        return [data]
    return [data[i:i + size] for i in range(0, len(data), size)]


def _collect(data: bytes, dialect_cls, size=None):
    return list(iter_stream_items(_chunks(data, size), dialect_cls()))


class TestChunkBoundaries:
    @pytest.mark.parametrize("name", sorted(STREAMS))
    @pytest.mark.parametrize("size", [1, 7, 64, None])
    def test_items_independent_of_chunking(self, name, size):
        data, dialect_cls = STREAMS[name]
        assert _collect(data, dialect_cls, size) == EXPECTED[name]

    def test_split_multibyte_character(self):
        data = 'data: {"choices":[{"delta":{"content":"✓"}}]}\n'.encode("utf-8")
        check = data.index("✓".encode("utf-8"))
        chunks = [data[:check + 1], data[check + 1:check + 2], data[check + 2:]]

        decoder = SSEDecoder(OpenAIDialect())
        items = [item for chunk in chunks for item in decoder.feed(chunk)]
        assert items == [StreamItem(content="✓")]


class TestStreamEnd:
    def test_stops_after_complete_item(self):
        data = GEMINI_STREAM + b"data: {not json}\n\n"
        assert _collect(data, GeminiDialect) == EXPECTED["gemini"]

    def test_final_line_without_newline(self):
        data = GEMINI_STREAM.rstrip(b"\r\n")
        assert _collect(data, GeminiDialect, size=5) == EXPECTED["gemini"]

    def test_openai_without_usage_completes_at_done(self):
        data = (
            b'data: {"choices":[{"delta":{"content":"hi"}}]}\n\n'
            b'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
            b'data: [DONE]\n\n'
        )
        assert _collect(data, OpenAIDialect) == [
            StreamItem(content="hi"),
            StreamItem(is_complete=True, stop_reason="stop"),
        ]

    def test_openai_without_done_completes_at_eof(self):
        data = (
            b'data: {"choices":[{"delta":{"content":"hi"}}]}\n\n'
            b'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
        )
        assert _collect(data, OpenAIDialect)[-1].is_complete

    def test_done_without_completion_ends_sequence(self):
        data = b'data: {"choices":[{"delta":{"content":"hi"}}]}\n\ndata: [DONE]\n\n'
        assert _collect(data, OpenAIDialect) == [StreamItem(content="hi")]

    def test_data_without_space(self):
        data = b'data:{"choices":[{"delta":{"content":"x"}}]}\n'
        assert _collect(data, OpenAIDialect) == [StreamItem(content="x")]


class TestMalformedStreams:
    def test_invalid_json(self):
        with pytest.raises(ProviderError) as exc_info:
            _collect(b"data: {oops\n", OpenAIDialect)
        assert exc_info.value.kind == ProviderErrorKind.SERIALIZATION

    def test_non_object_event(self):
        with pytest.raises(ProviderError) as exc_info:
            _collect(b"data: [1, 2]\n", OpenAIDialect)
        assert exc_info.value.kind == ProviderErrorKind.SERIALIZATION

    def test_invalid_utf8(self):
        with pytest.raises(ProviderError) as exc_info:
            _collect(b'data: {"a": "\xff"}\n', OpenAIDialect)
        assert exc_info.value.kind == ProviderErrorKind.SERIALIZATION

    def test_items_before_error_are_delivered(self):
        data = b'data: {"choices":[{"delta":{"content":"ok"}}]}\ndata: {bad\n'
        received = []
        with pytest.raises(ProviderError):
            for item in iter_stream_items([data], OpenAIDialect()):
                received.append(item)
        assert received == [StreamItem(content="ok")]

    def test_error_event(self):
        data = b'data: {"type":"error","error":{"type":"overloaded_error","message":"busy"}}\n'
        with pytest.raises(ProviderError) as exc_info:
            _collect(data, AnthropicDialect)
        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
        assert exc_info.value.retryable
