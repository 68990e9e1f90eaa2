"""Tests for the provider dialects."""

import pytest

from llm_reviewer.errors import ProviderError, ProviderErrorKind
from llm_reviewer.llm.base import StreamItem
from llm_reviewer.llm.dialects import (
    AnthropicDialect, GeminiDialect, OpenAIDialect, normalize_stop_reason,
)


class TestStopReasons:
    @pytest.mark.parametrize("raw,expected", [
        ("max_tokens", "length"),
        ("MAX_TOKENS", "length"),
        ("length", "length"),
        ("end_turn", "stop"),
        ("STOP", "stop"),
        ("tool_use", "tool_use"),
        ("SAFETY", "safety"),
        (None, None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_stop_reason(raw) == expected


class TestAnthropic:
    def test_ignores_non_text_deltas(self):
        event = {"type": "content_block_delta",
                 "delta": {"type": "input_json_delta", "partial_json": "{"}}
        assert AnthropicDialect().decode_event(event) is None

    def test_message_delta_without_stop_reason(self):
        event = {"type": "message_delta", "delta": {}, "usage": {"output_tokens": 3}}
        assert AnthropicDialect().decode_event(event) is None

    def test_stop_reason(self):
        event = {"type": "message_delta", "delta": {"stop_reason": "end_turn"},
                 "usage": {"output_tokens": 7}}
        assert AnthropicDialect().decode_event(event) == StreamItem(
            is_complete=True, stop_reason="stop", output_tokens=7)

    @pytest.mark.parametrize("error_type,kind", [
        ("authentication_error", ProviderErrorKind.AUTH),
        ("rate_limit_error", ProviderErrorKind.RATE_LIMITED),
        ("invalid_request_error", ProviderErrorKind.API_ERROR),
    ])
    def test_error_kinds(self, error_type, kind):
        event = {"type": "error", "error": {"type": error_type, "message": "nope"}}
        with pytest.raises(ProviderError) as exc_info:
            AnthropicDialect().decode_event(event)
        assert exc_info.value.kind == kind


class TestOpenAI:
    def test_finish_reason_waits_for_usage(self):
        dialect = OpenAIDialect()
        finish = {"choices": [{"delta": {"content": "!"}, "finish_reason": "stop"}]}
        usage = {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 2}}

        assert dialect.decode_event(finish) == StreamItem(content="!")
        assert dialect.decode_event(usage) == StreamItem(
            is_complete=True, stop_reason="stop", input_tokens=4, output_tokens=2)

    def test_usage_without_finish_reason_is_not_completion(self):
        event = {"choices": [{"delta": {"content": "a"}}],
                 "usage": {"prompt_tokens": 1, "completion_tokens": 1}}
        assert OpenAIDialect().decode_event(event) == StreamItem(content="a")

    def test_end_of_stream_without_finish(self):
        assert OpenAIDialect().end_of_stream() is None

    def test_null_content(self):
        event = {"choices": [{"delta": {"content": None}}]}
        assert OpenAIDialect().decode_event(event) is None

    @pytest.mark.parametrize("code,kind", [
        ("rate_limit_exceeded", ProviderErrorKind.RATE_LIMITED),
        ("insufficient_quota", ProviderErrorKind.RATE_LIMITED),
        ("invalid_api_key", ProviderErrorKind.AUTH),
        ("server_error", ProviderErrorKind.API_ERROR),
    ])
    def test_error_kinds(self, code, kind):
        event = {"error": {"code": code, "message": "boom"}}
        with pytest.raises(ProviderError) as exc_info:
            OpenAIDialect().decode_event(event)
        assert exc_info.value.kind == kind


class TestGemini:
    def test_parts_are_joined(self):
        event = {"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]}
        assert GeminiDialect().decode_event(event) == StreamItem(content="ab")

    def test_max_tokens_is_length(self):
        event = {"candidates": [{"content": {"parts": []}, "finishReason": "MAX_TOKENS"}]}
        item = GeminiDialect().decode_event(event)
        assert item.is_complete
        assert item.stop_reason == "length"

    def test_boolean_token_counts_ignored(self):
        event = {"candidates": [{"finishReason": "STOP"}],
                 "usageMetadata": {"promptTokenCount": True}}
        assert GeminiDialect().decode_event(event).input_tokens is None

    @pytest.mark.parametrize("code,kind", [
        (403, ProviderErrorKind.AUTH),
        (429, ProviderErrorKind.RATE_LIMITED),
        (500, ProviderErrorKind.API_ERROR),
    ])
    def test_error_kinds(self, code, kind):
        event = {"error": {"code": code, "message": "bad", "status": "X"}}
        with pytest.raises(ProviderError) as exc_info:
            GeminiDialect().decode_event(event)
        assert exc_info.value.kind == kind
        assert exc_info.value.status_code == code
