"""
Provider dialects — map one decoded SSE event to a uniform StreamItem.

A dialect instance decodes a single stream; the OpenAI dialect holds the
finish reason until the trailing usage chunk arrives.
"""

from __future__ import annotations

from typing import Optional

from ..errors import ProviderError, ProviderErrorKind
from .base import StreamItem

# Every truncation reads "length"; natural ends read "stop".
_STOP_REASONS = {
    "max_tokens": "length",
    "length": "length",
    "end_turn": "stop",
    "stop": "stop",
}


def normalize_stop_reason(reason: Optional[str]) -> Optional[str]:
    if reason is None:
        return None
    value = str(reason).lower()
    return _STOP_REASONS.get(value, value)


def _int_or_none(value) -> Optional[int]:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


class Dialect:
    """Maps one provider's decoded events to stream items."""

    def decode_event(self, event: dict) -> Optional[StreamItem]:
        raise NotImplementedError

    def end_of_stream(self) -> Optional[StreamItem]:
        """Called once on ``[DONE]`` or when the server closes the stream."""
        return None


class AnthropicDialect(Dialect):
    """Messages API events: message_start, content_block_delta,
    message_delta, error.  Pings and block boundaries are ignored."""

    _ERROR_KINDS = {
        "authentication_error": ProviderErrorKind.AUTH,
        "permission_error": ProviderErrorKind.AUTH,
        "rate_limit_error": ProviderErrorKind.RATE_LIMITED,
        "overloaded_error": ProviderErrorKind.RATE_LIMITED,
    }

    def decode_event(self, event: dict) -> Optional[StreamItem]:
        event_type = event.get("type", "")

        if event_type == "message_start":
            usage = (event.get("message") or {}).get("usage") or {}
            tokens = _int_or_none(usage.get("input_tokens"))
            return StreamItem(input_tokens=tokens) if tokens is not None else None

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                return StreamItem(content=delta["text"])
            return None

        if event_type == "message_delta":
            delta = event.get("delta") or {}
            usage = event.get("usage") or {}
            reason = delta.get("stop_reason")
            if reason is None:
                return None
            return StreamItem(
                is_complete=True,
                stop_reason=normalize_stop_reason(reason),
                input_tokens=_int_or_none(usage.get("input_tokens")),
                output_tokens=_int_or_none(usage.get("output_tokens")),
            )

        if event_type == "error":
            error = event.get("error") or {}
            kind = self._ERROR_KINDS.get(error.get("type"), ProviderErrorKind.API_ERROR)
            raise ProviderError(kind, error.get("message") or "stream error")

        return None


class OpenAIDialect(Dialect):
    """Chat Completions chunks (OpenAI and compatible APIs such as DeepSeek).

    With ``stream_options.include_usage`` the finish reason arrives one chunk
    before the usage, so completion is reported on the usage chunk or at
    ``[DONE]``, whichever comes first.
    """

    def __init__(self):
        self._pending_stop: Optional[str] = None

    def decode_event(self, event: dict) -> Optional[StreamItem]:
        if "error" in event:
            error = event["error"] if isinstance(event["error"], dict) else {}
            code = str(error.get("code") or error.get("type") or "")
            if "rate_limit" in code or "insufficient_quota" in code:
                kind = ProviderErrorKind.RATE_LIMITED
            elif "invalid_api_key" in code or "authentication" in code:
                kind = ProviderErrorKind.AUTH
            else:
                kind = ProviderErrorKind.API_ERROR
            raise ProviderError(kind, error.get("message") or str(event["error"]))

        content = ""
        choices = event.get("choices") or []
        if choices:
            choice = choices[0]
            content = (choice.get("delta") or {}).get("content") or ""
            if choice.get("finish_reason"):
                self._pending_stop = normalize_stop_reason(choice["finish_reason"])

        usage = event.get("usage")
        if usage and self._pending_stop is not None:
            return StreamItem(
                content=content,
                is_complete=True,
                stop_reason=self._pending_stop,
                input_tokens=_int_or_none(usage.get("prompt_tokens")),
                output_tokens=_int_or_none(usage.get("completion_tokens")),
            )
        return StreamItem(content=content) if content else None

    def end_of_stream(self) -> Optional[StreamItem]:
        if self._pending_stop is None:
            return None
        return StreamItem(is_complete=True, stop_reason=self._pending_stop)


class GeminiDialect(Dialect):
    """streamGenerateContent chunks: candidate parts, finishReason and the
    cumulative usageMetadata, or an ``error`` body."""

    _ERROR_KINDS = {
        401: ProviderErrorKind.AUTH,
        403: ProviderErrorKind.AUTH,
        429: ProviderErrorKind.RATE_LIMITED,
    }

    def decode_event(self, event: dict) -> Optional[StreamItem]:
        if "error" in event:
            error = event["error"] if isinstance(event["error"], dict) else {}
            kind = self._ERROR_KINDS.get(error.get("code"), ProviderErrorKind.API_ERROR)
            raise ProviderError(kind, error.get("message") or str(event["error"]),
                                status_code=_int_or_none(error.get("code")))

        candidates = event.get("candidates") or []
        text = ""
        reason = None
        if candidates:
            candidate = candidates[0]
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
            reason = candidate.get("finishReason")

        if reason:
            usage = event.get("usageMetadata") or {}
            return StreamItem(
                content=text,
                is_complete=True,
                stop_reason=normalize_stop_reason(reason),
                input_tokens=_int_or_none(usage.get("promptTokenCount")),
                output_tokens=_int_or_none(usage.get("candidatesTokenCount")),
            )
        return StreamItem(content=text) if text else None
