"""
OpenAI-compatible LLM client — Chat Completions with SSE streaming.

Also serves DeepSeek, whose API speaks the same dialect.
"""

from typing import List

from .base import LLMClient, Message
from .dialects import OpenAIDialect


class OpenAIClient(LLMClient):

    provider_name = "OpenAI"

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def new_dialect(self):
        return OpenAIDialect()

    def _build_request(self, messages: List[Message]) -> tuple[str, dict, dict]:
        payload = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": self.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return f"{self.base_url}/chat/completions", self._headers(), payload


class DeepSeekClient(OpenAIClient):

    provider_name = "DeepSeek"
