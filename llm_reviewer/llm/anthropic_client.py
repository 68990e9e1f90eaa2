"""
Anthropic Claude LLM client — calls the Anthropic Messages API directly.
"""

from typing import List

from .base import LLMClient, Message, split_system
from .dialects import AnthropicDialect


class AnthropicClient(LLMClient):

    provider_name = "Anthropic"
    ANTHROPIC_VERSION = "2023-06-01"

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.ANTHROPIC_VERSION,
        }

    def new_dialect(self):
        return AnthropicDialect()

    def _build_request(self, messages: List[Message]) -> tuple[str, dict, dict]:
        system, turns = split_system(messages)
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": m.role, "content": m.content} for m in turns],
            "stream": True,
        }
        if system:
            payload["system"] = system
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return f"{self.base_url}/messages", self._headers(), payload
