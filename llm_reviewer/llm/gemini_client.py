"""
Google Gemini LLM client — calls the Gemini REST API directly.
"""

from typing import List

from .base import LLMClient, Message, split_system
from .dialects import GeminiDialect


class GeminiClient(LLMClient):

    provider_name = "Gemini"

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    def new_dialect(self):
        return GeminiDialect()

    def _build_request(self, messages: List[Message]) -> tuple[str, dict, dict]:
        system, turns = split_system(messages)
        payload = {
            "contents": [
                {
                    # Gemini calls the assistant role "model"
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [{"text": m.content}],
                }
                for m in turns
            ],
            "generationConfig": {"maxOutputTokens": self.max_tokens},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if self.temperature is not None:
            payload["generationConfig"]["temperature"] = self.temperature
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        return url, self._headers(), payload
