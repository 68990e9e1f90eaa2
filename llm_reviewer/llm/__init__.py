from .base import LLMClient, Message, StreamItem, StreamResult
from .anthropic_client import AnthropicClient
from .openai_client import OpenAIClient, DeepSeekClient
from .gemini_client import GeminiClient
from .dialects import AnthropicDialect, OpenAIDialect, GeminiDialect
from .sse import SSEDecoder, iter_stream_items
from .continuation import (
    CONTINUATION_PROMPT, CancellationToken, ContinuationCoordinator,
)
from .factory import create_client
