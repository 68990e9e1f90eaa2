from ..config import default_model
from ..errors import ConfigError
from .anthropic_client import AnthropicClient
from .base import LLMClient
from .gemini_client import GeminiClient
from .openai_client import DeepSeekClient, OpenAIClient

_CLIENTS = {
    "anthropic": AnthropicClient,
    "openai": OpenAIClient,
    "gemini": GeminiClient,
    "deepseek": DeepSeekClient,
}


def create_client(cfg, provider: str | None = None, session=None) -> LLMClient:
    """Build the streaming client for ``provider`` (default: ``cfg.PROVIDER``)."""
    provider = (provider or cfg.PROVIDER).lower()
    client_cls = _CLIENTS.get(provider)
    if client_cls is None:
        raise ConfigError(f"Unknown provider: {provider!r} "
                          f"(expected one of {', '.join(_CLIENTS)})")
    api_key = cfg.api_key(provider)
    if not api_key:
        raise ConfigError(f"No API key configured for {provider} "
                          f"(set {provider.upper()}_API_KEY)")
    model = cfg.model if provider == cfg.PROVIDER else default_model(provider)
    return client_cls(
        base_url=cfg.base_url(provider),
        model=model,
        api_key=api_key,
        max_tokens=cfg.MAX_TOKENS,
        temperature=cfg.TEMPERATURE,
        max_retries=cfg.LLM_MAX_RETRIES,
        retry_delay=cfg.LLM_RETRY_DELAY,
        connect_timeout=cfg.CONNECT_TIMEOUT,
        read_timeout=cfg.READ_TIMEOUT,
        session=session,
    )
