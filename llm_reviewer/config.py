"""
Configuration — loads settings from .llm_reviewer.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml

from .errors import ConfigError

PROVIDERS = ("anthropic", "openai", "gemini", "deepseek")

_PROVIDER_DEFAULTS = {
    "anthropic": {"base_url": "https://api.anthropic.com/v1",
                  "model": "claude-sonnet-4-20250514"},
    "openai": {"base_url": "https://api.openai.com/v1",
               "model": "gpt-4o-mini"},
    "gemini": {"base_url": "https://generativelanguage.googleapis.com/v1beta",
               "model": "gemini-1.5-pro"},
    "deepseek": {"base_url": "https://api.deepseek.com/v1",
                 "model": "deepseek-chat"},
}

_DEFAULTS = {
    "provider": "anthropic",
    "max_tokens": 8192,
    "llm_max_retries": 3,
    "llm_retry_delay": 2.0,
    "connect_timeout": 10.0,
    "read_timeout": 300.0,
    "query_timeout": 1800.0,
    "max_continuations": 10,
    "allow_overwrite": False,
    "insert_after_zero": "prepend",
    "trailing_newline": "preserve",
    "ignore_leading_whitespace": False,
    "max_verbatim_lines": 10_000,
    "log_dir": ".llm_reviewer/logs",
}


def default_model(provider: str) -> str:
    return _PROVIDER_DEFAULTS.get(provider, {}).get("model", "")


# Config file search locations
_CONFIG_FILENAMES = [".llm_reviewer.yaml", ".llm_reviewer.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        raise ConfigError(f"Config file not found: {explicit_path}")

    # Search CWD first, then home directory
    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller via :meth:`override`)
    2. Environment variables
    3. .llm_reviewer.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            raw = env_val if env_val is not None else yd.get(yaml_key)
            if raw is None:
                return default
            try:
                return cast(raw)
            except (TypeError, ValueError):
                source = env_key if env_val is not None else yaml_key
                raise ConfigError(f"Invalid value for {source}: {raw!r}") from None

        self.PROVIDER = _get("LLM_PROVIDER", "provider", _DEFAULTS["provider"]).lower()
        self.MODEL = _get("LLM_MODEL", "model", None)
        self.MAX_TOKENS = _get("MAX_TOKENS", "max_tokens", _DEFAULTS["max_tokens"], cast=int)
        self.TEMPERATURE = _get("TEMPERATURE", "temperature", None, cast=float)

        self.LLM_MAX_RETRIES = _get("LLM_MAX_RETRIES", "llm_max_retries",
                                    _DEFAULTS["llm_max_retries"], cast=int)
        self.LLM_RETRY_DELAY = _get("LLM_RETRY_DELAY", "llm_retry_delay",
                                    _DEFAULTS["llm_retry_delay"], cast=float)
        self.CONNECT_TIMEOUT = _get("CONNECT_TIMEOUT", "connect_timeout",
                                    _DEFAULTS["connect_timeout"], cast=float)
        self.READ_TIMEOUT = _get("READ_TIMEOUT", "read_timeout",
                                 _DEFAULTS["read_timeout"], cast=float)
        self.QUERY_TIMEOUT = _get("QUERY_TIMEOUT", "query_timeout",
                                  _DEFAULTS["query_timeout"], cast=float)
        self.MAX_CONTINUATIONS = _get("MAX_CONTINUATIONS", "max_continuations",
                                      _DEFAULTS["max_continuations"], cast=int)

        # Provider credentials, e.g. ANTHROPIC_API_KEY or yaml "anthropic: {api_key: ...}"
        self.API_KEYS: dict[str, str] = {}
        self.BASE_URLS: dict[str, str] = {}
        for name in PROVIDERS:
            section = yd.get(name, {}) if isinstance(yd.get(name), dict) else {}
            prefix = name.upper()
            self.API_KEYS[name] = os.getenv(f"{prefix}_API_KEY") or section.get("api_key", "")
            self.BASE_URLS[name] = (os.getenv(f"{prefix}_BASE_URL")
                                    or section.get("base_url")
                                    or _PROVIDER_DEFAULTS[name]["base_url"])

        # Applicator behaviour
        self.ALLOW_OVERWRITE = _get("ALLOW_OVERWRITE", "allow_overwrite",
                                    _DEFAULTS["allow_overwrite"], cast=_to_bool)
        self.INSERT_AFTER_ZERO = _get("INSERT_AFTER_ZERO", "insert_after_zero",
                                      _DEFAULTS["insert_after_zero"]).lower()
        self.TRAILING_NEWLINE = _get("TRAILING_NEWLINE", "trailing_newline",
                                     _DEFAULTS["trailing_newline"]).lower()
        self.IGNORE_LEADING_WHITESPACE = _get(
            "IGNORE_LEADING_WHITESPACE", "ignore_leading_whitespace",
            _DEFAULTS["ignore_leading_whitespace"], cast=_to_bool)
        self.MAX_VERBATIM_LINES = _get("MAX_VERBATIM_LINES", "max_verbatim_lines",
                                       _DEFAULTS["max_verbatim_lines"], cast=int)

        self.LOG_DIR = _get("LOG_DIR", "log_dir", _DEFAULTS["log_dir"])

        # Per-model pricing (USD per 1M tokens): {"sonnet": {"input": 3, "output": 15}}
        self.PRICING: dict = yd.get("pricing", {})
        if not isinstance(self.PRICING, dict):
            self.PRICING = {}

    @property
    def model(self) -> str:
        """Configured model, or the provider's default."""
        if self.MODEL:
            return self.MODEL
        return default_model(self.PROVIDER)

    def api_key(self, provider: str | None = None) -> str:
        return self.API_KEYS.get(provider or self.PROVIDER, "")

    def base_url(self, provider: str | None = None) -> str:
        return self.BASE_URLS.get(provider or self.PROVIDER, "")

    def override(self, **values) -> "Config":
        """Apply CLI arguments; ``None`` values are ignored."""
        for key, value in values.items():
            if value is None:
                continue
            attr = key.upper()
            if not hasattr(self, attr):
                raise ConfigError(f"Unknown setting: {key}")
            setattr(self, attr, value.lower() if attr == "PROVIDER" else value)
        return self

    def validate(self, require_api_key: bool = False) -> "Config":
        """Raise :class:`ConfigError` listing every invalid setting."""
        problems = []
        if self.PROVIDER not in PROVIDERS:
            problems.append(f"provider must be one of {', '.join(PROVIDERS)} "
                            f"(got {self.PROVIDER!r})")
        if self.INSERT_AFTER_ZERO not in ("prepend", "error"):
            problems.append("insert_after_zero must be 'prepend' or 'error'")
        if self.TRAILING_NEWLINE not in ("preserve", "always", "never"):
            problems.append("trailing_newline must be 'preserve', 'always' or 'never'")
        for name in ("MAX_TOKENS", "LLM_MAX_RETRIES", "MAX_VERBATIM_LINES"):
            if getattr(self, name) < 1:
                problems.append(f"{name.lower()} must be at least 1")
        for name in ("CONNECT_TIMEOUT", "READ_TIMEOUT", "QUERY_TIMEOUT"):
            if getattr(self, name) <= 0:
                problems.append(f"{name.lower()} must be positive")
        if self.MAX_CONTINUATIONS < 0:
            problems.append("max_continuations must not be negative")
        if self.LLM_RETRY_DELAY < 0:
            problems.append("llm_retry_delay must not be negative")
        if require_api_key and self.PROVIDER in PROVIDERS and not self.api_key():
            problems.append(f"no API key for {self.PROVIDER} "
                            f"(set {self.PROVIDER.upper()}_API_KEY)")
        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))
        return self

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
