"""Configuration: a frozen snapshot read by every adapter and the loop."""

from __future__ import annotations

from dataclasses import dataclass, fields
import os
from typing import Any, Literal

from dotenv import load_dotenv

from parley.errors import ConfigurationError
from parley.model_aliases import provider_for_model, resolve_model_id

load_dotenv()

ProviderName = Literal["openai", "anthropic", "gemini", "openrouter"]
CachingStrategy = Literal["aggressive", "conservative", "custom"]
CacheTTL = Literal["5m", "1h"]

# Provider-specific API key environment variable names
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

_PROVIDERS: tuple[str, ...] = ("openai", "anthropic", "gemini", "openrouter")
_STRATEGIES: tuple[str, ...] = ("aggressive", "conservative", "custom")
_TTLS: tuple[str, ...] = ("5m", "1h")
_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off", ""})

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
    "gemini": "gemini-2.0-flash",
    "openrouter": "meta-llama/llama-3.3-70b-instruct",
}


def _coerce_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigurationError(
        f"{name} must be a boolean, got {raw!r}",
        hint="Use one of: 1/0, true/false, yes/no, on/off.",
    )


def _coerce_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
        ) from e


# Environment variable → (field name, coercion).
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "PARLEY_PROVIDER": ("provider", "str"),
    "PARLEY_MODEL": ("model", "str"),
    "PARLEY_MAX_TOKENS": ("max_tokens", "int"),
    "PARLEY_STREAMING": ("streaming", "bool"),
    "PARLEY_VERBOSE": ("verbose", "bool"),
    "PARLEY_PROMPT_CACHING": ("enable_prompt_caching", "bool"),
    "PARLEY_CACHE_STRATEGY": ("prompt_caching_strategy", "str"),
    "PARLEY_CACHE_TTL": ("cache_ttl", "str"),
    "PARLEY_STRICT_CACHE": ("strict_cache_validation", "bool"),
    "PARLEY_USE_RESPONSES_API": ("use_responses_api", "bool"),
    "PARLEY_MAX_ITERATIONS": ("max_iterations", "int"),
    "PARLEY_USE_MOCK": ("use_mock", "bool"),
    "PARLEY_BASE_URL": ("base_url", "str"),
}


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one engine session.

    The API key is auto-resolved from the provider's standard environment
    variable. A missing key is reported by ``provider.initialize()`` rather
    than here, so a caller can fall back to another backend.

    Example:
        config = Config(provider="anthropic", model="claude-3-5-sonnet-20241022")
        # API key is automatically resolved from ANTHROPIC_API_KEY
    """

    provider: ProviderName
    model: str
    #: Auto-resolved from ``<PROVIDER>_API_KEY`` when *None*.
    api_key: str | None = None
    #: Overrides the SDK endpoint (OpenAI-compatible servers, OpenRouter).
    base_url: str | None = None
    max_tokens: int = 8000
    temperature: float | None = None
    verbose: bool = False
    streaming: bool = False

    enable_prompt_caching: bool = True
    cache_system_prompts: bool = True
    cache_tool_definitions: bool = True
    cache_conversation_history: bool = True
    prompt_caching_strategy: CachingStrategy = "aggressive"
    cache_ttl: CacheTTL = "5m"
    #: Fail a shaped request whose usage shows neither cache read nor write.
    strict_cache_validation: bool = False

    #: Route OpenAI requests through the Responses API first.
    use_responses_api: bool = False
    max_iterations: int = 10
    max_iterations_verbose: int = 20
    fuzzy_threshold: int = 2
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Auto-resolve API key and validate configuration."""
        if self.provider not in _PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint=f"Supported providers: {', '.join(_PROVIDERS)}",
            )
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint=f"For example: model={DEFAULT_MODELS[self.provider]!r}",
            )
        if self.max_tokens < 1:
            raise ConfigurationError(
                f"max_tokens must be ≥ 1, got {self.max_tokens}",
            )
        if self.max_iterations < 1 or self.max_iterations_verbose < 1:
            raise ConfigurationError(
                "max_iterations and max_iterations_verbose must be ≥ 1",
                hint="These cap how many model round-trips one answer may take.",
            )
        if self.prompt_caching_strategy not in _STRATEGIES:
            raise ConfigurationError(
                f"Unknown prompt_caching_strategy: {self.prompt_caching_strategy!r}",
                hint=f"Use one of: {', '.join(_STRATEGIES)}",
            )
        if self.cache_ttl not in _TTLS:
            raise ConfigurationError(
                f"Unknown cache_ttl: {self.cache_ttl!r}",
                hint="Anthropic ephemeral caches accept '5m' or '1h'.",
            )
        if not 0 <= self.fuzzy_threshold <= 10:
            raise ConfigurationError(
                f"fuzzy_threshold must be between 0 and 10, got {self.fuzzy_threshold}",
                hint="The threshold is in tenths of the normalized edit distance.",
            )

        if self.api_key is None and not self.use_mock:
            resolved_key = os.environ.get(API_KEY_ENV_VARS[self.provider])
            object.__setattr__(self, "api_key", resolved_key or None)

    @property
    def iteration_limit(self) -> int:
        """Turn cap for the tool loop under the current verbosity."""
        return self.max_iterations_verbose if self.verbose else self.max_iterations

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Build a snapshot from ``PARLEY_*`` variables, then apply *overrides*.

        The model name goes through alias matching (``opus`` becomes the
        canonical Claude id) and, when no provider is given, the provider is
        derived from the model.
        """
        values: dict[str, Any] = {}
        for env_var, (field_name, kind) in _ENV_FIELDS.items():
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            if kind == "bool":
                values[field_name] = _coerce_bool(env_var, raw)
            elif kind == "int":
                values[field_name] = _coerce_int(env_var, raw)
            elif raw.strip():
                values[field_name] = raw.strip()

        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown config fields: {', '.join(sorted(unknown))}",
            )
        values.update({k: v for k, v in overrides.items() if v is not None})

        model = values.get("model")
        if model:
            threshold = values.get("fuzzy_threshold", 2)
            values["model"] = resolve_model_id(model, fuzzy_threshold=threshold)
        provider = values.get("provider")
        if provider is None:
            provider = provider_for_model(values["model"]) if model else "openai"
            values["provider"] = provider
        values.setdefault("model", DEFAULT_MODELS.get(provider, ""))
        return cls(**values)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"streaming={self.streaming}, verbose={self.verbose}, "
            f"prompt_caching={self.enable_prompt_caching}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
