"""Provider implementations and the adapter factory."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import TYPE_CHECKING

from parley.config import DEFAULT_MODELS
from parley.errors import APIError, ConfigurationError
from parley.model_aliases import provider_for_model

from .anthropic import AnthropicProvider
from .base import BaseProvider, Provider, ProviderCapabilities
from .gemini import GeminiProvider
from .mock import MockProvider
from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider

if TYPE_CHECKING:
    from collections.abc import Iterable

    from parley.config import Config

logger = logging.getLogger(__name__)

_PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "openrouter": OpenRouterProvider,
    "mock": MockProvider,
}


def create_provider(name: str) -> BaseProvider:
    """Return an uninitialized adapter for backend *name*."""
    try:
        cls = _PROVIDER_CLASSES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown provider: {name!r}",
            hint=f"Supported providers: {', '.join(sorted(_PROVIDER_CLASSES))}",
        ) from None
    return cls()


def _config_for(config: Config, provider: str) -> Config:
    """Re-target *config* at a fallback backend, keeping every other setting."""
    if provider == config.provider:
        return config
    model = config.model
    if provider_for_model(model) != provider:
        model = DEFAULT_MODELS[provider]
    return replace(config, provider=provider, model=model, api_key=None)


async def connect(config: Config, fallbacks: Iterable[str] = ()) -> BaseProvider:
    """Initialize the configured backend, trying *fallbacks* in order on failure.

    Returns the first adapter whose ``initialize`` succeeds. When every
    candidate fails, the last recorded error is raised.
    """
    if config.use_mock:
        provider: BaseProvider = MockProvider()
        await provider.initialize(config)
        return provider

    last_error: Exception | None = None
    for name in (config.provider, *fallbacks):
        candidate_config = _config_for(config, name)
        provider = create_provider(name)
        if await provider.initialize(candidate_config):
            if name != config.provider:
                logger.warning(
                    "Falling back from %s to %s (model=%s)",
                    config.provider,
                    name,
                    candidate_config.model,
                )
            return provider
        last_error = provider.last_error

    if last_error is not None:
        raise last_error
    raise APIError(f"No provider could be initialized for {config.provider}")


__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GeminiProvider",
    "MockProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "Provider",
    "ProviderCapabilities",
    "connect",
    "create_provider",
]
