"""Shared pytest setup for the parley suite.

Every test runs with provider credentials and ``PARLEY_*`` settings stripped
from the environment and with ``.env`` loading disabled, so results never
depend on the developer's shell. Live backend tests carry the ``api`` marker
and only run with ``ENABLE_API_TESTS=1``.
"""

from __future__ import annotations

import logging
import os

import pytest

from parley.config import API_KEY_ENV_VARS, Config

# Canonical model ids used across the suite.
OPENAI_MODEL = "gpt-4o"
ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"
GEMINI_MODEL = "gemini-2.0-flash"
LLAMA_MODEL = "meta-llama/llama-3.3-70b-instruct"

# Cheap models for live round-trips.
LIVE_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-20241022",
    "gemini": "gemini-2.0-flash",
}

_ISOLATED_PREFIXES = ("OPENAI_", "ANTHROPIC_", "GEMINI_", "OPENROUTER_", "PARLEY_")


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


def _no_dotenv(*_args, **_kwargs) -> bool:
    return False


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Keep ``.env`` files out of ``Config`` resolution.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    monkeypatch.setattr("dotenv.load_dotenv", _no_dotenv)
    monkeypatch.setattr("parley.config.load_dotenv", _no_dotenv)


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Strip credentials and PARLEY_* settings for the duration of a test.

    Opt-out: @pytest.mark.allow_env_pollution; ``api`` tests keep their keys.
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return
    for key in [k for k in os.environ if k.startswith(_ISOLATED_PREFIXES)]:
        monkeypatch.delenv(key)


@pytest.fixture(scope="session", autouse=True)
def quiet_transport_loggers():
    for name in ("httpx", "httpcore", "anthropic", "openai", "google_genai"):
        logging.getLogger(name).setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(config, items):
    """Skip ``api`` tests unless ENABLE_API_TESTS is set."""
    if os.getenv("ENABLE_API_TESTS"):
        return
    skip_api = pytest.mark.skip(reason="API tests require ENABLE_API_TESTS=1")
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def openai_config() -> Config:
    return Config(provider="openai", model=OPENAI_MODEL, api_key="test-key")


@pytest.fixture
def anthropic_config() -> Config:
    return Config(provider="anthropic", model=ANTHROPIC_MODEL, api_key="test-key")


@pytest.fixture
def gemini_config() -> Config:
    return Config(provider="gemini", model=GEMINI_MODEL, api_key="test-key")


@pytest.fixture
def mock_config() -> Config:
    return Config(provider="openai", model=OPENAI_MODEL, use_mock=True)


@pytest.fixture
def live_config():
    """Factory: a live Config for *provider*, or skip when its key is unset."""

    def build(provider: str) -> Config:
        env_var = API_KEY_ENV_VARS[provider]
        key = os.getenv(env_var)
        if not key:
            pytest.skip(f"{env_var} not set")
        return Config(
            provider=provider,
            model=LIVE_MODELS[provider],
            api_key=key,
            max_tokens=256,
            enable_prompt_caching=False,
        )

    return build
