"""Informal model-name matching and provider derivation.

Users type ``opus``, ``gpt4`` or ``sonnet 3.5``; backends want canonical
identifiers. Matching runs three passes over ``MODEL_ALIASES`` on
normalized names (lower-case, alphanumerics only): exact, substring (the
input must appear inside an alias), then Levenshtein distance scored as
``distance / max(len)``.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Literal

__all__ = [
    "MODEL_ALIASES",
    "PRIMARY_PROVIDER",
    "ModelMatch",
    "find_model_matches",
    "get_model_name",
    "levenshtein",
    "match_model_name",
    "normalize_model_name",
    "provider_for_model",
    "resolve_model_id",
]

ProviderName = Literal["openai", "anthropic", "gemini", "openrouter"]

PRIMARY_PROVIDER: ProviderName = "openai"

DEFAULT_FUZZY_THRESHOLD = 2

MODEL_ALIASES: dict[str, tuple[str, ...]] = {
    # Anthropic
    "claude-3-opus-20240229": (
        "opus",
        "opus-3",
        "claude-opus",
        "claude-3-opus",
        "claude-opus-3",
        "claude-3",
    ),
    "claude-3-sonnet-20240229": (
        "sonnet",
        "sonnet-3",
        "claude-sonnet",
        "claude-3-sonnet",
        "claude-sonnet-3",
        "claude-3",
    ),
    "claude-3-haiku-20240307": (
        "haiku",
        "haiku-3",
        "claude-haiku",
        "claude-3-haiku",
        "claude-haiku-3",
        "claude-3",
    ),
    "claude-3-5-sonnet-20241022": (
        "sonnet-3.5",
        "claude-3.5-sonnet",
        "claude-3-5-sonnet",
        "claude-sonnet-3.5",
    ),
    "claude-3-5-haiku-20241022": (
        "haiku-3.5",
        "claude-3.5-haiku",
        "claude-3-5-haiku",
        "claude-haiku-3.5",
    ),
    "claude-3-7-sonnet-20250219": (
        "sonnet-3.7",
        "claude-3.7-sonnet",
        "claude-3-7-sonnet",
        "claude-sonnet-3.7",
    ),
    "claude-sonnet-4-20250514": (
        "sonnet-4",
        "claude-sonnet-4",
        "claude-4-sonnet",
    ),
    "claude-opus-4-20250514": (
        "opus-4",
        "claude-opus-4",
        "claude-4-opus",
    ),
    # OpenAI
    "gpt-4o": ("4o", "gpt-4o", "gpt4o", "openai-4o", "omni", "gpt4"),
    "gpt-4o-mini": ("4o-mini", "gpt-4o-mini", "gpt4o-mini", "openai-mini"),
    "gpt-4-turbo": ("4-turbo", "gpt-4-turbo", "gpt4-turbo", "turbo", "gpt4 turbo", "gpt4"),
    "gpt-4.1": ("4.1", "gpt-4.1", "gpt41"),
    "gpt-3.5-turbo": ("3.5", "gpt-3.5", "gpt3.5", "openai-3.5", "chatgpt"),
    "o3-mini": ("o3-mini", "o3mini"),
    # Google
    "gemini-pro": ("gemini", "gemini-pro", "google-gemini", "gemini-1.0-pro"),
    "gemini-1.5-pro": ("gemini-1.5", "1.5-pro", "gemini-pro-1.5", "advanced"),
    "gemini-2.0-flash": ("flash", "gemini-flash", "gemini-2.0", "2.0-flash", "gemini-2"),
    # Llama via OpenRouter
    "meta-llama/llama-3.3-70b-instruct": (
        "llama",
        "llama-3",
        "llama3",
        "llama-3.3",
        "llama-70b",
    ),
}

# Ordered: first matching substring wins.
_PROVIDER_RULES: tuple[tuple[tuple[str, ...], ProviderName], ...] = (
    (("claude", "anthropic"), "anthropic"),
    (("gemini",), "gemini"),
    (("llama", "mistral", "/"), "openrouter"),
    (("gpt", "o1", "o3", "o4", "codex", "davinci"), "openai"),
)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class ModelMatch:
    """A ranked candidate from ``find_model_matches``."""

    official_name: str
    score: float
    match_type: Literal["exact", "substring", "fuzzy"]


def normalize_model_name(name: str) -> str:
    """Lower-case *name* and strip every non-alphanumeric character."""
    return _NON_ALNUM.sub("", name.strip().lower())


def levenshtein(a: str, b: str) -> int:
    """Return the edit distance between *a* and *b*."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def _alias_pairs() -> list[tuple[str, str]]:
    return [
        (official, normalize_model_name(alias))
        for official, aliases in MODEL_ALIASES.items()
        for alias in aliases
    ]


def _fuzzy_score(cleaned: str, alias: str) -> float:
    longest = max(len(cleaned), len(alias))
    if longest == 0:
        return 0.0
    return levenshtein(cleaned, alias) / longest


def _exact_match(name: str) -> str | None:
    lowered = name.strip().lower()
    if lowered in MODEL_ALIASES:
        return lowered
    cleaned = normalize_model_name(name)
    for official, alias in _alias_pairs():
        if cleaned == alias:
            return official
    return None


def match_model_name(
    name: str, *, fuzzy_threshold: int = DEFAULT_FUZZY_THRESHOLD
) -> str | None:
    """Resolve an informal model name to its canonical id, or None.

    ``fuzzy_threshold`` is in tenths: the default of 2 accepts aliases whose
    normalized edit distance is at most 20% of the longer string.
    """
    cleaned = normalize_model_name(name)
    if not cleaned:
        return None

    exact = _exact_match(name)
    if exact is not None:
        return exact

    pairs = _alias_pairs()
    if len(cleaned) > 1:
        for official, alias in pairs:
            if cleaned in alias:
                return official

    best: tuple[str, float] | None = None
    limit = fuzzy_threshold / 10
    for official, alias in pairs:
        score = _fuzzy_score(cleaned, alias)
        if score <= limit and (best is None or score < best[1]):
            best = (official, score)
    return best[0] if best else None


def find_model_matches(
    name: str, *, fuzzy_threshold: int = DEFAULT_FUZZY_THRESHOLD
) -> list[ModelMatch]:
    """Return every alias hit for *name*, best first.

    Exact hits score 1.0, substring hits 0.7, fuzzy hits ``1 - distance ratio``.
    """
    cleaned = normalize_model_name(name)
    if not cleaned:
        return []

    matches: list[ModelMatch] = []
    floor = 1 - fuzzy_threshold / 10
    for official, alias in _alias_pairs():
        if cleaned == alias:
            matches.append(ModelMatch(official, 1.0, "exact"))
        elif len(cleaned) > 1 and cleaned in alias:
            matches.append(ModelMatch(official, 0.7, "substring"))
        else:
            score = 1 - _fuzzy_score(cleaned, alias)
            if score >= floor:
                matches.append(ModelMatch(official, score, "fuzzy"))

    # Stable sort keeps table order among equal scores.
    return sorted(matches, key=lambda m: m.score, reverse=True)


def get_model_name(name: str) -> str:
    """Return the canonical id for *name*, or *name* unchanged when unknown."""
    return match_model_name(name) or name


def resolve_model_id(
    name: str, *, fuzzy_threshold: int = DEFAULT_FUZZY_THRESHOLD
) -> str:
    """Canonicalize *name* without rewriting ids a backend already accepts.

    Exact aliases always resolve. Otherwise a name carrying a provider token
    (``o3``, ``claude-opus-4-1``) is taken as a real id and kept verbatim;
    only the remaining informal names go through substring and fuzzy passes.
    """
    exact = _exact_match(name)
    if exact is not None:
        return exact
    lowered = name.strip().lower()
    if any(needle in lowered for needles, _ in _PROVIDER_RULES for needle in needles):
        return name
    return match_model_name(name, fuzzy_threshold=fuzzy_threshold) or name


def provider_for_model(model: str) -> ProviderName:
    """Derive the backend that serves *model*; unknown ids go to the primary."""
    lowered = model.lower()
    for needles, provider in _PROVIDER_RULES:
        if any(needle in lowered for needle in needles):
            return provider
    return PRIMARY_PROVIDER
