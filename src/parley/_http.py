"""HTTP constants shared by the provider adapters."""

from __future__ import annotations

# Status codes that mark a backend failure as transient (529: Anthropic overloaded).
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504, 529})

# Status codes that mean the credential was rejected.
AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
