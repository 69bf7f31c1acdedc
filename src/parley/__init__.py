"""Parley: one tool-calling conversation loop over many LLM backends.

Public API:
    - Config: Configuration snapshot
    - connect() / create_provider(): Backend adapters
    - Conversation: Multi-turn tool-calling loop
    - FunctionToolRegistry: In-memory tool registry
"""

from __future__ import annotations

import logging

from parley.config import Config
from parley.conversation import Conversation, ConversationResult, ConversationState
from parley.errors import (
    APIError,
    AuthError,
    CacheValidationError,
    ConfigurationError,
    InternalError,
    IterationLimitExceededError,
    ParleyError,
    RateLimitError,
    SchemaError,
    ToolCallIdMismatchError,
)
from parley.model_aliases import get_model_name, provider_for_model
from parley.providers import connect, create_provider
from parley.providers.models import (
    CacheBreakpoint,
    FunctionCallResponse,
    Message,
    ToolCall,
    ToolSchema,
    UsageRecord,
)
from parley.schema import SchemaAdapter
from parley.tools import FunctionToolRegistry, ToolRegistry, ToolResult

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("parley-ai")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("parley").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AuthError",
    "CacheBreakpoint",
    "CacheValidationError",
    "Config",
    "ConfigurationError",
    "Conversation",
    "ConversationResult",
    "ConversationState",
    "FunctionCallResponse",
    "FunctionToolRegistry",
    "InternalError",
    "IterationLimitExceededError",
    "Message",
    "ParleyError",
    "RateLimitError",
    "SchemaAdapter",
    "SchemaError",
    "ToolCall",
    "ToolCallIdMismatchError",
    "ToolRegistry",
    "ToolResult",
    "ToolSchema",
    "UsageRecord",
    "connect",
    "create_provider",
    "get_model_name",
    "provider_for_model",
]
