"""
spacemind Common Module

Shared infrastructure: configuration, LLM client, errors, node store.
"""

from .config import SpacemindConfig, load_config
from .errors import (
    SpacemindError,
    ValidationError,
    AssistantUnavailableError,
    UnknownActionError,
)
from .llm_client import LLMClient
from .node_store import NodeStore

__all__ = [
    "SpacemindConfig",
    "load_config",
    "SpacemindError",
    "ValidationError",
    "AssistantUnavailableError",
    "UnknownActionError",
    "LLMClient",
    "NodeStore",
]
