"""
Backends: adapters over hosted and local language-model services.
"""

from memorymesh.backends.base import (
    AdapterRole,
    BackendAdapter,
    HttpBackendAdapter,
    resolve_role,
    validate_messages,
)
from memorymesh.backends.openai_backend import OpenAIBackend
from memorymesh.backends.anthropic_backend import AnthropicBackend
from memorymesh.backends.ollama_backend import OllamaBackend, OllamaStatus
from memorymesh.backends.registry import ADAPTERS, create_adapter

__all__ = [
    "AdapterRole",
    "BackendAdapter",
    "HttpBackendAdapter",
    "resolve_role",
    "validate_messages",
    "OpenAIBackend",
    "AnthropicBackend",
    "OllamaBackend",
    "OllamaStatus",
    "ADAPTERS",
    "create_adapter",
]
