"""
Adapter registry: maps a backend kind to its adapter class.
"""

from __future__ import annotations

from typing import Any

from memorymesh.backends.anthropic_backend import AnthropicBackend
from memorymesh.backends.base import AdapterRole, BackendAdapter
from memorymesh.backends.ollama_backend import OllamaBackend
from memorymesh.backends.openai_backend import OpenAIBackend
from memorymesh.core.config import BackendConfig, BackendKind
from memorymesh.core.errors import ConfigurationError

ADAPTERS: dict[BackendKind, type[BackendAdapter]] = {
    BackendKind.OPENAI: OpenAIBackend,
    BackendKind.ANTHROPIC: AnthropicBackend,
    BackendKind.OLLAMA: OllamaBackend,
}


def create_adapter(
    config: BackendConfig,
    role: AdapterRole = AdapterRole.PRIMARY,
    **kwargs: Any,
) -> BackendAdapter:
    """
    Instantiate the adapter for ``config.kind``.

    Extra keyword arguments (e.g. ``transport`` or ``client``) are passed
    to the adapter constructor.

    Raises:
        ConfigurationError: If no adapter is registered for the kind
    """
    adapter_cls = ADAPTERS.get(config.kind)
    if adapter_cls is None:
        raise ConfigurationError.unsupported_backend(config.kind)
    return adapter_cls(config, role, **kwargs)
