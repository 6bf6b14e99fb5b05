"""
Ollama Backend: Locally Hosted Models over httpx

Endpoints:
    GET  /api/version     → server version (connection probe)
    GET  /api/tags        → installed models
    POST /api/generate    → completion for a flattened prompt
    POST /api/embeddings  → embedding vector

With ``limited_mode`` enabled, an unreachable server yields a degraded
assistant reply (Message.degraded=True) instead of an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from memorymesh.backends.base import HttpBackendAdapter
from memorymesh.core import constants as C
from memorymesh.core.config import BackendKind
from memorymesh.core.errors import BackendError, ErrorCode
from memorymesh.core.types import Message, MessageRole

logger = logging.getLogger(__name__)

_UNREACHABLE = (ErrorCode.BACKEND_NETWORK, ErrorCode.BACKEND_TIMEOUT)


@dataclass(slots=True)
class OllamaStatus:
    available: bool = False
    version: Optional[str] = None
    models: list[str] = field(default_factory=list)


class OllamaBackend(HttpBackendAdapter):
    """Ollama adapter; needs no credentials."""

    kind = BackendKind.OLLAMA
    default_base_url = C.OLLAMA_BASE_URL

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._status = OllamaStatus()

    @property
    def status(self) -> OllamaStatus:
        return self._status

    async def _initialize_primary(self) -> None:
        try:
            await self.check_connection()
        except BackendError as e:
            if not self._config.limited_mode:
                raise
            logger.warning(f"Ollama unavailable, running in limited mode: {e.message}")
            return

        if self._config.model not in self._status.models:
            logger.warning(
                f"Model {self._config.model} not installed on Ollama server",
                extra={"available_models": self._status.models},
            )

    async def check_connection(self) -> OllamaStatus:
        """Probe version and installed models."""
        version = await self._request("GET", "/api/version")
        if not version.get("version"):
            raise BackendError.malformed_response(self.identity, "missing version")

        tags = await self._request("GET", "/api/tags")
        models = tags.get("models")
        if not isinstance(models, list):
            raise BackendError.malformed_response(self.identity, "missing model list")

        self._status = OllamaStatus(
            available=True,
            version=str(version["version"]),
            models=[m.get("name", "") for m in models if isinstance(m, dict)],
        )
        logger.info(f"Connected to Ollama v{self._status.version}")
        return self._status

    async def _chat(self, native: list[dict[str, str]]) -> Message:
        prompt = "\n".join(f"{m['role']}: {m['content']}" for m in native)
        payload = {
            "model": self._config.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self._config.temperature,
                "num_predict": self._config.max_tokens,
            },
        }
        try:
            data = await self._request("POST", "/api/generate", payload)
        except BackendError as e:
            if self._config.limited_mode and e.code in _UNREACHABLE:
                self._status.available = False
                logger.warning("Ollama unreachable, returning limited-mode reply")
                return Message(
                    role=MessageRole.ASSISTANT,
                    content=C.LIMITED_MODE_REPLY,
                    degraded=True,
                )
            raise

        text = data.get("response")
        if not isinstance(text, str) or not text:
            raise BackendError.malformed_response(self.identity, "missing response text")
        return Message.assistant(text)

    async def _embed(self, text: str) -> list[float]:
        data = await self._request(
            "POST",
            "/api/embeddings",
            {"model": self._config.model, "prompt": text},
        )
        embedding = data.get("embedding")
        if not isinstance(embedding, list):
            raise BackendError.malformed_response(self.identity, "missing embedding")
        return embedding
