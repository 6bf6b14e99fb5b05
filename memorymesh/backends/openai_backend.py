"""
OpenAI Backend: Chat Completions and text-embedding-3-small

Uses the official async SDK (openai.AsyncOpenAI). SDK-level retries are
disabled; the mesh's retry engine owns re-attempts.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import openai

from memorymesh.backends.base import AdapterRole, BackendAdapter
from memorymesh.core import constants as C
from memorymesh.core.config import BackendConfig, BackendKind
from memorymesh.core.errors import BackendError
from memorymesh.core.types import Message

logger = logging.getLogger(__name__)


class OpenAIBackend(BackendAdapter):
    """
    OpenAI chat + embeddings adapter.

    Example:
        backend = OpenAIBackend(BackendConfig(BackendKind.OPENAI, "gpt-4o-mini", api_key="sk-..."))
        await backend.initialize()
        reply = await backend.chat([Message.user("Hello")])
    """

    kind = BackendKind.OPENAI

    def __init__(
        self,
        config: BackendConfig,
        role: AdapterRole = AdapterRole.PRIMARY,
        client: Optional[openai.AsyncOpenAI] = None,
        embedding_model: str = C.OPENAI_EMBEDDING_MODEL,
    ) -> None:
        super().__init__(config, role)
        self._client = client
        self._embedding_model = embedding_model

    def _create_client(self) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=self._config.api_key,
            base_url=self._config.base_url,
            timeout=self._config.timeout_s,
            max_retries=0,
        )

    async def _initialize_primary(self) -> None:
        # An embedding round-trip exercises the key and the network path.
        await self.generate_embedding("connection check")

    async def _chat(self, native: list[dict[str, str]]) -> Message:
        try:
            response = await self.client.chat.completions.create(
                model=self._config.model,
                messages=native,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
        except openai.OpenAIError as e:
            raise self._translate(e, "chat") from e

        if not response.choices:
            raise BackendError.malformed_response(self.identity, "no choices returned")
        content = response.choices[0].message.content
        if not content:
            raise BackendError.malformed_response(self.identity, "empty completion")
        return Message.assistant(content)

    async def _embed(self, text: str) -> list[float]:
        try:
            response = await self.client.embeddings.create(
                model=self._embedding_model,
                input=text,
            )
        except openai.OpenAIError as e:
            raise self._translate(e, "embedding") from e

        if not response.data:
            raise BackendError.malformed_response(self.identity, "no embedding returned")
        return list(response.data[0].embedding)

    def _translate(self, error: Any, operation: str) -> BackendError:
        if isinstance(error, openai.APITimeoutError):
            return BackendError.timeout(self.identity, operation, self._config.timeout_s)
        if isinstance(error, openai.APIConnectionError):
            return BackendError.network(self.identity, cause=error)
        if isinstance(error, openai.APIStatusError):
            return BackendError.http_status(self.identity, error.status_code, error.message)
        return BackendError.malformed_response(self.identity, str(error))
