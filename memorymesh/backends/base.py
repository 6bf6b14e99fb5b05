"""
Backend Adapter Contract

Every language-model backend is wrapped in an adapter exposing:
    initialize()                 → connect / probe (primary only)
    chat(messages)               → one assistant Message
    generate_embedding(text)     → list of floats (optional capability)
    cleanup()                    → release clients

A fallback adapter's initialize() performs no network traffic; its client
is created on first use. Every remote call is bounded by the configured
request timeout and reported as a transient BackendError when it expires.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Optional, Sequence, TypeVar

import httpx

from memorymesh.core.config import BackendConfig, BackendKind
from memorymesh.core.errors import BackendError, ConfigurationError, ValidationError
from memorymesh.core.types import Message, MessageRole
from memorymesh.core.validation import resolve_role, validate_messages

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdapterRole(Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class BackendAdapter(ABC):
    """
    Uniform request/response contract over one backend.

    Subclasses implement ``_create_client``, ``_chat`` and optionally
    ``_embed`` and ``_initialize_primary``.
    """

    kind: BackendKind
    supports_embeddings: bool = True

    ROLE_MAP: dict[MessageRole, str] = {
        MessageRole.SYSTEM: "system",
        MessageRole.USER: "user",
        MessageRole.ASSISTANT: "assistant",
    }

    def __init__(
        self,
        config: BackendConfig,
        role: AdapterRole = AdapterRole.PRIMARY,
    ) -> None:
        self._config = config
        self._role = role
        self._client: Any = None
        self._initialized = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------
    @property
    def config(self) -> BackendConfig:
        return self._config

    @property
    def identity(self) -> str:
        return self._config.identity

    @property
    def role(self) -> AdapterRole:
        return self._role

    @property
    def is_primary(self) -> bool:
        return self._role is AdapterRole.PRIMARY

    @property
    def initialized(self) -> bool:
        return self._initialized

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------
    async def initialize(self) -> None:
        """Probe the backend. A fallback adapter defers everything to first use."""
        if not self.is_primary:
            logger.debug(f"Deferring initialization of fallback backend {self.identity}")
            return
        await self._initialize_primary()
        self._initialized = True
        logger.info(f"Initialized backend {self.identity}", extra={"model": self._config.model})

    async def chat(self, messages: Sequence[Message]) -> Message:
        validate_messages(messages)
        native = [self.map_message(m) for m in messages]
        reply = await self._with_timeout(self._chat(native), "chat")
        if not reply.content or not reply.content.strip():
            raise BackendError.malformed_response(self.identity, "empty completion")
        return reply

    async def generate_embedding(self, text: str) -> list[float]:
        if not self.supports_embeddings:
            raise ConfigurationError.unsupported_operation(self.identity, "embeddings")
        if not isinstance(text, str) or not text.strip():
            raise ValidationError.invalid_content("embedding input must be non-empty text")
        vector = await self._with_timeout(self._embed(text), "embedding")
        if not vector:
            raise BackendError.malformed_response(self.identity, "empty embedding")
        return [float(x) for x in vector]

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._close_client(self._client)
            self._client = None
        self._initialized = False

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def map_role(self, role: Any) -> str:
        return self.ROLE_MAP[resolve_role(role)]

    def map_message(self, message: Message) -> dict[str, str]:
        return {"role": self.map_role(message.role), "content": message.content}

    @property
    def client(self) -> Any:
        """Backend client, created lazily on first use."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def _with_timeout(self, coro: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self._config.timeout_s)
        except asyncio.TimeoutError:
            raise BackendError.timeout(self.identity, operation, self._config.timeout_s) from None

    # -------------------------------------------------------------------------
    # Backend-specific hooks
    # -------------------------------------------------------------------------
    async def _initialize_primary(self) -> None:
        """Connectivity probe for primary adapters; default touches the client only."""
        _ = self.client

    @abstractmethod
    def _create_client(self) -> Any:
        ...

    @abstractmethod
    async def _chat(self, native: list[dict[str, str]]) -> Message:
        ...

    async def _embed(self, text: str) -> list[float]:
        raise ConfigurationError.unsupported_operation(self.identity, "embeddings")

    async def _close_client(self, client: Any) -> None:
        close = getattr(client, "close", None)
        if close is not None:
            await close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(identity={self.identity!r}, role={self._role.value})"


class HttpBackendAdapter(BackendAdapter):
    """
    Adapter speaking JSON over HTTP through ``httpx.AsyncClient``.

    ``transport`` lets tests substitute ``httpx.MockTransport``.
    """

    default_base_url: str = ""

    def __init__(
        self,
        config: BackendConfig,
        role: AdapterRole = AdapterRole.PRIMARY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(config, role)
        self._transport = transport

    @property
    def base_url(self) -> str:
        return (self._config.base_url or self.default_base_url).rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"content-type": "application/json"}

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self._config.timeout_s,
            transport=self._transport,
        )

    async def _close_client(self, client: httpx.AsyncClient) -> None:
        await client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Send one request and decode its JSON body.

        Raises:
            BackendError: Timeout, transport failure, non-2xx status or bad JSON
        """
        try:
            response = await self.client.request(method, path, json=payload)
        except httpx.TimeoutException:
            raise BackendError.timeout(self.identity, path, self._config.timeout_s) from None
        except httpx.TransportError as e:
            raise BackendError.network(self.identity, cause=e) from e

        if response.status_code >= 400:
            raise BackendError.http_status(self.identity, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError:
            raise BackendError.malformed_response(self.identity, "body is not JSON") from None
        if not isinstance(data, dict):
            raise BackendError.malformed_response(self.identity, "expected a JSON object")
        return data
