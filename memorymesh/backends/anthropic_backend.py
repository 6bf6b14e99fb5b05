"""
Anthropic Backend: Messages API over httpx

System messages are folded into the request's top-level ``system`` field;
the API accepts only user/assistant turns in ``messages``. The Messages
API offers no embeddings endpoint.
"""

from __future__ import annotations

from memorymesh.backends.base import HttpBackendAdapter
from memorymesh.core import constants as C
from memorymesh.core.config import BackendKind
from memorymesh.core.errors import BackendError
from memorymesh.core.types import Message


class AnthropicBackend(HttpBackendAdapter):
    """Anthropic Messages API adapter."""

    kind = BackendKind.ANTHROPIC
    supports_embeddings = False
    default_base_url = C.ANTHROPIC_BASE_URL

    def _headers(self) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self._config.api_key or "",
            "anthropic-version": C.ANTHROPIC_API_VERSION,
        }

    async def _chat(self, native: list[dict[str, str]]) -> Message:
        system_parts = [m["content"] for m in native if m["role"] == "system"]
        turns = [m for m in native if m["role"] != "system"]

        payload = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
            "messages": turns,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)

        data = await self._request("POST", "/v1/messages", payload)

        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise BackendError.malformed_response(self.identity, "missing content blocks")
        text = "".join(
            block.get("text", "") for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text:
            raise BackendError.malformed_response(self.identity, "no text in response")
        return Message.assistant(text)
