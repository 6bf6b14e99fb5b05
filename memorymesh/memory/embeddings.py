"""
Embedders: Text → Fixed-Dimension Vectors

Provides:
    - Embedder: structural interface used by MemoryStore
    - HashingEmbedder: deterministic local embedding, no network
    - BackendEmbedder: delegates to a backend's embedding call

HashingEmbedder hashes word unigrams and bigrams into signed buckets
(feature hashing), so texts sharing vocabulary land close together under
cosine similarity. It is the default when no backend embedding is wanted.
"""

from __future__ import annotations

import hashlib
import re
from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable

import numpy as np

from memorymesh.core import constants as C
from memorymesh.core.errors import ValidationError
from memorymesh.memory.similarity import normalize

_TOKEN_RE = re.compile(r"\w+")


@runtime_checkable
class Embedder(Protocol):
    """Protocol for embedding providers."""

    @property
    def dimension(self) -> int:
        ...

    async def embed(self, text: str) -> list[float]:
        ...


class HashingEmbedder:
    """
    Feature-hashing embedder.

    Example:
        embedder = HashingEmbedder(dimension=768)
        vector = await embedder.embed("vector databases store embeddings")
    """

    __slots__ = ("_dimension", "_bigram_weight")

    def __init__(self, dimension: int = C.EMBEDDING_DIMS, bigram_weight: float = 0.5) -> None:
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        self._dimension = dimension
        self._bigram_weight = bigram_weight

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text).tolist()

    def embed_sync(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dimension, dtype=np.float64)
        tokens = _TOKEN_RE.findall(text.lower())

        for token in tokens:
            self._accumulate(vector, token, 1.0)
        for left, right in zip(tokens, tokens[1:]):
            self._accumulate(vector, f"{left} {right}", self._bigram_weight)
        return normalize(vector)

    def _accumulate(self, vector: np.ndarray, feature: str, weight: float) -> None:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        bucket = int.from_bytes(digest[:4], "big") % self._dimension
        sign = 1.0 if digest[4] & 1 else -1.0
        vector[bucket] += sign * weight


class BackendEmbedder:
    """
    Embedder backed by a remote embedding call.

    ``generate`` is usually a client's queued, retried and fallback-aware
    ``generate_embedding``. Without a ``dimension`` the embedder adopts the
    length of the first vector it receives; ``calibrate()`` forces that
    with one sample call.
    """

    __slots__ = ("_generate", "_dimension")

    def __init__(
        self,
        generate: Callable[[str], Awaitable[list[float]]],
        dimension: Optional[int] = None,
    ) -> None:
        self._generate = generate
        self._dimension = dimension

    @property
    def calibrated(self) -> bool:
        return self._dimension is not None

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            raise RuntimeError("BackendEmbedder dimension unknown before calibrate()")
        return self._dimension

    async def calibrate(self, sample: str = "dimension check") -> int:
        if self._dimension is None:
            await self.embed(sample)
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        vector = await self._generate(text)
        if self._dimension is None:
            self._dimension = len(vector)
        if len(vector) != self._dimension:
            raise ValidationError.dimension_mismatch(self._dimension, len(vector))
        return vector
