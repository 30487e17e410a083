"""Embedding backends for ragchat."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

from openai import AsyncAzureOpenAI

from ragchat.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

Vector = Tuple[float, ...]


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    dim: int = 1536
    normalize: bool = True
    endpoint: str | None = None
    api_key: str | None = None
    api_version: str = "2024-06-01"
    deployment: str | None = None
    batch_size: int = 16


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    async def embed(self, text: str) -> Vector:
        """Return the embedding vector for a single text."""

    async def embed_many(self, texts: Sequence[str]) -> Sequence[Vector]:
        """Return embedding vectors for several texts, in order."""


def _normalize(vector: Sequence[float], enabled: bool) -> Vector:
    if not enabled:
        return tuple(vector)
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


def prepare_input(text: str) -> str:
    return text.replace("\n", " ")


class HashEmbeddingBackend:
    """Deterministic lightweight embedding fallback used for testing and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        return _normalize([byte / 255.0 for byte in raw], self._config.normalize)

    async def embed(self, text: str) -> Vector:
        return self._hash_to_vector(prepare_input(text))

    async def embed_many(self, texts: Sequence[str]) -> Sequence[Vector]:
        return [self._hash_to_vector(prepare_input(text)) for text in texts]


class AzureOpenAIEmbeddingBackend:
    """Embedding backend calling an Azure OpenAI embedding deployment."""

    def __init__(self, config: EmbeddingConfig, client: AsyncAzureOpenAI | None = None) -> None:
        self._config = config
        self._client = client

    def _ensure_client(self) -> AsyncAzureOpenAI:
        if self._client is not None:
            return self._client
        if not self._config.endpoint or not self._config.api_key or not self._config.deployment:
            raise ConfigurationError(
                "Azure OpenAI embedding settings are incomplete "
                "(RAGCHAT_AZURE_OPENAI_ENDPOINT, RAGCHAT_AZURE_OPENAI_API_KEY, RAGCHAT_EMBEDDING_DEPLOYMENT)."
            )
        self._client = AsyncAzureOpenAI(
            azure_endpoint=self._config.endpoint,
            api_key=self._config.api_key,
            api_version=self._config.api_version,
        )
        return self._client

    async def embed(self, text: str) -> Vector:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> Sequence[Vector]:
        if not texts:
            return []
        client = self._ensure_client()
        vectors: list[Vector] = []
        for start in range(0, len(texts), self._config.batch_size):
            batch = [prepare_input(text) for text in texts[start : start + self._config.batch_size]]
            response = await client.embeddings.create(model=self._config.deployment, input=batch)
            ordered = sorted(response.data, key=lambda item: item.index)
            vectors.extend(_normalize(item.embedding, self._config.normalize) for item in ordered)
        if len(vectors) != len(texts):
            LOGGER.error("Embedding backend returned %d vectors for %d texts", len(vectors), len(texts))
            raise ValueError("Mismatch between number of texts and embedding vectors")
        if vectors and len(vectors[0]) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vectors[0]),
            )
        return vectors
