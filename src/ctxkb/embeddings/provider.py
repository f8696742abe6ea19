"""
Embedding provider abstraction.

Provides:
- Abstract base class for embedding providers
- Deterministic offline provider (hashing trick, no network required)
- Remote OpenAI provider (lazy import, requires network enabled)
- Batch-to-item fallback with zero-vector placeholders
"""

from __future__ import annotations

import hashlib
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from ctxkb.errors import ProviderUnavailableError

if TYPE_CHECKING:
    from ctxkb.config import Config

logger = structlog.get_logger(__name__)

TOKEN_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+")
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    name: str = "base"

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier stored alongside every vector."""
        pass

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Return the embedding dimension."""
        pass

    async def initialize(self) -> None:
        """Initialize the provider (clients, models, etc.)."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """
        Generate embedding for a single text.

        Args:
            text: Input text.

        Returns:
            Embedding vector as numpy array.
        """
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of input texts.

        Returns:
            List of embedding vectors, in input order.
        """
        pass

    async def is_available(self) -> bool:
        return True

    async def close(self) -> None:
        """Cleanup resources."""
        pass


class HashEmbeddingProvider(EmbeddingProvider):
    """
    Offline provider using the hashing trick over identifier tokens.

    Identical texts always map to identical vectors and texts sharing tokens
    have positive cosine similarity. Vectors are L2-normalized.
    """

    name = "hash"

    def __init__(self, dimension: int = 384, model_id: str = "hash-embedding-v1") -> None:
        self._dimension = dimension
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def dimensions(self) -> int:
        return self._dimension

    def _embed_sync(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dimension, dtype=np.float32)
        for token in TOKEN_PATTERN.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "little") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector

    async def embed(self, text: str) -> np.ndarray:
        return self._embed_sync(text)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [self._embed_sync(t) for t in texts]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Remote embeddings through the OpenAI API."""

    name = "openai"

    def __init__(self, config: "Config", model: str | None = None) -> None:
        """
        Initialize the remote provider.

        Args:
            config: ctxkb configuration.
            model: Model name; defaults to the configured model id.
        """
        self.config = config
        configured = config.embedding.model_id
        self.model = model or (
            DEFAULT_OPENAI_MODEL if configured.startswith("hash-") else configured
        )
        self._dimension = config.embedding.dimension
        self._client: Any = None

    @property
    def model_id(self) -> str:
        return self.model

    @property
    def dimensions(self) -> int:
        return self._dimension

    async def initialize(self) -> None:
        """Initialize the API client."""
        if self._client is not None:
            return

        if not self.config.network.enabled:
            raise ProviderUnavailableError("Network access disabled for remote embedding provider")

        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ProviderUnavailableError(
                "openai package not installed. Install with: pip install 'ctxkb[openai]'"
            )

        self._client = AsyncOpenAI(
            api_key=self.config.network.api_key,
            base_url=self.config.network.api_base_url,
            timeout=self.config.network.timeout_seconds,
        )
        logger.info("Remote embedding provider initialized", model=self.model)

    async def is_available(self) -> bool:
        try:
            await self.initialize()
        except ProviderUnavailableError:
            return False
        return True

    async def embed(self, text: str) -> np.ndarray:
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if not texts:
            return []
        await self.initialize()

        response = await self._client.embeddings.create(input=texts, model=self.model)
        return [np.array(item.embedding, dtype=np.float32) for item in response.data]

    async def close(self) -> None:
        """Cleanup client."""
        if self._client is not None:
            await self._client.close()
        self._client = None


async def embed_texts_with_fallback(
    provider: EmbeddingProvider,
    texts: list[str],
) -> tuple[list[np.ndarray], set[int]]:
    """
    Embed texts as one batch, degrading to per-item calls on failure.

    An item that still fails is replaced by a zero vector.

    Returns:
        Vectors in input order and the indices that received placeholders.
    """
    if not texts:
        return [], set()

    try:
        vectors = await provider.embed_batch(texts)
        if len(vectors) != len(texts):
            raise ValueError(f"Provider returned {len(vectors)} vectors for {len(texts)} texts")
        return [np.asarray(v, dtype=np.float32) for v in vectors], set()
    except Exception as e:
        logger.warning(
            "Batch embedding failed, falling back to single items",
            provider=provider.name,
            count=len(texts),
            error=str(e),
        )

    results: list[np.ndarray] = []
    failed: set[int] = set()
    for i, text in enumerate(texts):
        try:
            results.append(np.asarray(await provider.embed(text), dtype=np.float32))
        except Exception as e:
            logger.warning("Item embedding failed", provider=provider.name, index=i, error=str(e))
            results.append(np.zeros(provider.dimensions, dtype=np.float32))
            failed.add(i)

    return results, failed


def create_provider(config: "Config") -> EmbeddingProvider:
    """
    Create an embedding provider based on configuration.

    Args:
        config: ctxkb configuration.

    Returns:
        Configured embedding provider.
    """
    from ctxkb.config import ProviderKind

    if config.embedding.provider == ProviderKind.OPENAI:
        return OpenAIEmbeddingProvider(config)
    return HashEmbeddingProvider(
        dimension=config.embedding.dimension,
        model_id=config.embedding.model_id,
    )
