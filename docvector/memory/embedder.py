# docvector/memory/embedder.py

"""
Embedding functions for the retrieval pipeline.

Architecture contract:
chunker → embedder → vector_store

Every embedder is a pure function of the text: the same input always maps
to the same vector, so ingest and query share one vector space.

Guarantees:
• Always numpy float64 arrays
• Always the configured dimension
• Upstream failures surface as EmbeddingFailed
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
from openai import OpenAI

from docvector.config import (
    EMBED_BATCH_SIZE,
    EMBEDDING_DIMENSION,
    EMBEDDING_MODEL,
    EMBEDDING_PROVIDER,
)
from docvector.errors import EmbeddingFailed, InvalidArgument

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Maps text to a fixed-length vector."""

    provider = "abstract"

    def __init__(self, dimension: int):

        if dimension <= 0:
            raise InvalidArgument("Embedding dimension must be positive")

        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    @abstractmethod
    def embed_text(self, text: str) -> np.ndarray:
        """Embed a single text into a vector of shape (dimension,)."""

    def embed(self, texts: List[str]) -> np.ndarray:
        """Embed a batch of texts into a matrix of shape (len(texts), dimension)."""

        if not texts:
            return np.empty((0, self._dimension), dtype="float64")

        return np.vstack([self.embed_text(text) for text in texts])

    def health_check(self) -> dict:
        return {
            "provider": self.provider,
            "dimension": self._dimension,
            "status": "healthy",
        }


# ============================================================
# HASH EMBEDDER (DETERMINISTIC PLACEHOLDER)
# ============================================================

def text_hash(text: str) -> int:
    """
    32-bit polynomial rolling hash (h * 31 + c) over UTF-16 code units.

    The running value wraps like a signed 32-bit integer; the absolute
    value of the final hash is returned.
    """

    h = 0

    data = text.encode("utf-16-le")

    for low, high in zip(data[0::2], data[1::2]):
        h = (h * 31 + (low | high << 8)) & 0xFFFFFFFF

    if h >= 0x80000000:
        h -= 0x100000000

    return abs(h)


class HashEmbedder(Embedder):
    """
    Placeholder embedder with no semantic meaning.

    vector[i] = sin(hash(text) + i) * 0.1. Exists to exercise storage and
    retrieval deterministically; swap in a real model behind Embedder.
    """

    provider = "hash"

    def __init__(self, dimension: int = EMBEDDING_DIMENSION):
        super().__init__(dimension)
        self._offsets = np.arange(dimension, dtype="float64")

    def embed_text(self, text: str) -> np.ndarray:

        if not isinstance(text, str):
            raise EmbeddingFailed(
                f"Cannot embed value of type {type(text).__name__}"
            )

        return np.sin(text_hash(text) + self._offsets) * 0.1


# ============================================================
# OPENAI EMBEDDER
# ============================================================

class OpenAIEmbedder(Embedder):
    """
    Embedding generator backed by the OpenAI embeddings API.

    Responsibilities:
    • Call OpenAI embedding API in batches
    • Enforce the configured dimension
    • Convert every upstream error into EmbeddingFailed
    """

    provider = "openai"

    def __init__(
        self,
        dimension: int = EMBEDDING_DIMENSION,
        model: str = EMBEDDING_MODEL,
        client: Optional[OpenAI] = None,
        batch_size: int = EMBED_BATCH_SIZE,
    ):

        super().__init__(dimension)

        self._model = model
        self._batch_size = batch_size
        self._client = client

        logger.info(
            "Embedding model configured",
            extra={"model": model, "dimension": dimension},
        )

    def _get_client(self) -> OpenAI:

        if self._client is None:

            try:
                self._client = OpenAI()
            except Exception as e:
                raise EmbeddingFailed(
                    f"Failed to initialize embedding client: {e}"
                ) from e

        return self._client

    def _request(self, batch: List[str]) -> np.ndarray:

        try:

            response = self._get_client().embeddings.create(
                model=self._model,
                input=batch,
                dimensions=self._dimension,
            )

        except EmbeddingFailed:
            raise

        except Exception as e:

            logger.error(
                "Embedding generation failed",
                extra={"model": self._model, "error": str(e)},
            )

            raise EmbeddingFailed(f"Embedding generation failed: {e}") from e

        vectors = np.array(
            [item.embedding for item in response.data],
            dtype="float64",
        )

        if vectors.shape != (len(batch), self._dimension):
            raise EmbeddingFailed(
                f"Embedding service returned shape {vectors.shape}, "
                f"expected ({len(batch)}, {self._dimension})"
            )

        return vectors

    def embed_text(self, text: str) -> np.ndarray:
        return self._request([text])[0]

    def embed(self, texts: List[str]) -> np.ndarray:

        if not texts:
            return np.empty((0, self._dimension), dtype="float64")

        parts = []

        for start in range(0, len(texts), self._batch_size):
            parts.append(self._request(texts[start:start + self._batch_size]))

        return np.vstack(parts)

    def health_check(self) -> dict:
        status = super().health_check()
        status["model"] = self._model
        return status


def build_embedder(
    provider: str = EMBEDDING_PROVIDER,
    dimension: int = EMBEDDING_DIMENSION,
) -> Embedder:

    if provider == "hash":
        return HashEmbedder(dimension)

    if provider == "openai":
        return OpenAIEmbedder(dimension)

    raise InvalidArgument(f"Unsupported embedding provider: {provider}")
