"""
Knowledge feature: Embedding provider.
Wraps the LangChain embedding model with a pinned model name and dimension.
"""

import asyncio
import logging

import numpy as np

from app.config import Settings
from app.core.exceptions import EmbeddingDimensionError, EmbeddingProviderError
from app.core.llm_provider import create_embeddings

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """Converts text to fixed-dimension float vectors.

    The model name and dimension are pinned for the lifetime of the provider:
    every vector it returns has exactly `dimensions` floats, and the model name
    is what gets written to the `embedding_model` column.
    """

    def __init__(self, model, model_name: str, dimensions: int, timeout: float | None = None):
        self.model = model
        self.model_name = model_name
        self.dimensions = dimensions
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingProvider":
        return cls(
            model=create_embeddings(settings),
            model_name=settings.EMBEDDING_MODEL,
            dimensions=settings.EMBEDDING_DIMENSIONS,
            timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        )

    def _fit(self, vector: list[float]) -> list[float]:
        # Gemini returns 3072 dims; keep the leading slice (matryoshka-style),
        # rescaled to unit length.
        if len(vector) < self.dimensions:
            raise EmbeddingDimensionError(self.dimensions, len(vector))
        if len(vector) == self.dimensions:
            return [float(x) for x in vector]
        head = np.asarray(vector[: self.dimensions], dtype=np.float64)
        norm = float(np.linalg.norm(head))
        if norm > 0:
            head = head / norm
        return head.tolist()

    async def embed(self, text: str) -> list[float]:
        """Generate the embedding vector for a single text.

        Raises:
            EmbeddingProviderError: on empty input, timeout or provider failure.
            EmbeddingDimensionError: if the model returns too few dimensions.
        """
        text = (text or "").strip()
        if not text:
            raise EmbeddingProviderError("cannot embed empty text")

        logger.debug(f"🔮 Generating embedding for text ({len(text)} chars)...")
        try:
            vector = await asyncio.wait_for(self.model.aembed_query(text), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise EmbeddingProviderError(f"embedding request timed out after {self.timeout}s")
        except Exception as e:
            raise EmbeddingProviderError(str(e)) from e

        return self._fit(vector)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for several texts in one request."""
        cleaned = [(t or "").strip() for t in texts]
        if not cleaned:
            return []
        if any(not t for t in cleaned):
            raise EmbeddingProviderError("cannot embed empty text")

        try:
            vectors = await asyncio.wait_for(
                self.model.aembed_documents(cleaned), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise EmbeddingProviderError(f"embedding request timed out after {self.timeout}s")
        except Exception as e:
            raise EmbeddingProviderError(str(e)) from e

        if len(vectors) != len(cleaned):
            raise EmbeddingProviderError(
                f"provider returned {len(vectors)} vectors for {len(cleaned)} texts"
            )
        return [self._fit(v) for v in vectors]
