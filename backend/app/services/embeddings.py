"""Embedding providers.

Both providers return EMBEDDING_DIMENSIONS-sized vectors and refuse to hand
back anything else, so indexed chunks and queries always live in the same space.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from sentence_transformers import SentenceTransformer

from app.config import EMBEDDING_DIMENSIONS
from app.errors import ConfigurationError, EmbeddingError
from app.services.ai_client import oracle_configured, oracle_embed

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Turns text into fixed-size vectors."""

    dimensions: int = EMBEDDING_DIMENSIONS
    batch_size: int = 96

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    def is_configured(self) -> bool:
        return True

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError(
                f"Embedding provider {self.model_name} is not configured",
                detail="Check EMBEDDING_PROVIDER and the matching credentials in backend/.env.",
            )

    @abstractmethod
    async def _embed(self, texts: list[str], is_query: bool) -> list[list[float]]:
        ...

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed chunk contents, batch by batch."""
        self.ensure_configured()
        vectors: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            vectors.extend(self._checked(await self._call(batch, is_query=False), len(batch)))
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        self.ensure_configured()
        return self._checked(await self._call([text], is_query=True), 1)[0]

    async def _call(self, texts: list[str], is_query: bool) -> list[list[float]]:
        try:
            return await self._embed(texts, is_query)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error("Embedding call to %s failed: %s", self.model_name, e)
            raise EmbeddingError(f"Embedding call failed ({self.model_name})", detail=str(e)) from e

    def _checked(self, vectors: list[list[float]], expected: int) -> list[list[float]]:
        if len(vectors) != expected:
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {expected} inputs"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: got {len(vector)}, expected {self.dimensions}",
                    detail=f"Model {self.model_name} does not produce {self.dimensions}-dimensional vectors.",
                )
        return [list(map(float, v)) for v in vectors]


class OracleEmbeddingProvider(EmbeddingProvider):
    """Oracle GenAI embedText (Cohere embed models)."""

    def __init__(self, settings):
        self.settings = settings
        self.batch_size = settings.EMBEDDING_BATCH_SIZE

    @property
    def model_name(self) -> str:
        return self.settings.EMBEDDING_MODEL

    def is_configured(self) -> bool:
        return oracle_configured(self.settings)

    async def _embed(self, texts: list[str], is_query: bool) -> list[list[float]]:
        input_type = "SEARCH_QUERY" if is_query else "SEARCH_DOCUMENT"
        return await asyncio.to_thread(oracle_embed, self.settings, texts, self.model_name, input_type)


class LocalEmbeddingProvider(EmbeddingProvider):
    """sentence-transformers model loaded in-process on first use."""

    def __init__(self, model_name: str, batch_size: int = 32):
        self._model_name = model_name
        self.batch_size = batch_size
        self._model: SentenceTransformer | None = None

    @property
    def model_name(self) -> str:
        return self._model_name

    def _encode(self, texts: list[str]) -> list[list[float]]:
        if self._model is None:
            self._model = SentenceTransformer(self._model_name)
        return self._model.encode(texts, normalize_embeddings=True).tolist()

    async def _embed(self, texts: list[str], is_query: bool) -> list[list[float]]:
        return await asyncio.to_thread(self._encode, texts)


def build_embedding_provider(settings) -> EmbeddingProvider:
    provider = settings.EMBEDDING_PROVIDER.strip().lower()
    if provider == "oci":
        return OracleEmbeddingProvider(settings)
    if provider == "local":
        return LocalEmbeddingProvider(settings.LOCAL_EMBEDDING_MODEL)
    raise ConfigurationError(f"Unknown EMBEDDING_PROVIDER: {settings.EMBEDDING_PROVIDER}")
