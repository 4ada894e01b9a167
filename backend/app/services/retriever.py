"""Retriever — top-K similarity search inside one course namespace."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field

from app.errors import InvalidRequestError
from app.services.embeddings import EmbeddingProvider
from app.services.vector_index import VectorIndex, namespace_for_course

logger = logging.getLogger(__name__)


@dataclass
class RetrievalFilters:
    """Exact-match metadata predicates, combined with AND."""

    course_id: str | None = None
    material_id: str | None = None
    category: str | None = None
    week_number: int | None = None
    is_code: bool | None = None
    language: str | None = None

    def to_where(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}

    def applied(self) -> dict:
        """Filters the caller set, excluding the course scope."""
        return {k: v for k, v in self.to_where().items() if k != "course_id"}


@dataclass
class RetrievedChunk:
    content: str
    score: float
    metadata: dict = field(default_factory=dict)

    @property
    def chunk_id(self) -> str | None:
        return self.metadata.get("chunk_id")

    @property
    def material_id(self) -> str | None:
        return self.metadata.get("material_id")

    @property
    def material_title(self) -> str:
        return self.metadata.get("material_title") or "Untitled"

    @property
    def category(self) -> str | None:
        return self.metadata.get("category")

    @property
    def page_number(self) -> int | None:
        return self.metadata.get("page_number")

    @property
    def chunk_order(self) -> int:
        return int(self.metadata.get("chunk_order", 0))

    @property
    def chunk_type(self) -> str:
        return self.metadata.get("chunk_type") or "text"

    @property
    def is_code(self) -> bool:
        return bool(self.metadata.get("is_code", False))

    @property
    def language(self) -> str | None:
        return self.metadata.get("language")

    @property
    def topic(self) -> str | None:
        return self.metadata.get("topic")

    @property
    def week_number(self) -> int | None:
        return self.metadata.get("week_number")

    @property
    def text(self) -> str:
        """Content without its context header line."""
        header = self.metadata.get("context_header")
        if header and self.content.startswith(header):
            return self.content[len(header):].lstrip("\n")
        return self.content

    def excerpt(self, limit: int = 300) -> str:
        text = self.text.strip()
        return text if len(text) <= limit else text[:limit].rstrip() + "..."


class Retriever:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        default_top_k: int = 5,
        max_top_k: int = 20,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.default_top_k = default_top_k
        self.max_top_k = max_top_k

    def ensure_configured(self) -> None:
        self.embedder.ensure_configured()
        self.vector_index.ensure_configured()

    async def retrieve(
        self,
        query: str,
        filters: RetrievalFilters,
        top_k: int | None = None,
    ) -> list[RetrievedChunk]:
        """Most similar chunks first; an empty list when nothing matches."""
        if not query or not query.strip():
            raise InvalidRequestError("Query text is required")
        if not filters.course_id:
            raise InvalidRequestError(
                "course_id is required",
                detail="Searches are scoped to one course; pass course_id or a material_id.",
            )
        top_k = top_k or self.default_top_k
        if top_k < 1:
            raise InvalidRequestError("top_k must be at least 1")
        top_k = min(top_k, self.max_top_k)

        self.ensure_configured()
        vector = await self.embedder.embed_query(query)
        namespace = namespace_for_course(filters.course_id)
        matches = await asyncio.to_thread(
            self.vector_index.query, namespace, vector, top_k, filters.to_where()
        )

        results = [
            RetrievedChunk(content=m.document, score=m.score, metadata=m.metadata)
            for m in matches
            if m.metadata.get("course_id") == filters.course_id
        ]
        results.sort(key=lambda r: (-r.score, r.chunk_order, r.material_id or ""))
        logger.debug("Retrieved %d chunks from %s for %r", len(results), namespace, query[:80])
        return results[:top_k]
