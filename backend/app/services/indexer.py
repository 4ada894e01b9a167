"""Embedding indexer — persists chunks, embeds them and upserts vectors.

Chunk rows are committed before any remote call, so an embedding or vector
store failure leaves the material with is_indexed = False and its chunk rows
in place. generate-embeddings (reindex_stored_chunks) resumes from there.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.errors import NotFoundError, TransportError, VectorStoreError
from app.models.course_material import CourseMaterial
from app.models.material_chunk import MaterialChunk
from app.services.chunker import ChunkDraft, compose_content
from app.services.embeddings import EmbeddingProvider
from app.services.vector_index import VectorIndex, VectorRecord, namespace_for_course

logger = logging.getLogger(__name__)


@dataclass
class IndexReport:
    material_id: str
    chunk_count: int
    embeddings_generated: int
    vector_count: int


def vector_id_for(material_id: str, chunk_order: int) -> str:
    return f"{material_id}:{chunk_order}"


def _vector_metadata(row: MaterialChunk, total_chunks: int) -> dict:
    return {
        **(row.chunk_metadata or {}),
        "material_id": row.material_id,
        "chunk_id": row.id,
        "chunk_order": row.chunk_order,
        "chunk_type": row.chunk_type,
        "page_number": row.page_number,
        "is_code": bool(row.is_code),
        "language": row.language,
        "context_header": row.context_header,
        "total_chunks": total_chunks,
    }


class MaterialIndexer:
    def __init__(self, embedder: EmbeddingProvider, vector_index: VectorIndex):
        self.embedder = embedder
        self.vector_index = vector_index

    async def index(self, db: Session, material: CourseMaterial, drafts: list[ChunkDraft]) -> IndexReport:
        """Replace all chunks and vectors of material with drafts."""
        self._reset_status(material, chunk_count=len(drafts))
        db.query(MaterialChunk).filter(MaterialChunk.material_id == material.id).delete(
            synchronize_session=False
        )
        db.flush()

        rows = [
            MaterialChunk(
                material_id=material.id,
                chunk_order=d.chunk_order,
                chunk_type=d.chunk_type,
                chunk_text=d.text,
                context_header=d.context_header,
                page_number=d.page_number,
                is_code=d.is_code,
                language=d.language,
                chunk_metadata=d.metadata,
                vector_id=vector_id_for(material.id, d.chunk_order),
            )
            for d in drafts
        ]
        db.add_all(rows)
        db.commit()
        db.expire(material, ["chunks"])
        logger.info("Stored %d chunks for material %s", len(rows), material.id)

        return await self._write_vectors(db, material, rows)

    async def reindex_stored_chunks(self, db: Session, material: CourseMaterial) -> IndexReport:
        """Embed and upsert the chunk rows already stored for material."""
        rows = (
            db.query(MaterialChunk)
            .filter(MaterialChunk.material_id == material.id)
            .order_by(MaterialChunk.chunk_order)
            .all()
        )
        if not rows:
            raise NotFoundError(
                f"Material {material.id} has no stored chunks",
                detail="Parse the material first with /api/pdf-parser/parse-from-url.",
            )
        self._reset_status(material, chunk_count=len(rows))
        db.commit()
        return await self._write_vectors(db, material, rows)

    async def purge(self, db: Session, material: CourseMaterial) -> int:
        """Drop every chunk row and vector of material. Returns rows deleted."""
        namespace = namespace_for_course(material.course_id)
        try:
            await asyncio.to_thread(self.vector_index.delete, namespace, {"material_id": material.id})
        except VectorStoreError as e:
            logger.warning("Could not delete vectors of material %s: %s", material.id, e.detail or e.message)

        deleted = db.query(MaterialChunk).filter(MaterialChunk.material_id == material.id).delete(
            synchronize_session=False
        )
        self._reset_status(material, chunk_count=0)
        material.indexed_at = None
        db.commit()
        db.expire(material, ["chunks"])
        return deleted

    @staticmethod
    def _reset_status(material: CourseMaterial, chunk_count: int) -> None:
        material.is_indexed = False
        material.chunk_count = chunk_count
        material.vector_count = 0
        material.index_error = None

    async def _write_vectors(self, db: Session, material: CourseMaterial, rows: list[MaterialChunk]) -> IndexReport:
        namespace = namespace_for_course(material.course_id)
        try:
            # Stale vectors from an earlier run would otherwise survive when the new run has fewer chunks.
            await asyncio.to_thread(self.vector_index.delete, namespace, {"material_id": material.id})
            vectors = await self.embedder.embed_documents(
                [compose_content(r.context_header, r.chunk_text) for r in rows]
            )
            records = [
                VectorRecord(
                    id=row.vector_id or vector_id_for(material.id, row.chunk_order),
                    vector=vector,
                    document=compose_content(row.context_header, row.chunk_text),
                    metadata=_vector_metadata(row, len(rows)),
                )
                for row, vector in zip(rows, vectors)
            ]
            stored = await asyncio.to_thread(self.vector_index.upsert, namespace, records)
        except TransportError as e:
            material.index_error = e.message[:500]
            db.commit()
            logger.error("Indexing of material %s stopped after storing chunks: %s", material.id, e.message)
            raise

        material.is_indexed = True
        material.chunk_count = len(rows)
        material.vector_count = stored
        material.indexed_at = datetime.now(timezone.utc)
        db.commit()
        logger.info("Indexed material %s: %d vectors in %s", material.id, stored, namespace)
        return IndexReport(
            material_id=material.id,
            chunk_count=len(rows),
            embeddings_generated=len(vectors),
            vector_count=stored,
        )
