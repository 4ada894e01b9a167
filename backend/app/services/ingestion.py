"""Ingestion pipeline — fetch, parse, chunk and index one material.

Runs in its own database session (the request's session may be gone by the
time a long ingestion finishes) and refuses a second concurrent run for the
same material.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial

import httpx
from sqlalchemy.orm import Session, sessionmaker

from app.errors import (
    FetchError,
    IndexingInProgressError,
    InvalidRequestError,
    NoContentError,
    NotFoundError,
    PipelineError,
)
from app.models.course_material import CourseMaterial
from app.services.chunker import Chunker
from app.services.document_parser import DocumentParser, ParseResult, detect_format
from app.services.indexer import IndexReport, MaterialIndexer

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    material_id: str
    file_name: str
    file_url: str
    parse: ParseResult
    index: IndexReport
    chunk_types: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "material_id": self.material_id,
            "file_info": {"original_filename": self.file_name, "file_url": self.file_url},
            "parsing_info": {
                "total_pages": self.parse.total_pages,
                "parsed_pages": len(self.parse.pages),
                "skipped_pages": self.parse.skipped_count,
                "skipped_page_numbers": self.parse.skipped_pages,
                "total_tables": self.parse.total_tables,
                "total_images": self.parse.total_images,
                "total_chunks": self.index.chunk_count,
                "chunk_types": self.chunk_types,
                "embeddings_generated": self.index.embeddings_generated,
                "vectors_stored": self.index.vector_count,
            },
            "chunks_stored": self.index.chunk_count,
        }


async def fetch_document(
    url: str,
    timeout: float,
    max_bytes: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    """Download a stored file, failing fast on network errors and oversized bodies."""
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                body = bytearray()
                async for part in response.aiter_bytes():
                    body.extend(part)
                    if len(body) > max_bytes:
                        raise InvalidRequestError(
                            "File is too large to ingest",
                            detail=f"Limit is {max_bytes // (1024 * 1024)} MB.",
                        )
                return bytes(body)
    except httpx.HTTPStatusError as e:
        raise FetchError(
            "Failed to download file",
            detail=f"{url} returned HTTP {e.response.status_code}",
        ) from e
    except httpx.HTTPError as e:
        raise FetchError("Failed to download file", detail=f"{url}: {e}") from e


def _log_outcome(description: str, task: asyncio.Task) -> None:
    if task.cancelled():
        logger.warning("%s was cancelled", description)
        return
    error = task.exception()
    if isinstance(error, PipelineError):
        logger.warning("%s failed: %s (%s)", description, error.message, error.detail)
    elif error is not None:
        logger.error("%s failed", description, exc_info=error)


async def run_to_completion(coro, description: str):
    """Await coro without letting request cancellation stop it.

    When the caller goes away the task keeps running, and its failure is
    still logged because nothing else will collect it.
    """
    task = asyncio.ensure_future(coro)
    task.add_done_callback(partial(_log_outcome, description))
    return await asyncio.shield(task)


class IngestionService:
    def __init__(
        self,
        session_factory: sessionmaker,
        parser: DocumentParser,
        chunker: Chunker,
        indexer: MaterialIndexer,
        fetch_timeout: float = 60.0,
        max_file_bytes: int = 50 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.session_factory = session_factory
        self.parser = parser
        self.chunker = chunker
        self.indexer = indexer
        self.fetch_timeout = fetch_timeout
        self.max_file_bytes = max_file_bytes
        self.transport = transport
        self._in_flight: set[str] = set()

    def ensure_configured(self) -> None:
        self.indexer.embedder.ensure_configured()
        self.indexer.vector_index.ensure_configured()

    def is_running(self, material_id: str) -> bool:
        return material_id in self._in_flight

    def _claim(self, material_id: str) -> None:
        if material_id in self._in_flight:
            raise IndexingInProgressError(material_id)
        self._in_flight.add(material_id)

    @staticmethod
    def _load(db: Session, material_id: str) -> CourseMaterial:
        material = db.get(CourseMaterial, material_id)
        if material is None:
            raise NotFoundError(f"Material {material_id} not found")
        return material

    async def ingest(self, material_id: str, file_url: str) -> IngestionReport:
        if not material_id or not file_url:
            raise InvalidRequestError("material_id and file_url are required")
        if not file_url.startswith(("http://", "https://")):
            raise InvalidRequestError("file_url must be an http(s) URL")
        self.ensure_configured()

        self._claim(material_id)
        db = self.session_factory()
        try:
            material = self._load(db, material_id)
            file_name = material.file_name or file_url
            # Rejects unsupported types before anything is downloaded.
            detect_format(file_name, material.mime_type)

            logger.info("Ingesting material %s from %s", material_id, file_url)
            try:
                data = await fetch_document(file_url, self.fetch_timeout, self.max_file_bytes, self.transport)
                parsed = await asyncio.to_thread(
                    self.parser.parse, data, file_name, material.mime_type, file_url
                )
            except PipelineError as e:
                material.index_error = e.message[:500]
                db.commit()
                raise

            if parsed.skipped_count:
                logger.warning(
                    "Material %s: skipped %d of %d pages (%s)",
                    material_id, parsed.skipped_count, parsed.total_pages, parsed.skipped_pages,
                )

            drafts = self.chunker.chunk(parsed.pages, material.metadata_snapshot())
            if not drafts:
                error = NoContentError(
                    f"No extractable text in {file_name}",
                    detail=f"{parsed.total_pages} pages parsed, none with text or tables to index.",
                )
                material.is_indexed = False
                material.index_error = error.message[:500]
                db.commit()
                raise error

            chunk_types: dict[str, int] = {}
            for d in drafts:
                chunk_types[d.chunk_type] = chunk_types.get(d.chunk_type, 0) + 1

            index_report = await self.indexer.index(db, material, drafts)
            return IngestionReport(
                material_id=material_id,
                file_name=file_name,
                file_url=file_url,
                parse=parsed,
                index=index_report,
                chunk_types=chunk_types,
            )
        finally:
            self._in_flight.discard(material_id)
            db.close()

    async def reindex(self, material_id: str) -> IndexReport:
        """Embed and upsert a material's stored chunks without refetching the file."""
        self.ensure_configured()
        self._claim(material_id)
        db = self.session_factory()
        try:
            material = self._load(db, material_id)
            return await self.indexer.reindex_stored_chunks(db, material)
        finally:
            self._in_flight.discard(material_id)
            db.close()

    async def purge(self, material_id: str) -> int:
        self._claim(material_id)
        db = self.session_factory()
        try:
            material = self._load(db, material_id)
            return await self.indexer.purge(db, material)
        finally:
            self._in_flight.discard(material_id)
            db.close()
