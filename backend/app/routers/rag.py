"""RAG router — grounded chat, semantic and code search, index maintenance."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.dependencies import Services, get_db, get_services
from app.errors import InvalidRequestError, NotFoundError
from app.middleware.auth import CurrentUser, get_current_user, require_admin
from app.middleware.rate_limit import limiter
from app.models.course_material import CourseMaterial
from app.schemas.rag import (
    ChatRequest,
    CodeSearchRequest,
    GenerateEmbeddingsRequest,
    RetrievalScope,
    SearchRequest,
    SearchResult,
    envelope,
)
from app.services.ingestion import run_to_completion
from app.services.retriever import RetrievalFilters, RetrievedChunk

router = APIRouter(prefix="/api/rag", tags=["rag"])

NO_CONTENT_MESSAGE = "No relevant course materials found. Please upload materials first."


def resolve_filters(
    db: Session,
    scope: RetrievalScope,
    is_code: Optional[bool] = None,
    language: Optional[str] = None,
) -> RetrievalFilters:
    """Build retrieval filters, taking the course from the material when only that is given."""
    course_id = scope.course_id
    if scope.material_id:
        material = db.get(CourseMaterial, scope.material_id)
        if material is None:
            raise NotFoundError(f"Material {scope.material_id} not found")
        if course_id and material.course_id != course_id:
            raise InvalidRequestError("material_id does not belong to course_id")
        course_id = material.course_id
    if not course_id:
        raise InvalidRequestError("course_id or material_id is required")
    return RetrievalFilters(
        course_id=course_id,
        material_id=scope.material_id,
        category=scope.category,
        week_number=scope.week_number,
        is_code=is_code,
        language=language.lower() if language else None,
    )


def no_content_response(data: dict) -> JSONResponse:
    return JSONResponse(status_code=404, content=envelope(data, NO_CONTENT_MESSAGE, success=False))


def _search_result(chunk: RetrievedChunk, excerpt_chars: int) -> dict:
    return SearchResult(
        chunk_id=chunk.chunk_id,
        material_id=chunk.material_id,
        material_title=chunk.material_title,
        category=chunk.category,
        chunk_type=chunk.chunk_type,
        page_number=chunk.page_number,
        is_code=chunk.is_code,
        language=chunk.language,
        text_excerpt=chunk.excerpt(excerpt_chars),
        similarity_score=round(chunk.score, 4),
    ).model_dump()


@router.post("/chat")
@limiter.limit(settings.GENERATION_RATE_LIMIT)
async def chat(
    request: Request,
    body: ChatRequest,
    _user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Answer a question from the course's indexed materials, citing sources."""
    services.generator.ensure_configured()
    filters = resolve_filters(db, body)
    result = await services.generator.answer(body.question, filters, body.top_k)

    data = {
        "question": result.question,
        "answer": result.answer,
        "sources": result.sources,
        "metadata": result.metadata,
    }
    if not result.found:
        return no_content_response(data)
    return envelope(data, "Answer generated successfully")


async def _search(services: Services, query: str, filters: RetrievalFilters, top_k: Optional[int]) -> dict:
    services.retriever.ensure_configured()
    chunks = await services.retriever.retrieve(query, filters, top_k)
    excerpt_chars = services.settings.SOURCE_EXCERPT_CHARS
    return {
        "query": query,
        "results": [_search_result(c, excerpt_chars) for c in chunks],
        "total_results": len(chunks),
        "filters_applied": filters.applied(),
    }


@router.post("/semantic-search")
async def semantic_search(
    body: SearchRequest,
    _user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    filters = resolve_filters(db, body)
    data = await _search(services, body.query, filters, body.top_k)
    message = "Search completed" if data["results"] else "No matching content found"
    return envelope(data, message)


@router.post("/code-search")
async def code_search(
    body: CodeSearchRequest,
    _user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Semantic search restricted to chunks classified as code."""
    filters = resolve_filters(db, body, is_code=True, language=body.language)
    data = await _search(services, body.query, filters, body.top_k)
    message = "Code search completed" if data["results"] else "No matching code found"
    return envelope(data, message)


@router.post("/generate-embeddings")
async def generate_embeddings(
    body: GenerateEmbeddingsRequest,
    _admin: CurrentUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Re-embed a material's stored chunks after an interrupted indexing run."""
    report = await run_to_completion(
        services.ingestion.reindex(body.material_id),
        f"Re-embedding of material {body.material_id}",
    )
    return envelope(
        {
            "material_id": report.material_id,
            "chunks_processed": report.chunk_count,
            "embeddings_generated": report.embeddings_generated,
            "vectors_stored": report.vector_count,
        },
        "Embeddings generated successfully",
    )


@router.delete("/materials/{material_id}/index")
async def delete_material_index(
    material_id: str,
    _admin: CurrentUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Remove a material's chunks and vectors and mark it unindexed."""
    deleted = await services.ingestion.purge(material_id)
    return envelope({"material_id": material_id, "chunks_deleted": deleted}, "Material index removed")
