"""Content router — study content synthesized from course materials."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.dependencies import Services, get_db, get_services
from app.middleware.auth import CurrentUser, get_current_user
from app.middleware.rate_limit import limiter
from app.routers.rag import no_content_response, resolve_filters
from app.schemas.rag import ContentRequest, envelope

router = APIRouter(prefix="/api/content", tags=["content"])


async def _synthesize(services: Services, db: Session, body: ContentRequest, long_form: bool):
    services.generator.ensure_configured()
    filters = resolve_filters(db, body)
    result = await services.generator.synthesize(body.user_prompt, filters, long_form=long_form)
    if not result.found:
        return no_content_response({"metadata": result.metadata})
    return envelope(
        {**result.content.model_dump(), "sources": result.sources, "metadata": result.metadata},
        "Document content generated successfully" if long_form else "Content generated successfully",
    )


@router.post("/generate-enhanced")
@limiter.limit(settings.GENERATION_RATE_LIMIT)
async def generate_enhanced(
    request: Request,
    body: ContentRequest,
    _user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Short-form study content: a title and a description."""
    return await _synthesize(services, db, body, long_form=False)


@router.post("/generate-pdf")
@limiter.limit(settings.GENERATION_RATE_LIMIT)
async def generate_pdf(
    request: Request,
    body: ContentRequest,
    _user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Long-form study document content, ready for export by the client."""
    return await _synthesize(services, db, body, long_form=True)
