"""Course materials RAG — FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings as default_settings
from app.database import Base
from app.dependencies import Services, build_services
from app.errors import PipelineError
from app.middleware.rate_limit import limiter
from app.routers import content, pdf_parser, rag
from app.schemas.rag import envelope

logger = logging.getLogger(__name__)


def _error_body(message: str, error: str, detail=None) -> dict:
    return envelope({"error": error, "detail": detail}, message, success=False)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s (%s)", type(exc).__name__, request.url.path, exc.message, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, type(exc).__name__, exc.detail),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), "HTTPException"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(p) for p in err.get('loc', []) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=_error_body("Invalid request: " + "; ".join(problems), "ValidationError", problems),
        )


def create_app(services: Services | None = None) -> FastAPI:
    services = services or build_services(default_settings)
    settings = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create tables and data directories and log the AI provider."""
        Base.metadata.create_all(bind=services.engine)
        if settings.VECTOR_STORE == "chroma":
            Path(settings.CHROMA_DB_PATH).mkdir(parents=True, exist_ok=True)

        provider = services.ai_client.provider_name()
        if provider == "none":
            logger.warning(
                "AI NOT CONFIGURED: set OCI_CONFIG_FILE, OCI_CONFIG_PROFILE, "
                "ORACLE_GENAI_COMPARTMENT_ID and ORACLE_GENAI_MODEL (or ANTHROPIC_API_KEY) "
                "in backend/.env and restart. Visit /api/health/ai to verify."
            )
        else:
            logger.info("AI provider: %s", provider)
        logger.info(
            "Embeddings: %s (%d dims), vector store: %s",
            services.embedder.model_name, services.embedder.dimensions, settings.VECTOR_STORE,
        )
        yield
        logger.info("Shutting down")

    app = FastAPI(
        title="Course Materials RAG",
        description="Ingestion, retrieval and grounded generation over course materials.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    _register_error_handlers(app)

    # CORS
    cors_origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(pdf_parser.router)
    app.include_router(rag.router)
    app.include_router(content.router)

    @app.get("/")
    def root():
        return {
            "name": "Course Materials RAG API",
            "version": "1.0.0",
            "docs": "/docs",
            "ai_provider": services.ai_client.provider_name(),
        }

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "ai_provider": services.ai_client.provider_name(),
            "embedding_model": services.embedder.model_name,
            "embeddings_configured": services.embedder.is_configured(),
        }

    @app.get("/api/health/ai")
    async def health_ai():
        """Live connectivity test for the configured AI provider.

        Returns:
            provider: which AI is active
            status:   "ok" | "error" | "unconfigured"
            test_reply / error: result of a tiny test call
        """
        return await services.ai_client.health_check()

    return app


logging.basicConfig(
    level=default_settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
