"""Shared fixtures and fakes for the pipeline tests."""

import asyncio
import hashlib
import io
import os
import re
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx
import pytest
from fastapi.testclient import TestClient
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers tables on Base
from app.config import EMBEDDING_DIMENSIONS, Settings
from app.database import Base, build_engine
from app.dependencies import build_services
from app.errors import GenerationError
from app.main import create_app
from app.middleware.auth import create_access_token
from app.middleware.rate_limit import limiter
from app.models.course_material import CourseMaterial
from app.services.ai_client import AIClient
from app.services.embeddings import EmbeddingProvider
from app.services.vector_index import MemoryVectorIndex


# ── Fakes ────────────────────────────────────────────────────────────────────

class HashEmbeddingProvider(EmbeddingProvider):
    """Bag-of-words vectors: texts sharing words point in similar directions."""

    def __init__(self, configured: bool = True, output_dimensions: int = EMBEDDING_DIMENSIONS):
        self.configured = configured
        self.output_dimensions = output_dimensions
        self.fail = False
        self.calls: list[tuple[list[str], bool]] = []

    @property
    def model_name(self) -> str:
        return "hash-bow"

    def is_configured(self) -> bool:
        return self.configured

    def vector(self, text: str) -> list[float]:
        v = [0.0] * self.output_dimensions
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            v[int(hashlib.sha256(word.encode()).hexdigest(), 16) % self.output_dimensions] += 1.0
        return v

    async def _embed(self, texts, is_query):
        self.calls.append((list(texts), is_query))
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return [self.vector(t) for t in texts]


class FakeAIClient(AIClient):
    """Records every chat call and answers with a canned reply."""

    def __init__(self, settings, reply: str = "Loops repeat a block of code [Source 1].", configured: bool = True):
        super().__init__(settings)
        self.reply = reply
        self.configured = configured
        self.fail = False
        self.calls: list[dict] = []

    @property
    def provider(self):
        return "fake" if self.configured else None

    @property
    def model_name(self):
        return "fake-model" if self.configured else None

    def provider_name(self):
        return "fake" if self.configured else "none"

    async def chat(self, system, messages, max_tokens=400, temperature=0.7):
        self.ensure_configured()
        self.calls.append({
            "system": system,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.fail:
            raise GenerationError("Language model call failed (fake)", detail="upstream timeout")
        return self.reply


def build_pdf(page_texts: list[str], tables: dict | None = None) -> bytes:
    """Render one PDF page per entry; tables maps page number to a ruled grid of cells."""
    tables = tables or {}
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=letter)
    for number, text in enumerate(page_texts, start=1):
        y = 740
        for line in text.split("\n"):
            pdf.drawString(72, y, line)
            y -= 16
        grid = tables.get(number)
        if grid:
            x0, top, width, height = 72, 500, 100, 20
            n_rows, n_cols = len(grid), len(grid[0])
            for r in range(n_rows + 1):
                pdf.line(x0, top - r * height, x0 + n_cols * width, top - r * height)
            for c in range(n_cols + 1):
                pdf.line(x0 + c * width, top, x0 + c * width, top - n_rows * height)
            for r, row in enumerate(grid):
                for c, cell in enumerate(row):
                    pdf.drawString(x0 + c * width + 5, top - r * height - 14, cell)
        pdf.showPage()
    pdf.save()
    return buf.getvalue()


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        SECRET_KEY="test-secret",
        VECTOR_STORE="memory",
        EMBEDDING_PROVIDER="local",
        OCR_ENABLED=False,
    )


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def embedder():
    return HashEmbeddingProvider()


@pytest.fixture
def vector_index():
    return MemoryVectorIndex()


@pytest.fixture
def ai_client(settings):
    return FakeAIClient(settings)


@pytest.fixture
def remote_files():
    """URL -> bytes served by the mock HTTP transport."""
    return {}


@pytest.fixture
def fetched_urls():
    return []


@pytest.fixture
def transport(remote_files, fetched_urls):
    def handler(request: httpx.Request) -> httpx.Response:
        fetched_urls.append(str(request.url))
        body = remote_files.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def services(settings, session_factory, embedder, vector_index, ai_client, transport):
    return build_services(
        settings,
        db_engine=session_factory.kw["bind"],
        session_factory=session_factory,
        ai_client=ai_client,
        embedder=embedder,
        vector_index=vector_index,
        transport=transport,
    )


@pytest.fixture
def client(services):
    limiter.enabled = False
    with TestClient(create_app(services)) as test_client:
        yield test_client
    limiter.enabled = True


@pytest.fixture
def admin_headers(settings):
    token = create_access_token({"sub": "admin-1", "role": "admin"}, settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers(settings):
    token = create_access_token({"sub": "student-1", "role": "student"}, settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_material(session_factory):
    def _make(**fields) -> str:
        values = {
            "course_id": "course-a",
            "title": "Intro to Programming",
            "category": "theory",
            "content_type": "pdf",
            "file_name": "notes.pdf",
            "tags": ["basics"],
        }
        values.update(fields)
        db = session_factory()
        try:
            material = CourseMaterial(**values)
            db.add(material)
            db.commit()
            return material.id
        finally:
            db.close()

    return _make


@pytest.fixture
def index_pages(services):
    """Chunk and index ParsedPages for a material, skipping fetch and parse."""

    def _index(material_id: str, pages):
        db = services.session_factory()
        try:
            material = db.get(CourseMaterial, material_id)
            drafts = services.ingestion.chunker.chunk(pages, material.metadata_snapshot())
            return asyncio.run(services.ingestion.indexer.index(db, material, drafts))
        finally:
            db.close()

    return _index


@pytest.fixture
def pdf_builder():
    return build_pdf
