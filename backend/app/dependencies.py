"""Service wiring.

build_services() constructs every client from a Settings object once, and
create_app() stores the result on app.state. Routers reach the clients via
get_services(), so tests can hand create_app() a container built from fakes.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Depends, Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.database import SessionLocal, engine
from app.services.ai_client import AIClient
from app.services.answer_generator import AnswerGenerator
from app.services.chunker import Chunker
from app.services.document_parser import DocumentParser
from app.services.embeddings import EmbeddingProvider, build_embedding_provider
from app.services.indexer import MaterialIndexer
from app.services.ingestion import IngestionService
from app.services.retriever import Retriever
from app.services.vector_index import VectorIndex, build_vector_index


@dataclass
class Services:
    settings: object
    engine: Engine
    session_factory: sessionmaker
    ai_client: AIClient
    embedder: EmbeddingProvider
    vector_index: VectorIndex
    ingestion: IngestionService
    retriever: Retriever
    generator: AnswerGenerator


def build_services(
    settings,
    db_engine: Engine | None = None,
    session_factory: sessionmaker | None = None,
    ai_client: AIClient | None = None,
    embedder: EmbeddingProvider | None = None,
    vector_index: VectorIndex | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    db_engine = db_engine or engine
    session_factory = session_factory or SessionLocal
    ai_client = ai_client or AIClient(settings)
    embedder = embedder or build_embedding_provider(settings)
    vector_index = vector_index or build_vector_index(settings)

    ingestion = IngestionService(
        session_factory=session_factory,
        parser=DocumentParser.from_settings(settings),
        chunker=Chunker.from_settings(settings),
        indexer=MaterialIndexer(embedder, vector_index),
        fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
        max_file_bytes=settings.MAX_FILE_SIZE_MB * 1024 * 1024,
        transport=transport,
    )
    retriever = Retriever(
        embedder,
        vector_index,
        default_top_k=settings.RAG_TOP_K,
        max_top_k=settings.RAG_MAX_TOP_K,
    )
    return Services(
        settings=settings,
        engine=db_engine,
        session_factory=session_factory,
        ai_client=ai_client,
        embedder=embedder,
        vector_index=vector_index,
        ingestion=ingestion,
        retriever=retriever,
        generator=AnswerGenerator.from_settings(retriever, ai_client, settings),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(services: Services = Depends(get_services)):
    """FastAPI dependency that yields a database session."""
    db = services.session_factory()
    try:
        yield db
    finally:
        db.close()
