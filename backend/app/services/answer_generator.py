"""Grounded answer generator and content synthesis.

Both modes retrieve first and stop without calling the language model
when retrieval comes back empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import BaseModel

from app.schemas.content import DocumentContent, EnhancedContent
from app.services import prompts
from app.services.ai_client import AIClient
from app.services.retriever import RetrievalFilters, RetrievedChunk, Retriever

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


def source_header(number: int, chunk: RetrievedChunk) -> str:
    parts = [f"Source {number}", chunk.material_title]
    if chunk.page_number is not None:
        parts.append(f"Page {chunk.page_number}")
    if chunk.category:
        parts.append(chunk.category.upper())
    if chunk.chunk_type == "table":
        parts.append("Table")
    if chunk.is_code:
        parts.append(f"Code: {chunk.language}" if chunk.language else "Code")
    return "[" + " | ".join(parts) + "]"


def build_context(chunks: list[RetrievedChunk]) -> str:
    """Number the chunks as Source 1..N in retrieval order."""
    return CONTEXT_SEPARATOR.join(
        f"{source_header(i, chunk)}\n{chunk.text.strip()}" for i, chunk in enumerate(chunks, start=1)
    )


def is_lab_content(chunks: list[RetrievedChunk]) -> bool:
    return any(c.is_code or c.category == "lab" for c in chunks)


@dataclass
class GroundedAnswer:
    question: str
    found: bool
    answer: str | None = None
    sources: list[dict] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


@dataclass
class SynthesisResult:
    found: bool
    content: BaseModel | None = None
    sources: list[dict] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


class AnswerGenerator:
    def __init__(
        self,
        retriever: Retriever,
        llm: AIClient,
        answer_max_tokens: int = 1000,
        answer_temperature: float = 0.3,
        synthesis_max_tokens: int = 1500,
        document_max_tokens: int = 4000,
        synthesis_temperature: float = 0.5,
        synthesis_top_k: int = 10,
        document_top_k: int = 15,
        excerpt_chars: int = 300,
    ):
        self.retriever = retriever
        self.llm = llm
        self.answer_max_tokens = answer_max_tokens
        self.answer_temperature = answer_temperature
        self.synthesis_max_tokens = synthesis_max_tokens
        self.document_max_tokens = document_max_tokens
        self.synthesis_temperature = synthesis_temperature
        self.synthesis_top_k = synthesis_top_k
        self.document_top_k = document_top_k
        self.excerpt_chars = excerpt_chars

    @classmethod
    def from_settings(cls, retriever: Retriever, llm: AIClient, settings) -> "AnswerGenerator":
        return cls(
            retriever,
            llm,
            answer_max_tokens=settings.ANSWER_MAX_TOKENS,
            answer_temperature=settings.ANSWER_TEMPERATURE,
            synthesis_max_tokens=settings.SYNTHESIS_MAX_TOKENS,
            document_max_tokens=settings.DOCUMENT_MAX_TOKENS,
            synthesis_temperature=settings.SYNTHESIS_TEMPERATURE,
            synthesis_top_k=settings.SYNTHESIS_TOP_K,
            document_top_k=settings.DOCUMENT_TOP_K,
            excerpt_chars=settings.SOURCE_EXCERPT_CHARS,
        )

    def ensure_configured(self) -> None:
        """Fail before retrieval when embedding, vector or LLM setup is missing."""
        self.retriever.ensure_configured()
        self.llm.ensure_configured()

    def _sources(self, chunks: list[RetrievedChunk]) -> list[dict]:
        return [
            {
                "source_number": i,
                "material": c.material_title,
                "material_id": c.material_id,
                "category": c.category,
                "page": c.page_number,
                "chunk_type": c.chunk_type,
                "is_code": c.is_code,
                "language": c.language,
                "topic": c.topic,
                "week": c.week_number,
                "excerpt": c.excerpt(self.excerpt_chars),
                "score": round(c.score, 4),
            }
            for i, c in enumerate(chunks, start=1)
        ]

    async def answer(self, question: str, filters: RetrievalFilters, top_k: int | None = None) -> GroundedAnswer:
        self.ensure_configured()
        chunks = await self.retriever.retrieve(question, filters, top_k)

        metadata = {
            "chunks_found": len(chunks),
            "course_id": filters.course_id,
            "material_id": filters.material_id,
            "category": filters.category,
            "week_number": filters.week_number,
            "filters_applied": filters.applied(),
            "is_lab_content": is_lab_content(chunks),
            "model": self.llm.model_name,
        }
        if not chunks:
            return GroundedAnswer(question=question, found=False, metadata=metadata)

        reply = await self.llm.chat(
            system=prompts.answer_system_prompt(metadata["is_lab_content"]),
            messages=[{"role": "user", "content": prompts.answer_user_message(question, build_context(chunks))}],
            max_tokens=self.answer_max_tokens,
            temperature=self.answer_temperature,
        )
        return GroundedAnswer(
            question=question,
            found=True,
            answer=reply.strip(),
            sources=self._sources(chunks),
            metadata=metadata,
        )

    async def synthesize(self, request: str, filters: RetrievalFilters, long_form: bool = False) -> SynthesisResult:
        """Short form returns EnhancedContent, long form DocumentContent."""
        self.ensure_configured()
        top_k = self.document_top_k if long_form else self.synthesis_top_k
        chunks = await self.retriever.retrieve(request, filters, top_k)

        seen = set()
        source_materials = []
        for c in chunks:
            key = (c.material_title, c.page_number)
            if key not in seen:
                seen.add(key)
                source_materials.append({"material": c.material_title, "page": c.page_number, "category": c.category})

        metadata = {
            "course_id": filters.course_id,
            "user_prompt": request,
            "filters_applied": filters.applied(),
            "sources_used": len(chunks),
            "source_materials": source_materials,
            "model": self.llm.model_name,
        }
        if not chunks:
            return SynthesisResult(found=False, metadata=metadata)

        content = await self.llm.chat_json(
            system=prompts.DOCUMENT_SYSTEM if long_form else prompts.SYNTHESIS_SYSTEM,
            messages=[{"role": "user", "content": prompts.synthesis_user_message(request, build_context(chunks))}],
            schema=DocumentContent if long_form else EnhancedContent,
            max_tokens=self.document_max_tokens if long_form else self.synthesis_max_tokens,
            temperature=self.synthesis_temperature,
        )
        logger.info("Synthesized %s content from %d chunks", "document" if long_form else "short", len(chunks))
        return SynthesisResult(found=True, content=content, sources=self._sources(chunks), metadata=metadata)
