"""Chunker — splits parsed pages into overlapping, classified chunks."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Callable

from app.services.code_classifier import CodeClassification, classify_chunk
from app.services.document_parser import ParsedPage


@dataclass
class ChunkDraft:
    """An unsaved chunk. content is what gets embedded."""

    chunk_order: int
    chunk_type: str  # text, code, table
    text: str
    context_header: str
    page_number: int
    is_code: bool = False
    language: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def content(self) -> str:
        return compose_content(self.context_header, self.text)


def compose_content(context_header: str, text: str) -> str:
    return f"{context_header}\n{text}"


def build_context_header(title: str, category: str, page_number: int) -> str:
    return f"[{title} - {(category or '').upper()} - Page {page_number}]"


class Chunker:
    """Fixed-size sliding window over each page, plus one chunk per table."""

    def __init__(
        self,
        chunk_size: int = 800,
        overlap_fraction: float = 0.2,
        classifier: Callable[[str], CodeClassification] = classify_chunk,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= overlap_fraction < 1:
            raise ValueError("overlap_fraction must be in [0, 1)")
        self.chunk_size = chunk_size
        self.overlap = math.floor(chunk_size * overlap_fraction)
        self.step = chunk_size - self.overlap
        self.classifier = classifier

    @classmethod
    def from_settings(cls, settings) -> "Chunker":
        return cls(
            chunk_size=settings.RAG_CHUNK_SIZE,
            overlap_fraction=settings.RAG_CHUNK_OVERLAP_FRACTION,
        )

    def split_text(self, text: str) -> list[tuple[int, str]]:
        """Return (start offset, window) pairs covering text end to end.

        The last window may be shorter than chunk_size; it is always kept.
        """
        if not text or not text.strip():
            return []

        windows = []
        start = 0
        while True:
            end = min(start + self.chunk_size, len(text))
            windows.append((start, text[start:end]))
            if end >= len(text):
                break
            start += self.step
        return windows

    def chunk(self, pages: list[ParsedPage], material_meta: dict) -> list[ChunkDraft]:
        """Chunk every page of one material.

        material_meta is the material snapshot (see CourseMaterial.metadata_snapshot)
        and is copied onto each chunk. chunk_order runs across all pages and tables.
        """
        title = material_meta.get("material_title") or "Untitled"
        category = material_meta.get("category") or "theory"

        drafts: list[ChunkDraft] = []
        order = 0
        for page in sorted(pages, key=lambda p: p.page_number):
            header = build_context_header(title, category, page.page_number)

            for start, window in self.split_text(page.text):
                is_code, language = self.classifier(window)
                chunk_type = "code" if is_code else "text"
                drafts.append(ChunkDraft(
                    chunk_order=order,
                    chunk_type=chunk_type,
                    text=window,
                    context_header=header,
                    page_number=page.page_number,
                    is_code=is_code,
                    language=language,
                    metadata={
                        **material_meta,
                        "chunk_type": chunk_type,
                        "page_number": page.page_number,
                        "char_start": start,
                        "char_end": start + len(window),
                    },
                ))
                order += 1

            for table in page.tables:
                drafts.append(ChunkDraft(
                    chunk_order=order,
                    chunk_type="table",
                    text=json.dumps(table.rows, ensure_ascii=False),
                    context_header=header,
                    page_number=page.page_number,
                    metadata={
                        **material_meta,
                        "chunk_type": "table",
                        "page_number": page.page_number,
                        "rows": table.row_count,
                        "columns": table.column_count,
                        "bbox": list(table.bbox) if table.bbox else None,
                    },
                ))
                order += 1

        return drafts
