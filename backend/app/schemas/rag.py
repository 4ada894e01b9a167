"""Request/response schemas for ingestion, retrieval and generation endpoints."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

Category = Literal["theory", "lab"]


def envelope(data: Any = None, message: str = "", success: bool = True) -> dict:
    return ApiResponse(success=success, data=data, message=message).model_dump()


class ApiResponse(BaseModel):
    success: bool
    data: Any = None
    message: str = ""


class ParseFromUrlRequest(BaseModel):
    material_id: str = Field(min_length=1)
    file_url: str = Field(min_length=1)


class RetrievalScope(BaseModel):
    course_id: Optional[str] = None
    material_id: Optional[str] = None
    category: Optional[Category] = None
    week_number: Optional[int] = Field(default=None, ge=1, le=60)


class ChatRequest(RetrievalScope):
    question: str = Field(min_length=1, max_length=4000)
    top_k: Optional[int] = Field(default=None, ge=1, le=20)


class SearchRequest(RetrievalScope):
    query: str = Field(min_length=1, max_length=4000)
    top_k: Optional[int] = Field(default=None, ge=1, le=20)


class CodeSearchRequest(SearchRequest):
    language: Optional[str] = None


class GenerateEmbeddingsRequest(BaseModel):
    material_id: str = Field(min_length=1)


class ContentRequest(RetrievalScope):
    user_prompt: str = Field(min_length=1, max_length=4000)


class SearchResult(BaseModel):
    chunk_id: Optional[str] = None
    material_id: Optional[str] = None
    material_title: str
    category: Optional[str] = None
    chunk_type: str
    page_number: Optional[int] = None
    is_code: bool = False
    language: Optional[str] = None
    text_excerpt: str
    similarity_score: float
