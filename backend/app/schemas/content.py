"""Output schemas the language model must satisfy during content synthesis."""

from pydantic import BaseModel, Field


class EnhancedContent(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)


class DocumentContent(BaseModel):
    title: str = Field(min_length=1)
    introduction: str
    main_content: str = Field(min_length=1)
    summary: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
