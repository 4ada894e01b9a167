"""Course material model — an uploaded document and its indexing status."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, JSON
from sqlalchemy.orm import relationship

from app.database import Base


class CourseMaterial(Base):
    __tablename__ = "course_materials"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Courses live in the course management service; only the id is kept here.
    course_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(20), nullable=False, default="theory")  # theory, lab
    content_type = Column(String(20), nullable=False, default="pdf")  # slides, pdf, code, notes, video, other
    file_url = Column(Text, nullable=True)
    file_name = Column(String(255), nullable=True)
    mime_type = Column(String(100), nullable=True)
    week_number = Column(Integer, nullable=True)
    topic = Column(String(255), nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    programming_language = Column(String(50), nullable=True)

    # Indexing status, written only by the ingestion pipeline
    is_indexed = Column(Boolean, nullable=False, default=False)
    chunk_count = Column(Integer, nullable=False, default=0)
    vector_count = Column(Integer, nullable=False, default=0)
    indexed_at = Column(DateTime, nullable=True)
    index_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    chunks = relationship(
        "MaterialChunk",
        back_populates="material",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MaterialChunk.chunk_order",
    )

    def metadata_snapshot(self) -> dict:
        """Material fields copied onto every chunk at indexing time."""
        return {
            "material_id": self.id,
            "course_id": self.course_id,
            "material_title": self.title,
            "category": self.category,
            "content_type": self.content_type,
            "topic": self.topic,
            "week_number": self.week_number,
            "tags": list(self.tags or []),
        }
