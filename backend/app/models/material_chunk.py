"""Material chunk model — one retrievable unit of text, code or table content."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Integer, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class MaterialChunk(Base):
    __tablename__ = "material_chunks"
    __table_args__ = (
        UniqueConstraint("material_id", "chunk_order", name="uq_material_chunk_order"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    material_id = Column(
        String(36),
        ForeignKey("course_materials.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_order = Column(Integer, nullable=False)
    chunk_type = Column(String(10), nullable=False, default="text")  # text, code, table
    chunk_text = Column(Text, nullable=False)
    context_header = Column(String(512), nullable=False, default="")
    page_number = Column(Integer, nullable=False)
    is_code = Column(Boolean, nullable=False, default=False)
    language = Column(String(30), nullable=True)
    # Material snapshot plus table rows/columns/bbox
    chunk_metadata = Column("metadata", JSON, nullable=False, default=dict)
    vector_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    # Relationships
    material = relationship("CourseMaterial", back_populates="chunks")
