"""SQLAlchemy ORM models."""

from app.models.course_material import CourseMaterial
from app.models.material_chunk import MaterialChunk

__all__ = [
    "CourseMaterial",
    "MaterialChunk",
]
