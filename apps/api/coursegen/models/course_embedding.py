from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from pgvector.sqlalchemy import Vector

from coursegen.db.base_class import Base


class CourseEmbedding(Base):
    """
    One vector per indexed piece of course text.

    content_type: course | section | subtopic
    content_id:   id of the course/section/subtopic row (as string)
    """
    __tablename__ = "course_embeddings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content_id = Column(String(64), nullable=False)
    content_type = Column(String(16), nullable=False)

    content_text = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)

    model = Column(String(128), nullable=False, default="unknown")
    dim = Column(Integer, nullable=False)
    embedding = Column(Vector(384), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("course_id", "content_id", "content_type", name="uq_course_embeddings_content"),
        Index("idx_course_embeddings_course_type", "course_id", "content_type"),
    )
