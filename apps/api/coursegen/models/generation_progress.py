from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from coursegen.db.base_class import Base, JSONType


class GenerationProgress(Base):
    """
    Durable record of one content-generation job.
    Written only by the worker running that job; terminal at completed/failed.
    """

    __tablename__ = "generation_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int | None] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=True, index=True)
    roadmap_id: Mapped[int] = mapped_column(ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="processing")  # processing|completed|failed
    current_step: Mapped[str] = mapped_column(String(64), nullable=False, default="initializing")
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # -1 on failure

    current_section_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_subtopic_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_sections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_subtopics: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_time_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes

    # [{step, error, timestamp}]
    error_log: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
