from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from coursegen.db.base_class import Base, JSONType

# One-way: draft -> finalizing -> finalized
ROADMAP_STATUSES = ("draft", "finalizing", "finalized")


class Roadmap(Base):
    __tablename__ = "roadmaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tutor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # snapshot of the draft's flat data: {"Topic": ["Sub 1", ...]}
    roadmap_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    user_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    draft_key: Mapped[str | None] = mapped_column(String(128), nullable=True)  # roadmap:<draft_id>

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
