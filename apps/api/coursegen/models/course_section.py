from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coursegen.db.base_class import Base


class CourseSection(Base):
    __tablename__ = "course_sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    roadmap_id: Mapped[int] = mapped_column(ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False)

    index: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)

    subtopics = relationship(
        "CourseSubtopic",
        back_populates="section",
        order_by="CourseSubtopic.index",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_course_sections_course_index", "course_id", "index"),)
