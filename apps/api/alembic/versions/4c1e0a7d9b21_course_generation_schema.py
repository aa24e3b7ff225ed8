"""course generation schema: roadmaps, sections, subtopics, progress, embeddings

Revision ID: 4c1e0a7d9b21
Revises:
Create Date: 2026-10-19 10:12:31.402117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector


# revision identifiers, used by Alembic.
revision: str = "4c1e0a7d9b21"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False))
    return cols


def upgrade() -> None:
    # pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tutor_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False, server_default=""),
        *_timestamps(updated=False),
    )
    op.create_index("ix_courses_tutor_id", "courses", ["tutor_id"])

    op.create_table(
        "roadmaps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tutor_id", sa.String(length=64), nullable=False),
        sa.Column("roadmap_data", postgresql.JSONB(), nullable=False),
        sa.Column("user_query", sa.Text(), nullable=True),
        sa.Column("draft_key", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_roadmaps_course_id", "roadmaps", ["course_id"])

    op.create_table(
        "course_sections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("roadmap_id", sa.Integer(), sa.ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False),
        sa.Column("index", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
    )
    op.create_index("idx_course_sections_course_index", "course_sections", ["course_id", "index"])

    op.create_table(
        "course_subtopics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("course_sections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("index", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("markdown_path", sa.Text(), nullable=True),
        sa.Column("transcript_path", sa.Text(), nullable=True),
        sa.Column("audio_path", sa.Text(), nullable=True),
        sa.Column("video_url", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_course_subtopics_section_id", "course_subtopics", ["section_id"])
    op.create_index("idx_course_subtopics_course", "course_subtopics", ["course_id"])

    op.create_table(
        "generation_progress",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=True),
        sa.Column("roadmap_id", sa.Integer(), sa.ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="processing"),
        sa.Column("current_step", sa.String(length=64), nullable=False, server_default="initializing"),
        sa.Column("progress_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_section_index", sa.Integer(), nullable=True),
        sa.Column("current_subtopic_index", sa.Integer(), nullable=True),
        sa.Column("total_sections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_subtopics", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_time_remaining", sa.Integer(), nullable=True),
        sa.Column("error_log", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("session_id", sa.String(length=64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_generation_progress_course_id", "generation_progress", ["course_id"])
    op.create_index("ix_generation_progress_session_id", "generation_progress", ["session_id"])

    op.create_table(
        "course_embeddings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content_id", sa.String(length=64), nullable=False),
        sa.Column("content_type", sa.String(length=16), nullable=False),
        sa.Column("content_text", sa.Text(), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("model", sa.String(length=128), nullable=False, server_default="unknown"),
        sa.Column("dim", sa.Integer(), nullable=False),
        # ✅ pgvector column
        sa.Column("embedding", Vector(384), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint("course_id", "content_id", "content_type", name="uq_course_embeddings_content"),
    )
    op.create_index("ix_course_embeddings_course_id", "course_embeddings", ["course_id"])
    op.create_index("idx_course_embeddings_course_type", "course_embeddings", ["course_id", "content_type"])

    op.create_table(
        "section_quizzes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("course_sections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("questions", postgresql.JSONB(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_section_quizzes_course_id", "section_quizzes", ["course_id"])

    op.create_table(
        "subtopic_flashcards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subtopic_id", sa.Integer(), sa.ForeignKey("course_subtopics.id", ondelete="CASCADE"), nullable=False),
        sa.Column("idx", sa.Integer(), nullable=False),
        sa.Column("front", sa.Text(), nullable=False),
        sa.Column("back", sa.Text(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_subtopic_flashcards_course_id", "subtopic_flashcards", ["course_id"])

    op.create_table(
        "tutor_contexts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("outline", postgresql.JSONB(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("tutor_contexts")
    op.drop_index("ix_subtopic_flashcards_course_id", table_name="subtopic_flashcards")
    op.drop_table("subtopic_flashcards")
    op.drop_index("ix_section_quizzes_course_id", table_name="section_quizzes")
    op.drop_table("section_quizzes")
    op.drop_index("idx_course_embeddings_course_type", table_name="course_embeddings")
    op.drop_index("ix_course_embeddings_course_id", table_name="course_embeddings")
    op.drop_table("course_embeddings")
    op.drop_index("ix_generation_progress_session_id", table_name="generation_progress")
    op.drop_index("ix_generation_progress_course_id", table_name="generation_progress")
    op.drop_table("generation_progress")
    op.drop_index("idx_course_subtopics_course", table_name="course_subtopics")
    op.drop_index("ix_course_subtopics_section_id", table_name="course_subtopics")
    op.drop_table("course_subtopics")
    op.drop_index("idx_course_sections_course_index", table_name="course_sections")
    op.drop_table("course_sections")
    op.drop_index("ix_roadmaps_course_id", table_name="roadmaps")
    op.drop_table("roadmaps")
    op.drop_index("ix_courses_tutor_id", table_name="courses")
    op.drop_table("courses")
