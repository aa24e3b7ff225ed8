# apps/api/coursegen/schemas/drafts.py
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

EditOpName = Literal["rm-main", "add-main", "up-main", "add-sub", "rm-sub", "up-sub"]

# Long-form names accepted on input.
EDIT_OP_ALIASES = {
    "remove-topic": "rm-main",
    "add-topic": "add-main",
    "move-topic": "up-main",
    "add-subtopic": "add-sub",
    "remove-subtopic": "rm-sub",
    "move-subtopic": "up-sub",
}


class DraftConstraints(BaseModel):
    level: Optional[str] = None  # beginner|intermediate|advanced
    duration_weeks: Optional[int] = Field(default=None, ge=1)
    weekly_commitment_hours: Optional[int] = Field(default=None, ge=1)
    tech_stack_prefs: list[str] = Field(default_factory=list)


class EditChange(BaseModel):
    op: EditOpName
    id: Optional[str] = None
    query: Optional[str] = None

    @field_validator("op", mode="before")
    @classmethod
    def _normalize_op(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return EDIT_OP_ALIASES.get(v, v)
        return v


class SubtopicNode(BaseModel):
    id: str
    title: str


class TopicNode(BaseModel):
    id: str
    title: str
    subtopics: list[SubtopicNode] = Field(default_factory=list)


class HierarchicalRoadmap(BaseModel):
    id: str = "course"
    main_topics: list[TopicNode] = Field(default_factory=list)


class Draft(BaseModel):
    """Flat, stored form of a roadmap draft."""

    id: str
    user_query: str
    data: dict[str, list[str]]
    version: int = 1
    created_at: datetime
    updated_at: datetime


class DraftView(BaseModel):
    id: str
    version: int
    data: dict[str, list[str]]
    roadmap: HierarchicalRoadmap
    expires_in_sec: int


class FinalizationResult(BaseModel):
    draft_id: str
    roadmap_id: int
    progress_id: int
    session_id: str
    total_sections: int
    total_subtopics: int
