# apps/api/coursegen/schemas/progress.py
from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

PROGRESS_EVENT = "content_generation_progress"


class ProgressError(BaseModel):
    step: str
    error: str
    timestamp: str


class ProgressUpdate(BaseModel):
    progress_percentage: int = Field(ge=-1, le=100)
    current_step: str
    current_task: str
    estimated_time_remaining: Optional[int] = Field(default=None, ge=0)  # minutes
    current_section: Optional[str] = None
    current_subtopic: Optional[str] = None
    errors: list[ProgressError] = Field(default_factory=list)


class StageProgress(BaseModel):
    kind: Literal["progress"] = "progress"
    progress_id: int
    update: ProgressUpdate


class StageFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    progress_id: int
    error: str
    update: ProgressUpdate


class JobCompleted(BaseModel):
    kind: Literal["completed"] = "completed"
    progress_id: int
    update: ProgressUpdate


class JobAbandoned(BaseModel):
    kind: Literal["permanent_failure"] = "permanent_failure"
    progress_id: int
    attempts: int
    error: str


StageMessage = Annotated[
    Union[StageProgress, StageFailed, JobCompleted, JobAbandoned],
    Field(discriminator="kind"),
]

stage_message_adapter: TypeAdapter[StageMessage] = TypeAdapter(StageMessage)
