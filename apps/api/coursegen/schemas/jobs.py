from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ContentJobPayload(BaseModel):
    """Arguments of one content-generation job, as enqueued."""

    course_id: Optional[int] = None
    roadmap_id: int
    progress_id: int
    roadmap_data: dict[str, list[str]]
    session_id: str
