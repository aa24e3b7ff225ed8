# apps/api/coursegen/services/finalization.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from coursegen.core.config import Settings, settings as default_settings
from coursegen.core.errors import AccessError, NotFoundError, TransientIOError
from coursegen.models.course import Course
from coursegen.models.course_section import CourseSection
from coursegen.models.course_subtopic import CourseSubtopic
from coursegen.models.generation_progress import GenerationProgress
from coursegen.models.roadmap import Roadmap
from coursegen.schemas.drafts import Draft, FinalizationResult
from coursegen.schemas.jobs import ContentJobPayload
from coursegen.services.ephemeral_store import draft_key
from coursegen.services.roadmap_drafts import validate_roadmap_data

logger = logging.getLogger(__name__)

_ROADMAP_NEXT = {"draft": "finalizing", "finalizing": "finalized"}


def advance_roadmap_status(roadmap: Roadmap, new_status: str) -> None:
    if _ROADMAP_NEXT.get(roadmap.status) != new_status:
        raise ValueError(f"Roadmap {roadmap.id}: illegal transition {roadmap.status} -> {new_status}")
    roadmap.status = new_status


def check_course_owner(db: Session, course_id: int, tutor_id: str) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFoundError(f"Course not found: {course_id}")
    if course.tutor_id != tutor_id:
        raise AccessError(f"Tutor {tutor_id} does not own course {course_id}")
    return course


def finalize_draft(
    db: Session,
    draft: Draft,
    *,
    course_id: int,
    tutor_id: str,
    enqueue: Optional[Callable[[ContentJobPayload], Any]] = None,
    cfg: Settings = default_settings,
) -> FinalizationResult:
    """
    Persist the draft as Roadmap/Section/Subtopic rows plus one GenerationProgress,
    then enqueue one content-generation job.

    The roadmap stays `finalizing` if the enqueue fails.
    """
    if enqueue is None:
        from coursegen.services.job_dispatch import enqueue_content_job

        enqueue = enqueue_content_job

    check_course_owner(db, course_id, tutor_id)
    data = validate_roadmap_data(draft.data)

    roadmap = Roadmap(
        course_id=course_id,
        tutor_id=tutor_id,
        roadmap_data=data,
        user_query=draft.user_query,
        draft_key=draft_key(draft.id),
        status="draft",
    )
    advance_roadmap_status(roadmap, "finalizing")
    db.add(roadmap)
    db.flush()

    total_subtopics = 0
    for s_idx, (topic, subs) in enumerate(data.items()):
        section = CourseSection(course_id=course_id, roadmap_id=roadmap.id, index=s_idx, title=topic)
        section.subtopics = [
            CourseSubtopic(course_id=course_id, index=i, title=title, status="pending")
            for i, title in enumerate(subs)
        ]
        db.add(section)
        total_subtopics += len(subs)

    session_id = str(uuid.uuid4())
    progress = GenerationProgress(
        course_id=course_id,
        roadmap_id=roadmap.id,
        status="processing",
        current_step="initializing",
        progress_percentage=0,
        total_sections=len(data),
        total_subtopics=total_subtopics,
        estimated_time_remaining=total_subtopics * cfg.minutes_per_subtopic,
        error_log=[],
        session_id=session_id,
    )
    db.add(progress)
    db.commit()

    payload = ContentJobPayload(
        course_id=course_id,
        roadmap_id=roadmap.id,
        progress_id=progress.id,
        roadmap_data=data,
        session_id=session_id,
    )
    try:
        enqueue(payload)
    except TransientIOError:
        logger.error("enqueue failed; roadmap %s left in finalizing", roadmap.id)
        raise

    advance_roadmap_status(roadmap, "finalized")
    roadmap.finalized_at = datetime.now(timezone.utc)
    db.commit()

    logger.info(
        "roadmap %s finalized for course %s: %d sections, %d subtopics",
        roadmap.id,
        course_id,
        len(data),
        total_subtopics,
    )
    return FinalizationResult(
        draft_id=draft.id,
        roadmap_id=roadmap.id,
        progress_id=progress.id,
        session_id=session_id,
        total_sections=len(data),
        total_subtopics=total_subtopics,
    )
