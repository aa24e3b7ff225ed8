# apps/api/coursegen/services/progress.py
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from coursegen.core.config import settings
from coursegen.core.errors import NotFoundError
from coursegen.models.generation_progress import GenerationProgress
from coursegen.schemas.progress import (
    PROGRESS_EVENT,
    JobAbandoned,
    JobCompleted,
    ProgressError,
    ProgressUpdate,
    StageFailed,
    StageMessage,
    StageProgress,
)

logger = logging.getLogger(__name__)


class Broadcaster(Protocol):
    def publish(self, channel: str, event: str, payload: dict) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressTracker:
    """
    Owns one GenerationProgress row for the duration of a job.

    Every update is written durably first, then pushed to the realtime
    channel. Percentage never goes down while the job is running.
    """

    def __init__(
        self,
        db: Session,
        progress: GenerationProgress,
        *,
        broadcaster: Broadcaster,
        channel: str,
        baseline_minutes: Optional[int] = None,
        minutes_per_subtopic: Optional[int] = None,
    ):
        self.db = db
        self.progress = progress
        self.broadcaster = broadcaster
        self.channel = channel
        self._last_pct = max(0, progress.progress_percentage or 0)
        if baseline_minutes is None:
            # initial estimate; estimated_time_remaining itself is overwritten by every report
            per_unit = minutes_per_subtopic if minutes_per_subtopic is not None else settings.minutes_per_subtopic
            baseline_minutes = (progress.total_subtopics or 0) * per_unit
        self._baseline = baseline_minutes

    @classmethod
    def load(cls, db: Session, progress_id: int, **kwargs) -> "ProgressTracker":
        progress = db.get(GenerationProgress, progress_id)
        if progress is None:
            raise NotFoundError(f"GenerationProgress not found: {progress_id}")
        return cls(db, progress, **kwargs)

    @property
    def percentage(self) -> int:
        return self._last_pct

    def estimate_remaining(self, pct: int) -> int:
        """Minutes left, linear in the percentage still to go."""
        pct = min(100, max(0, pct))
        return int(math.ceil((100 - pct) / 100 * self._baseline))

    def _emit(self, message: StageMessage) -> None:
        self.broadcaster.publish(self.channel, PROGRESS_EVENT, message.model_dump(mode="json"))

    def restart(self, attempt: int) -> None:
        """Reset the row for a new attempt of the same job."""
        p = self.progress
        p.status = "processing"
        p.current_step = "initializing"
        p.progress_percentage = 0
        p.retry_count = max(0, attempt - 1)
        p.completed_at = None
        p.estimated_time_remaining = self._baseline
        self.db.commit()
        self._last_pct = 0

    def report(
        self,
        pct: float,
        *,
        step: str,
        task: str,
        section_index: Optional[int] = None,
        subtopic_index: Optional[int] = None,
        section_title: Optional[str] = None,
        subtopic_title: Optional[str] = None,
    ) -> ProgressUpdate:
        value = max(self._last_pct, min(100, int(pct)))
        self._last_pct = value

        p = self.progress
        p.progress_percentage = value
        p.current_step = step
        p.estimated_time_remaining = self.estimate_remaining(value)
        if section_index is not None:
            p.current_section_index = section_index
        if subtopic_index is not None:
            p.current_subtopic_index = subtopic_index
        self.db.commit()

        update = ProgressUpdate(
            progress_percentage=value,
            current_step=step,
            current_task=task,
            estimated_time_remaining=p.estimated_time_remaining,
            current_section=section_title,
            current_subtopic=subtopic_title,
        )
        self._emit(StageProgress(progress_id=p.id, update=update))
        return update

    def complete(self) -> ProgressUpdate:
        p = self.progress
        p.status = "completed"
        p.current_step = "completed"
        p.progress_percentage = 100
        p.estimated_time_remaining = 0
        p.completed_at = _utcnow()
        self.db.commit()
        self._last_pct = 100

        update = ProgressUpdate(
            progress_percentage=100,
            current_step="completed",
            current_task="Course content generation completed",
            estimated_time_remaining=0,
        )
        self._emit(JobCompleted(progress_id=p.id, update=update))
        return update

    def _append_error(self, step: str, error: str) -> ProgressError:
        entry = ProgressError(step=step, error=error, timestamp=_utcnow().isoformat())
        # reassign so the JSON column is flagged dirty
        self.progress.error_log = [*(self.progress.error_log or []), entry.model_dump()]
        return entry

    def fail(self, step: str, error: str) -> ProgressUpdate:
        # the session may hold a failed transaction from the error being recorded
        self.db.rollback()

        p = self.progress
        entry = self._append_error(step, error)
        p.status = "failed"
        p.progress_percentage = -1
        p.estimated_time_remaining = None
        self.db.commit()

        update = ProgressUpdate(
            progress_percentage=-1,
            current_step=p.current_step,
            current_task="Content generation failed",
            errors=[entry],
        )
        self._emit(StageFailed(progress_id=p.id, error=error, update=update))
        return update

    def abandon(self, attempts: int, error: str) -> None:
        self.db.rollback()

        p = self.progress
        self._append_error("permanent_failure", f"abandoned after {attempts} attempts: {error}")
        p.status = "failed"
        p.progress_percentage = -1
        p.retry_count = attempts
        self.db.commit()
        logger.error("progress %s abandoned after %d attempts", p.id, attempts)
        self._emit(JobAbandoned(progress_id=p.id, attempts=attempts, error=error))
