# apps/api/coursegen/worker/tasks.py
from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from coursegen.core.config import settings
from coursegen.core.errors import NON_RETRYABLE, PermanentPipelineFailure
from coursegen.db.session import SessionLocal
from coursegen.schemas.jobs import ContentJobPayload
from coursegen.services.assessments import AssessmentGenerator
from coursegen.services.content_pipeline import ContentPipeline, mark_unfinished_failed
from coursegen.services.course_lock import course_lock
from coursegen.services.embedding_index import EmbeddingIndexer
from coursegen.services.llm.openai_client import LLMClient
from coursegen.services.media_tools import MediaTools
from coursegen.services.progress import ProgressTracker
from coursegen.services.progress_broadcast import RedisProgressBroadcaster, progress_channel
from coursegen.services.rate_limit import TokenBucket
from coursegen.services.redis_client import get_redis
from coursegen.services.storage_client import StorageClient
from coursegen.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def _tracker(db: Session, payload: ContentJobPayload) -> ProgressTracker:
    return ProgressTracker.load(
        db,
        payload.progress_id,
        broadcaster=RedisProgressBroadcaster(get_redis()),
        channel=progress_channel(payload.course_id, payload.session_id),
    )


def build_pipeline(
    db: Session,
    payload: ContentJobPayload,
    heartbeat: Optional[Callable[[], None]] = None,
) -> ContentPipeline:
    llm = LLMClient()
    limiter = TokenBucket(settings.llm_rate_per_sec, settings.llm_burst)
    return ContentPipeline(
        db,
        payload,
        llm=llm,
        tools=MediaTools(),
        storage=StorageClient(),
        tracker=_tracker(db, payload),
        limiter=limiter,
        indexer=EmbeddingIndexer(db),
        assessments=AssessmentGenerator(db, llm, limiter=limiter),
        heartbeat=heartbeat,
    )


def backoff_seconds(retries: int) -> float:
    """2s, 4s, 8s ... for retries 0, 1, 2 ..."""
    return settings.job_backoff_sec * (2 ** retries)


def _abandon(db: Session, payload: ContentJobPayload, attempts: int, err: Exception) -> None:
    db.rollback()
    _tracker(db, payload).abandon(attempts, str(err))
    mark_unfinished_failed(db, payload.course_id, payload.roadmap_id)


@celery_app.task(
    bind=True,
    name="content.generate_course_content",
    max_retries=settings.job_max_attempts - 1,
)
def generate_course_content(
    self,
    roadmap_id: int,
    progress_id: int,
    roadmap_data: dict,
    session_id: str,
    course_id: int | None = None,
) -> dict:
    payload = ContentJobPayload(
        course_id=course_id,
        roadmap_id=roadmap_id,
        progress_id=progress_id,
        roadmap_data=roadmap_data,
        session_id=session_id,
    )
    attempt = self.request.retries + 1

    db: Session = SessionLocal()
    try:
        with course_lock(
            get_redis(),
            payload.course_id,
            ttl_sec=settings.course_lock_ttl_sec,
            wait_sec=settings.course_lock_wait_sec,
        ) as renew:
            return build_pipeline(db, payload, heartbeat=renew).run(attempt=attempt)

    except NON_RETRYABLE:
        raise
    except Exception as e:
        if self.request.retries >= self.max_retries:
            _abandon(db, payload, attempt, e)
            raise PermanentPipelineFailure(
                f"content generation abandoned after {attempt} attempts: {e}", attempts=attempt
            ) from e

        countdown = backoff_seconds(self.request.retries)
        logger.warning(
            "content generation attempt %d/%d failed (progress=%s); retrying in %.0fs: %s",
            attempt,
            self.max_retries + 1,
            progress_id,
            countdown,
            e,
        )
        raise self.retry(exc=e, countdown=countdown)
    finally:
        db.close()
