# apps/api/coursegen/services/job_dispatch.py
from __future__ import annotations

import logging
from typing import Any, Dict

from kombu.exceptions import OperationalError

from coursegen.core.errors import TransientIOError
from coursegen.schemas.jobs import ContentJobPayload
from coursegen.worker import tasks as worker_tasks

logger = logging.getLogger(__name__)

CONTENT_JOB = "generate-course-content"

# Queue-level job name -> Celery task object
JOB_NAME_TO_TASK = {
    CONTENT_JOB: worker_tasks.generate_course_content,
}


def dispatch_job(job_name: str, payload: Dict[str, Any] | None = None):
    """
    Dispatch using task objects (.apply_async) so ENV=test eager mode works.
    Retry budget and backoff are declared on the task itself.
    """
    payload = payload or {}

    task = JOB_NAME_TO_TASK.get(job_name)
    if not task:
        raise ValueError(f"Unknown job: {job_name}")

    try:
        return task.apply_async(kwargs=payload)
    except OperationalError as e:
        raise TransientIOError(f"enqueue {job_name} failed: {e}") from e


def enqueue_content_job(payload: ContentJobPayload):
    result = dispatch_job(CONTENT_JOB, payload.model_dump(mode="json"))
    logger.info("enqueued %s progress_id=%s task_id=%s", CONTENT_JOB, payload.progress_id, getattr(result, "id", None))
    return result
