# apps/api/coursegen/worker/celery_app.py
import os

from celery import Celery
from celery.signals import setup_logging

from coursegen.core.config import is_test_env, settings
from coursegen.core.logging import configure_logging


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v and v.strip() else default


BROKER_URL = _env("CELERY_BROKER_URL") or settings.redis_url
RESULT_BACKEND = _env("CELERY_RESULT_BACKEND") or BROKER_URL

# IMPORTANT: the variable name MUST be `celery_app`
celery_app = Celery(
    "coursegen",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
)

celery_app.autodiscover_tasks(["coursegen.worker"])

celery_app.conf.update(
    task_track_started=True,
    result_extended=True,
    enable_utc=True,
    timezone="UTC",
    # a job is acknowledged only after it finishes, so a dead worker's job is redelivered
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_always_eager=is_test_env(),
    task_eager_propagates=is_test_env(),
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(settings.log_level)


__all__ = ["celery_app"]
