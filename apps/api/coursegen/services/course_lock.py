# apps/api/coursegen/services/course_lock.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import redis
from redis.exceptions import LockError

from coursegen.core.errors import TransientIOError

logger = logging.getLogger(__name__)


def course_lock_name(course_id: int) -> str:
    return f"lock:course:{course_id}"


def _no_renew() -> None:
    return None


@contextmanager
def course_lock(
    client: redis.Redis,
    course_id: Optional[int],
    *,
    ttl_sec: int,
    wait_sec: float = 0.0,
) -> Iterator[Callable[[], None]]:
    """
    Lease on a course's Section/Subtopic rows for the duration of one job.
    Yields a renew() callable that resets the lease to ttl_sec; long jobs call it
    between stages so the lease never lapses while the job is still writing.
    Session-scoped jobs (no course yet) are not locked.
    """
    if course_id is None:
        yield _no_renew
        return

    lock = client.lock(course_lock_name(course_id), timeout=ttl_sec)
    try:
        acquired = lock.acquire(blocking=wait_sec > 0, blocking_timeout=wait_sec or None)
    except redis.RedisError as e:
        raise TransientIOError(f"course lock unavailable: {e}") from e
    if not acquired:
        raise TransientIOError(f"course {course_id} is already being generated by another job")

    def renew() -> None:
        try:
            lock.reacquire()
        except LockError as e:
            raise TransientIOError(f"course {course_id} lease lost mid-job") from e
        except redis.RedisError as e:
            raise TransientIOError(f"course lock renewal failed: {e}") from e

    try:
        yield renew
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("course %s lease expired before release", course_id)
