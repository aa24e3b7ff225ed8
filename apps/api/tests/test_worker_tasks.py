import json

import pytest
import redis

from conftest import FakeLLM
from coursegen.core.errors import PermanentPipelineFailure, TransientIOError, ValidationError
from coursegen.models.course_subtopic import CourseSubtopic
from coursegen.models.generation_progress import GenerationProgress
from coursegen.services.roadmap_drafts import RoadmapDraftEngine
from coursegen.worker import tasks
from coursegen.worker.tasks import backoff_seconds, generate_course_content


class FakeLock:
    def __init__(self, available=True):
        self.available = available
        self.released = 0
        self.reacquired = 0
        self.lost = False

    def acquire(self, blocking=True, blocking_timeout=None):
        return self.available

    def reacquire(self):
        if self.lost:
            raise redis.exceptions.LockError("not owned")
        self.reacquired += 1
        return True

    def release(self):
        self.released += 1


class FakeRedis:
    def __init__(self, lock_available=True):
        self.published = []
        self.locks = {}
        self.lock_available = lock_available

    def lock(self, name, timeout=None):
        return self.locks.setdefault(name, FakeLock(self.lock_available))

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1


class ScriptedPipeline:
    def __init__(self, error=None):
        self.error = error
        self.attempts = []

    def run(self, attempt=1):
        self.attempts.append(attempt)
        if self.error is not None:
            raise self.error
        return {"ok": True, "attempt": attempt}


class BeatingPipeline(ScriptedPipeline):
    def __init__(self, heartbeat):
        super().__init__()
        self.heartbeat = heartbeat

    def run(self, attempt=1):
        self.heartbeat()
        return super().run(attempt)


@pytest.fixture
def job(db, course, store, cfg):
    plan = {"Basics": ["Variables", "Loops"]}
    engine = RoadmapDraftEngine(FakeLLM([json.dumps(plan)]), store, cfg=cfg)
    jobs = []
    engine.finalize(db, engine.generate("Intro").id, course_id=course.id, tutor_id="tutor-1", enqueue=jobs.append)
    db.close()
    return jobs[0]


@pytest.fixture
def worker(session_factory, monkeypatch):
    fake_redis = FakeRedis()
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(tasks, "get_redis", lambda: fake_redis)
    return fake_redis


def _use_pipeline(monkeypatch, pipeline):
    monkeypatch.setattr(tasks, "build_pipeline", lambda db, payload, heartbeat=None: pipeline)


class RetryScheduled(Exception):
    pass


@pytest.fixture
def retries(monkeypatch):
    scheduled = []

    def fake_retry(exc=None, countdown=None, **kwargs):
        scheduled.append((exc, countdown))
        return RetryScheduled(str(exc))

    monkeypatch.setattr(generate_course_content, "retry", fake_retry)
    return scheduled


def test_backoff_doubles_per_retry():
    assert [backoff_seconds(n) for n in range(3)] == [2, 4, 8]


def test_successful_job_runs_once_under_course_lock(job, worker, monkeypatch):
    pipeline = ScriptedPipeline()
    _use_pipeline(monkeypatch, pipeline)

    result = generate_course_content.apply(kwargs=job.model_dump(mode="json"), throw=True).get()

    assert result == {"ok": True, "attempt": 1}
    assert pipeline.attempts == [1]
    assert worker.locks[f"lock:course:{job.course_id}"].released == 1


@pytest.mark.parametrize("previous, countdown", [(0, 2), (1, 4)])
def test_transient_failure_schedules_retry_with_backoff(job, worker, retries, monkeypatch, previous, countdown):
    pipeline = ScriptedPipeline(TransientIOError("storage down"))
    _use_pipeline(monkeypatch, pipeline)

    with pytest.raises(RetryScheduled):
        generate_course_content.apply(kwargs=job.model_dump(mode="json"), retries=previous, throw=True)

    assert pipeline.attempts == [previous + 1]
    assert len(retries) == 1
    assert isinstance(retries[0][0], TransientIOError)
    assert retries[0][1] == countdown
    assert worker.published == []


def test_last_attempt_abandons_the_job(job, worker, retries, session_factory, monkeypatch):
    pipeline = ScriptedPipeline(TransientIOError("storage down"))
    _use_pipeline(monkeypatch, pipeline)

    with pytest.raises(PermanentPipelineFailure) as ei:
        generate_course_content.apply(kwargs=job.model_dump(mode="json"), retries=2, throw=True)

    assert ei.value.attempts == 3
    assert pipeline.attempts == [3]
    assert retries == []

    s = session_factory()
    progress = s.get(GenerationProgress, job.progress_id)
    assert progress.status == "failed"
    assert progress.progress_percentage == -1
    assert progress.retry_count == 3
    assert progress.error_log[-1]["step"] == "permanent_failure"
    assert "storage down" in progress.error_log[-1]["error"]
    assert {sub.status for sub in s.query(CourseSubtopic).all()} == {"failed"}
    s.close()

    channel, message = worker.published[-1]
    assert channel == f"course:{job.course_id}"
    assert message["payload"]["kind"] == "permanent_failure"
    assert message["payload"]["attempts"] == 3


def test_validation_errors_are_not_retried(job, worker, retries, monkeypatch):
    pipeline = ScriptedPipeline(ValidationError("bad plan"))
    _use_pipeline(monkeypatch, pipeline)

    with pytest.raises(ValidationError):
        generate_course_content.apply(kwargs=job.model_dump(mode="json"), throw=True)
    assert pipeline.attempts == [1]
    assert retries == []


def test_busy_course_is_retried_without_running(job, worker, retries, monkeypatch):
    worker.lock_available = False
    pipeline = ScriptedPipeline()
    _use_pipeline(monkeypatch, pipeline)

    with pytest.raises(RetryScheduled, match="already being generated"):
        generate_course_content.apply(kwargs=job.model_dump(mode="json"), throw=True)
    assert pipeline.attempts == []


def _use_beating_pipeline(monkeypatch):
    built = []

    def build(db, payload, heartbeat=None):
        built.append(BeatingPipeline(heartbeat))
        return built[-1]

    monkeypatch.setattr(tasks, "build_pipeline", build)
    return built


def test_pipeline_heartbeat_renews_the_course_lease(job, worker, monkeypatch):
    built = _use_beating_pipeline(monkeypatch)

    generate_course_content.apply(kwargs=job.model_dump(mode="json"), throw=True).get()

    lock = worker.locks[f"lock:course:{job.course_id}"]
    assert built[0].attempts == [1]
    assert lock.reacquired == 1
    assert lock.released == 1


def test_lost_lease_is_retried(job, worker, retries, monkeypatch):
    built = _use_beating_pipeline(monkeypatch)
    lock = FakeLock()
    lock.lost = True
    worker.locks[f"lock:course:{job.course_id}"] = lock

    with pytest.raises(RetryScheduled, match="lease lost"):
        generate_course_content.apply(kwargs=job.model_dump(mode="json"), throw=True)

    assert built[0].attempts == []
    assert isinstance(retries[0][0], TransientIOError)
