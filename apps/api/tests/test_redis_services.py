import pytest
import redis

from coursegen.core.errors import TransientIOError
from coursegen.services.course_lock import course_lock
from coursegen.services.ephemeral_store import EphemeralStore, draft_key


class FakeRedis:
    def __init__(self, *, error=None):
        self.values = {}
        self.ttls = {}
        self.error = error

    def setex(self, key, ttl, value):
        if self.error is not None:
            raise self.error
        self.values[key] = value
        self.ttls[key] = ttl

    def get(self, key):
        if self.error is not None:
            raise self.error
        return self.values.get(key)


class FakeLock:
    def __init__(self, *, acquired=True, acquire_error=None, release_error=None, reacquire_error=None):
        self.acquired = acquired
        self.acquire_error = acquire_error
        self.release_error = release_error
        self.reacquire_error = reacquire_error
        self.acquire_args = None
        self.released = False
        self.reacquired = 0

    def acquire(self, blocking=True, blocking_timeout=None):
        self.acquire_args = (blocking, blocking_timeout)
        if self.acquire_error is not None:
            raise self.acquire_error
        return self.acquired

    def reacquire(self):
        if self.reacquire_error is not None:
            raise self.reacquire_error
        self.reacquired += 1
        return True

    def release(self):
        if self.release_error is not None:
            raise self.release_error
        self.released = True


class LockingRedis:
    def __init__(self, lock):
        self._lock = lock
        self.names = []

    def lock(self, name, timeout=None):
        self.names.append((name, timeout))
        return self._lock


def test_draft_values_round_trip_with_ttl():
    client = FakeRedis()
    store = EphemeralStore(client)

    store.set_with_ttl(draft_key("temp_1"), {"version": 1, "data": {"Basics": ["Variables"]}}, 172800)

    assert client.ttls["roadmap:temp_1"] == 172800
    assert store.get("roadmap:temp_1") == {"version": 1, "data": {"Basics": ["Variables"]}}
    assert store.get("roadmap:missing") is None


def test_store_errors_are_transient():
    store = EphemeralStore(FakeRedis(error=redis.ConnectionError("refused")))
    with pytest.raises(TransientIOError):
        store.set_with_ttl("roadmap:x", {}, 10)
    with pytest.raises(TransientIOError):
        store.get("roadmap:x")


def test_course_lock_is_held_for_the_block():
    lock = FakeLock()
    client = LockingRedis(lock)

    with course_lock(client, 7, ttl_sec=60):
        assert not lock.released

    assert lock.released
    assert client.names == [("lock:course:7", 60)]
    assert lock.acquire_args == (False, None)


def test_course_lock_waits_when_configured():
    lock = FakeLock()
    with course_lock(LockingRedis(lock), 7, ttl_sec=60, wait_sec=5):
        pass
    assert lock.acquire_args == (True, 5)


def test_busy_course_raises_transient():
    lock = FakeLock(acquired=False)
    with pytest.raises(TransientIOError, match="already being generated"):
        with course_lock(LockingRedis(lock), 7, ttl_sec=60):
            pytest.fail("block must not run")


def test_lock_backend_errors_are_transient():
    lock = FakeLock(acquire_error=redis.ConnectionError("refused"))
    with pytest.raises(TransientIOError):
        with course_lock(LockingRedis(lock), 7, ttl_sec=60):
            pass


def test_expired_lease_does_not_mask_the_result():
    lock = FakeLock(release_error=redis.exceptions.LockError("not owned"))
    with course_lock(LockingRedis(lock), 7, ttl_sec=60):
        pass


def test_session_jobs_are_not_locked():
    client = LockingRedis(FakeLock())
    with course_lock(client, None, ttl_sec=60):
        pass
    assert client.names == []


def test_renew_resets_the_lease():
    lock = FakeLock()
    with course_lock(LockingRedis(lock), 7, ttl_sec=60) as renew:
        renew()
        renew()
    assert lock.reacquired == 2
    assert lock.released


@pytest.mark.parametrize(
    "error",
    [redis.exceptions.LockError("not owned"), redis.ConnectionError("refused")],
)
def test_failed_renewal_is_transient_and_still_releases(error):
    lock = FakeLock(reacquire_error=error)
    with pytest.raises(TransientIOError):
        with course_lock(LockingRedis(lock), 7, ttl_sec=60) as renew:
            renew()
    assert lock.released


def test_session_jobs_renew_is_a_noop():
    client = LockingRedis(FakeLock())
    with course_lock(client, None, ttl_sec=60) as renew:
        renew()
    assert client.names == []
