# tests/test_rate_limit.py: Login backoff bookkeeping
import pytest

from securechat.security.rate_limit import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(max_attempts=3, base_delay=2.0, max_delay=60.0, clock=clock)


def fail(limiter, key, times):
    for _ in range(times):
        limiter.record_attempt(key, success=False)


def test_unknown_keys_are_not_tracked(limiter):
    for i in range(100):
        assert limiter.is_allowed(f"user{i}")
        assert limiter.get_retry_after(f"user{i}") == 0.0
    assert len(limiter) == 0


def test_backoff_after_max_attempts(limiter, clock):
    fail(limiter, "alice", 3)
    assert not limiter.is_allowed("alice")
    assert limiter.get_retry_after("alice") == pytest.approx(2.0)

    clock.now += 1.0
    assert not limiter.is_allowed("alice")

    clock.now += 1.5
    assert limiter.is_allowed("alice")
    # Served backoff forgets the key
    assert len(limiter) == 0


def test_backoff_doubles_and_is_capped(limiter):
    fail(limiter, "alice", 4)
    assert limiter.get_retry_after("alice") == pytest.approx(4.0)
    fail(limiter, "alice", 10)
    assert limiter.get_retry_after("alice") == pytest.approx(60.0)


def test_success_forgets_key(limiter):
    fail(limiter, "alice", 2)
    limiter.record_attempt("alice", success=True)
    assert len(limiter) == 0
    fail(limiter, "alice", 2)
    assert limiter.is_allowed("alice")


def test_idle_entries_are_pruned(limiter, clock):
    fail(limiter, "alice", 1)
    fail(limiter, "bob", 3)
    assert len(limiter) == 2

    clock.now += 60.0
    fail(limiter, "carol", 1)
    assert len(limiter) == 1
    assert limiter.is_allowed("bob")


def test_pruning_keeps_active_backoff(limiter, clock):
    fail(limiter, "bob", 3)
    clock.now += 1.0
    fail(limiter, "carol", 1)
    assert not limiter.is_allowed("bob")
