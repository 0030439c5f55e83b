import threading
import time

import pytest

from takeout_import.core.lookup_queue import RateLimitedLookupQueue
from takeout_import.models import LookupResult


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_submit_returns_lookup_result():
    result = LookupResult(latitude=1.0, longitude=2.0)
    lookup_queue = RateLimitedLookupQueue(lambda query: result, min_interval=0)
    try:
        assert lookup_queue.submit("anything") is result
    finally:
        lookup_queue.close()


def test_dispatches_are_spaced_by_min_interval_under_concurrency():
    clock = FakeClock()
    dispatched = []

    def lookup(query):
        dispatched.append(clock.now)
        clock.now += 0.2  # provider latency
        return None

    lookup_queue = RateLimitedLookupQueue(lookup, min_interval=1.1, clock=clock, sleep=clock.sleep)
    threads = [threading.Thread(target=lookup_queue.submit, args=(f"q{i}",)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)
    lookup_queue.close(timeout=5)

    assert len(dispatched) == 8
    gaps = [later - earlier for earlier, later in zip(dispatched, dispatched[1:])]
    assert all(gap >= 1.1 for gap in gaps)
    assert clock.sleeps and all(s == pytest.approx(1.1) for s in clock.sleeps)


def test_real_clock_gap_is_respected():
    dispatched = []
    lookup_queue = RateLimitedLookupQueue(lambda query: dispatched.append(time.monotonic()), min_interval=0.05)
    futures = [lookup_queue.submit_async(str(i)) for i in range(4)]
    for future in futures:
        future.result(timeout=5)
    lookup_queue.close(timeout=5)

    gaps = [later - earlier for earlier, later in zip(dispatched, dispatched[1:])]
    assert len(gaps) == 3
    assert all(gap >= 0.05 for gap in gaps)


def test_provider_failure_resolves_to_none(caplog):
    calls = []

    def lookup(query):
        calls.append(query)
        if query == "boom":
            raise TimeoutError("provider timed out")
        return LookupResult(latitude=0.5, longitude=0.5)

    lookup_queue = RateLimitedLookupQueue(lookup, min_interval=0)
    try:
        with caplog.at_level("WARNING"):
            assert lookup_queue.submit("boom") is None
        assert lookup_queue.submit("fine").latitude == 0.5
    finally:
        lookup_queue.close()

    assert calls == ["boom", "fine"]
    assert "Lookup failed" in " ".join(caplog.messages)


def test_status_reports_pending_and_processing():
    release = threading.Event()
    started = threading.Event()

    def lookup(query):
        started.set()
        release.wait(timeout=5)
        return None

    lookup_queue = RateLimitedLookupQueue(lookup, min_interval=0)
    assert lookup_queue.status() == {"pending": 0, "isProcessing": False}

    first = lookup_queue.submit_async("a")
    second = lookup_queue.submit_async("b")
    assert started.wait(timeout=5)

    status = lookup_queue.status()
    assert status["isProcessing"] is True
    assert status["pending"] == 1

    release.set()
    first.result(timeout=5)
    second.result(timeout=5)
    lookup_queue.close(timeout=5)


def test_closed_queue_rejects_submissions():
    lookup_queue = RateLimitedLookupQueue(lambda query: None, min_interval=0)
    lookup_queue.close()
    with pytest.raises(RuntimeError):
        lookup_queue.submit("late")
