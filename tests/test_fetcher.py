import threading
import time

import pytest

from gitatlas.core.errors import AuthRequired, FetchTimeout, ScanCancelled, Unreachable
from gitatlas.core.types import Freshness
from gitatlas.fetcher import FetchLimiter, RemoteFetcher, RetryPolicy

from conftest import FakeGit, FakeRepo

PATH = "/src/project"
URL = "ssh://git.example.com/project.git"


class RecordingWait:
    """Backoff stand-in that records delays instead of sleeping."""

    def __init__(self, cancel_after=None):
        self.delays = []
        self.cancel_after = cancel_after

    def __call__(self, delay, cancel):
        self.delays.append(delay)
        return self.cancel_after is not None and len(self.delays) >= self.cancel_after


def _fetcher(backend, wait=None, attempts=3):
    return RemoteFetcher(
        backend,
        limiter=FetchLimiter(max_fetches=4, per_host=2),
        timeout=5.0,
        retry=RetryPolicy(max_attempts=attempts, backoff_base=1.0),
        wait=wait or RecordingWait(),
    )


def _backend(**fetch_results):
    backend = FakeGit()
    backend.add(PATH, FakeRepo(commits={"c0": ()}, refs={"refs/heads/main": "c0"}, fetch_results=fetch_results))
    return backend


def test_successful_fetch_is_fresh():
    fetcher = _fetcher(_backend())

    state = fetcher.fetch_remote(PATH, "origin", URL)

    assert state.status == Freshness.FRESH
    assert state.attempts == 1
    assert state.fetched_at is not None


def test_transient_failures_are_retried_with_backoff():
    wait = RecordingWait()
    backend = _backend(origin=[Unreachable("connection reset"), FetchTimeout("timed out")])
    fetcher = _fetcher(backend, wait)

    state = fetcher.fetch_remote(PATH, "origin", URL)

    assert state.status == Freshness.FRESH
    assert state.attempts == 3
    assert wait.delays == [1.0, 2.0]


def test_auth_failure_is_not_retried():
    wait = RecordingWait()
    backend = _backend(origin=[AuthRequired("Authentication failed")])
    fetcher = _fetcher(backend, wait)

    state = fetcher.fetch_remote(PATH, "origin", URL)

    assert state.status == Freshness.AUTH_REQUIRED
    assert state.error_kind == "AuthRequired"
    assert state.attempts == 1
    assert wait.delays == []
    assert len(backend.fetch_calls) == 1


def test_exhausted_retries_mark_remote_unreachable():
    backend = _backend(origin=[FetchTimeout("timed out")] * 3)
    fetcher = _fetcher(backend)

    state = fetcher.fetch_remote(PATH, "origin", URL)

    assert state.status == Freshness.UNREACHABLE
    assert state.attempts == 3
    assert state.error_kind == "Timeout"


def test_permanent_failure_stops_retrying():
    backend = _backend(origin=[Unreachable("repository not found", transient=False)])
    fetcher = _fetcher(backend)

    state = fetcher.fetch_remote(PATH, "origin", URL)

    assert state.status == Freshness.UNREACHABLE
    assert state.attempts == 1
    assert state.error_kind == "Unreachable"


def test_cancel_during_backoff_raises():
    backend = _backend(origin=[Unreachable("connection reset")] * 3)
    fetcher = _fetcher(backend, RecordingWait(cancel_after=1))

    with pytest.raises(ScanCancelled):
        fetcher.fetch_remote(PATH, "origin", URL, threading.Event())


def test_refresh_reports_every_remote():
    backend = _backend(upstream=[AuthRequired("denied")])
    fetcher = _fetcher(backend)

    states = fetcher.refresh(PATH, {"origin": URL, "upstream": "https://example.org/p.git"})
    fetcher.close()

    assert {name: s.status for name, s in states.items()} == {
        "origin": Freshness.FRESH,
        "upstream": Freshness.AUTH_REQUIRED,
    }


def test_refresh_with_cancel_set_raises():
    cancel = threading.Event()
    cancel.set()
    fetcher = _fetcher(_backend())

    with pytest.raises(ScanCancelled):
        fetcher.refresh(PATH, {"origin": URL}, cancel)
    fetcher.close()


def test_refresh_without_remotes_is_empty():
    assert _fetcher(_backend()).refresh(PATH, {}) == {}


class SlowGit(FakeGit):
    """Tracks how many fetches run at once."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0
        self.peak_per_host = {}
        self._active_hosts = {}
        self._count_lock = threading.Lock()

    def fetch(self, path, remote, timeout, cancel=None):
        host = remote.split("-", 1)[0]
        with self._count_lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self._active_hosts[host] = self._active_hosts.get(host, 0) + 1
            self.peak_per_host[host] = max(self.peak_per_host.get(host, 0), self._active_hosts[host])
        time.sleep(0.05)
        with self._count_lock:
            self.active -= 1
            self._active_hosts[host] -= 1


def test_limiter_bounds_global_and_per_host_concurrency():
    backend = SlowGit()
    backend.add(PATH, FakeRepo(commits={"c0": ()}, refs={"refs/heads/main": "c0"}))
    fetcher = RemoteFetcher(backend, limiter=FetchLimiter(max_fetches=3, per_host=1), wait=RecordingWait())
    remotes = {
        f"{host}-{i}": f"https://{host}.example.com/r{i}.git"
        for host in ("one", "two", "three", "four")
        for i in range(3)
    }

    states = fetcher.refresh(PATH, remotes)
    fetcher.close()

    assert all(s.status == Freshness.FRESH for s in states.values())
    assert backend.peak <= 3
    assert max(backend.peak_per_host.values()) == 1


def test_waiting_for_a_busy_url_is_cancellable():
    limiter = FetchLimiter(max_fetches=2, per_host=2)
    cancel = threading.Event()
    cancel.set()

    with limiter.slot(URL):
        with pytest.raises(ScanCancelled):
            with limiter.slot(URL, cancel):
                pass


def test_invalid_limits_are_rejected():
    with pytest.raises(ValueError):
        FetchLimiter(max_fetches=0)


def test_backoff_is_capped():
    policy = RetryPolicy(max_attempts=10, backoff_base=1.0, backoff_max=5.0)

    assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]
