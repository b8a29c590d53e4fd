"""Remote fetcher: refresh remote-tracking refs with bounded concurrency."""

import threading
import time
import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, Optional

from .core.errors import AuthRequired, FetchError, ScanCancelled
from .core.types import Freshness, RemoteState
from .core.urls import host_of
from .git.base import GitBackend

logger = logging.getLogger('gitatlas')


@dataclass
class RetryPolicy:
    """Bounded exponential backoff for transient fetch failures."""
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0

    def delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)


def _acquire(lock, cancel: Optional[threading.Event], poll: float = 0.1) -> None:
    while not lock.acquire(timeout=poll):
        if cancel is not None and cancel.is_set():
            raise ScanCancelled("Cancelled while waiting for a fetch slot")


class FetchLimiter:
    """Machine-wide limits on outstanding network operations.

    At most ``max_fetches`` fetches run at once, at most ``per_host``
    against a single host, and at most one per distinct remote URL.
    """

    def __init__(self, max_fetches: int = 8, per_host: int = 2):
        if max_fetches < 1 or per_host < 1:
            raise ValueError("Fetch limits must be >= 1")
        self.max_fetches = max_fetches
        self.per_host = per_host
        self._global = threading.BoundedSemaphore(max_fetches)
        self._guard = threading.Lock()
        self._hosts: Dict[str, threading.BoundedSemaphore] = {}
        self._urls: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    def _host_semaphore(self, host: str) -> threading.BoundedSemaphore:
        with self._guard:
            if host not in self._hosts:
                self._hosts[host] = threading.BoundedSemaphore(self.per_host)
            return self._hosts[host]

    def _url_lock(self, url: str) -> threading.Lock:
        with self._guard:
            return self._urls[url]

    @contextmanager
    def slot(self, url: str, cancel: Optional[threading.Event] = None) -> Iterator[None]:
        """Hold a fetch slot for ``url`` (URL lock, then host, then global)."""
        url_lock = self._url_lock(url)
        host_sem = self._host_semaphore(host_of(url))
        _acquire(url_lock, cancel)
        try:
            _acquire(host_sem, cancel)
            try:
                _acquire(self._global, cancel)
                try:
                    yield
                finally:
                    self._global.release()
            finally:
                host_sem.release()
        finally:
            url_lock.release()


def _wait(delay: float, cancel: Optional[threading.Event]) -> bool:
    """Sleep for ``delay`` seconds; returns True if cancelled meanwhile."""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)


class RemoteFetcher:
    """Refresh a repository's remotes through the git collaborator."""

    def __init__(
        self,
        backend: GitBackend,
        limiter: Optional[FetchLimiter] = None,
        timeout: float = 60.0,
        retry: Optional[RetryPolicy] = None,
        wait: Optional[Callable[[float, Optional[threading.Event]], bool]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize the fetcher.

        Args:
            backend: Git access collaborator
            limiter: Shared concurrency limits (one per machine)
            timeout: Seconds allowed per fetch attempt
            retry: Retry policy for transient failures
            wait: Backoff sleep, returning True when cancelled
            clock: Source of fetch timestamps
        """
        self.backend = backend
        self.limiter = limiter or FetchLimiter()
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self._wait = wait or _wait
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.limiter.max_fetches,
                    thread_name_prefix='gitatlas-fetch'
                )
            return self._executor

    def close(self) -> None:
        """Shut down the fetch worker pool."""
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True, cancel_futures=True)
                self._executor = None

    def refresh(
        self,
        path: str,
        remotes: Dict[str, str],
        cancel: Optional[threading.Event] = None
    ) -> Dict[str, RemoteState]:
        """Fetch every remote of a repository concurrently.

        Args:
            path: Repository path
            remotes: Remote names mapped to URLs
            cancel: Event that cancels the refresh when set

        Returns:
            RemoteState per remote name; failures are recorded, not raised

        Raises:
            ScanCancelled: If cancelled before every remote reported a status
        """
        if not remotes:
            return {}

        pool = self._pool()
        future_to_name = {
            pool.submit(self.fetch_remote, path, name, url, cancel): name
            for name, url in sorted(remotes.items())
        }

        states: Dict[str, RemoteState] = {}
        cancelled = False
        for future in as_completed(future_to_name):
            name = future_to_name[future]
            try:
                states[name] = future.result()
            except ScanCancelled:
                cancelled = True

        if cancelled or (cancel is not None and cancel.is_set()):
            raise ScanCancelled("Remote refresh cancelled", path)
        return states

    def fetch_remote(
        self,
        path: str,
        name: str,
        url: str,
        cancel: Optional[threading.Event] = None
    ) -> RemoteState:
        """Fetch one remote with retries.

        Returns:
            RemoteState tagged FRESH, AUTH_REQUIRED or UNREACHABLE

        Raises:
            ScanCancelled: If cancelled before the outcome is known
        """
        last_error: Optional[FetchError] = None
        attempts = 0

        while attempts < self.retry.max_attempts:
            if cancel is not None and cancel.is_set():
                raise ScanCancelled(f"Fetch of {name} cancelled", path)
            attempts += 1
            try:
                with self.limiter.slot(url, cancel):
                    self.backend.fetch(path, name, self.timeout, cancel)
                logger.debug(f"Fetched {name} for {path} (attempt {attempts})")
                return RemoteState(
                    name=name,
                    url=url,
                    status=Freshness.FRESH,
                    attempts=attempts,
                    fetched_at=self._clock(),
                )
            except AuthRequired as e:
                logger.warning(f"Authentication required for {name} ({url}): {e.message}")
                return RemoteState(
                    name=name,
                    url=url,
                    status=Freshness.AUTH_REQUIRED,
                    attempts=attempts,
                    error=e.message,
                    error_kind=e.kind,
                )
            except FetchError as e:
                last_error = e
                if not e.transient:
                    break
                if attempts < self.retry.max_attempts:
                    delay = self.retry.delay(attempts)
                    logger.info(
                        f"Fetch of {name} ({url}) failed with {e.kind}, "
                        f"retrying in {delay:.1f}s ({attempts}/{self.retry.max_attempts})"
                    )
                    if self._wait(delay, cancel):
                        raise ScanCancelled(f"Fetch of {name} cancelled", path)

        logger.warning(f"Remote {name} ({url}) unreachable after {attempts} attempt(s)")
        return RemoteState(
            name=name,
            url=url,
            status=Freshness.UNREACHABLE,
            attempts=attempts,
            error=last_error.message if last_error else None,
            error_kind=last_error.kind if last_error else None,
        )
