"""Scan orchestrator: drive extraction, fetching, storage and reconciliation."""

import os
import threading
import logging
import multiprocessing
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, as_completed, wait
from typing import Iterable, List, Optional

from .core.errors import ExtractionError, ScanCancelled, StaleWrite, StoreUnavailable
from .core.types import Freshness, RepoOutcome, RepositoryIdentity, ScanReport, Snapshot, Status
from .extractor import TopologyExtractor
from .fetcher import RemoteFetcher
from .reconciler import Reconciler
from .store import SnapshotStore
from .utils.progress import ProgressTracker

logger = logging.getLogger('gitatlas')


class ScanOrchestrator:
    """Run one scan cycle over a set of candidate repository paths."""

    def __init__(
        self,
        extractor: TopologyExtractor,
        fetcher: Optional[RemoteFetcher],
        store: SnapshotStore,
        reconciler: Reconciler,
        max_workers: Optional[int] = None,
        sequential: bool = False,
        fetch: bool = True,
        show_progress: bool = False
    ):
        """Initialize the orchestrator.

        Args:
            extractor: Topology extractor for the local machine
            fetcher: Remote fetcher (None disables fetching)
            store: Snapshot store
            reconciler: Reconciler run once the scan completes
            max_workers: Maximum number of parallel workers (None = CPU count)
            sequential: Force sequential processing
            fetch: Refresh remotes before the final extraction
            show_progress: Show a progress bar instead of per-repository lines
        """
        self.extractor = extractor
        self.fetcher = fetcher
        self.store = store
        self.reconciler = reconciler
        self.sequential = sequential
        self.fetch = fetch and fetcher is not None
        self.show_progress = show_progress

        if max_workers is None:
            self.max_workers = multiprocessing.cpu_count()
        else:
            self.max_workers = max_workers

    def scan(
        self,
        paths: Iterable[str],
        incremental: bool = False,
        cancel: Optional[threading.Event] = None
    ) -> ScanReport:
        """Scan every path, store snapshots and reconcile the result.

        Args:
            paths: Candidate repository paths (consumed lazily)
            incremental: Skip repositories whose refs did not change
            cancel: Event that cancels the scan when set

        Returns:
            ScanReport with one outcome per path plus classifications

        Raises:
            StoreUnavailable: If the store cannot be used; aborts the cycle
        """
        cancel = cancel or threading.Event()
        progress_tracker = ProgressTracker(0, "scan") if self.show_progress else None

        try:
            if self.sequential or self.max_workers <= 1:
                logger.info("Using sequential processing")
                outcomes = self._scan_sequential(paths, incremental, cancel, progress_tracker)
            else:
                logger.info(f"Using parallel processing with {self.max_workers} workers")
                outcomes = self._scan_parallel(paths, incremental, cancel, progress_tracker)
        finally:
            if self.fetcher is not None:
                self.fetcher.close()
            if progress_tracker:
                progress_tracker.finish()

        report = ScanReport(outcomes=outcomes, cancelled=cancel.is_set())
        if report.cancelled:
            logger.warning("Scan cancelled; skipping reconciliation")
            return report

        self._reconcile(report)
        return report

    def _scan_parallel(
        self,
        paths: Iterable[str],
        incremental: bool,
        cancel: threading.Event,
        progress_tracker: Optional[ProgressTracker] = None
    ) -> List[RepoOutcome]:
        outcomes = []
        # Discovery is lazy; keep at most this many paths in flight
        max_pending = self.max_workers * 2
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='gitatlas-scan') as executor:
            pending = set()
            try:
                for path in paths:
                    if cancel.is_set():
                        break
                    pending.add(executor.submit(self._process_repo, path, incremental, cancel))
                    if progress_tracker:
                        progress_tracker.add_total(1)
                    if len(pending) >= max_pending:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        self._collect(done, outcomes, progress_tracker)

                self._collect(as_completed(pending), outcomes, progress_tracker)
            except BaseException:
                # Fatal error or interrupt: stop the remaining work
                cancel.set()
                raise
        return outcomes

    def _collect(
        self,
        futures: Iterable[Future],
        outcomes: List[RepoOutcome],
        progress_tracker: Optional[ProgressTracker] = None
    ) -> None:
        for future in futures:
            outcome = future.result()
            outcomes.append(outcome)
            self._report(outcome, progress_tracker)

    def _scan_sequential(
        self,
        paths: Iterable[str],
        incremental: bool,
        cancel: threading.Event,
        progress_tracker: Optional[ProgressTracker] = None
    ) -> List[RepoOutcome]:
        outcomes = []
        for path in paths:
            if cancel.is_set():
                break
            if progress_tracker:
                progress_tracker.add_total(1)
            outcome = self._process_repo(path, incremental, cancel)
            outcomes.append(outcome)
            self._report(outcome, progress_tracker, current_repo=path)
        return outcomes

    def _process_repo(
        self,
        path: str,
        incremental: bool,
        cancel: threading.Event
    ) -> RepoOutcome:
        """Scan a single repository.

        Per-repository failures are returned as outcomes; StoreUnavailable
        propagates.
        """
        path = os.path.abspath(path)
        try:
            if cancel.is_set():
                raise ScanCancelled("Scan cancelled", path)

            snapshot = self.extractor.extract(path)
            if incremental and self._unchanged(snapshot):
                return RepoOutcome(path, Status.SKIPPED, "Unchanged since last scan", snapshot)

            if self.fetch and snapshot.remotes:
                remotes = {r.name: r.url for r in snapshot.remotes}
                states = self.fetcher.refresh(path, remotes, cancel)
                snapshot = self.extractor.extract(path, states)

            self.store.put(snapshot)
            return RepoOutcome(path, Status.SUCCESS, self._describe(snapshot), snapshot)

        except ScanCancelled as e:
            return RepoOutcome(path, Status.CANCELLED, e.message, error_kind=e.kind)
        except (ExtractionError, StaleWrite) as e:
            return RepoOutcome(path, Status.FAILED, e.message, error_kind=e.kind)
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.error(f"Unexpected error scanning {path}: {e}")
            return RepoOutcome(path, Status.FAILED, f"Unexpected error: {e}", error_kind=type(e).__name__)

    def _unchanged(self, snapshot: Snapshot) -> bool:
        previous = self.store.last_written(snapshot.machine, snapshot.repository)
        return previous is not None and previous.path == snapshot.path \
            and previous.ref_digest == snapshot.ref_digest

    def _describe(self, snapshot: Snapshot) -> str:
        message = f"{len(snapshot.heads)} heads, {len(snapshot.remote_refs)} remote refs"
        problems = [r for r in snapshot.remotes if r.status in (Freshness.UNREACHABLE, Freshness.AUTH_REQUIRED)]
        if problems:
            message += ", " + ", ".join(f"{r.name} {r.status.value}" for r in problems)
        return message

    def _reconcile(self, report: ScanReport) -> None:
        """Classify every repository touched by the scan and run the orphan pass.

        Classification covers the whole logical repository of each scanned
        clone, including peers whose root sets differ from the local one.
        """
        scanned = [o.snapshot.repository for o in report.outcomes if o.snapshot is not None]

        def touched(identity: RepositoryIdentity) -> bool:
            return any(identity.shares_root(r) for r in scanned)

        catalog = self.store.all_latest()
        for identity, snapshots in catalog.items():
            if touched(identity):
                report.classifications[identity] = self.reconciler.classify_snapshots(snapshots, identity)

        orphans = self.reconciler.orphans(catalog)
        report.orphans = {r: c for r, c in orphans.items() if touched(r)}

    def _report(
        self,
        outcome: RepoOutcome,
        progress_tracker: Optional[ProgressTracker] = None,
        current_repo: Optional[str] = None
    ) -> None:
        if progress_tracker:
            progress_tracker.update(outcome, current_repo=current_repo)
        else:
            self._log_outcome(outcome)

    def _log_outcome(self, outcome: RepoOutcome) -> None:
        if outcome.success:
            logger.info(f"✓ {outcome.path}: {outcome.message}")
        elif outcome.skipped:
            logger.info(f"⊘ {outcome.path}: {outcome.message}")
        elif outcome.cancelled:
            logger.warning(f"⊘ {outcome.path}: {outcome.message}")
        else:
            logger.error(f"✗ {outcome.path}: [{outcome.error_kind}] {outcome.message}")
