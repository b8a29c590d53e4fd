"""Progress tracking and report printing."""

import sys
import logging
from collections import Counter, defaultdict
from typing import Dict, List, Optional

from ..core.types import ComparisonResult, MachinePair, RepoOutcome, RepositoryIdentity, ScanReport, Status

logger = logging.getLogger('gitatlas')


class ProgressTracker:
    """Progress bar for a scan whose size grows as discovery proceeds."""

    SYMBOLS = (
        (Status.SUCCESS, '✓'),
        (Status.SKIPPED, '⊘'),
        (Status.CANCELLED, '⊘'),
        (Status.FAILED, '✗'),
    )

    def __init__(self, total: int, operation_name: str):
        """Initialize progress tracker.

        Args:
            total: Number of repositories known so far
            operation_name: Name of the operation being performed
        """
        self.total = total
        self.operation_name = operation_name
        self.counts: Counter = Counter()
        self.current_repo: Optional[str] = None

    @property
    def completed(self) -> int:
        return sum(self.counts.values())

    def add_total(self, count: int = 1) -> None:
        self.total += count

    def update(self, outcome: RepoOutcome, current_repo: Optional[str] = None) -> None:
        self.counts[outcome.status] += 1
        self.current_repo = current_repo
        self.display()

    def display(self) -> None:
        """Redraw the bar on stderr; stdout carries the log."""
        done = self.completed
        fraction = done / self.total if self.total else 0.0
        filled = int(20 * fraction)
        line = f"\r[{'█' * filled}{'░' * (20 - filled)}] {fraction:.0%} ({done}/{self.total}) "
        if self.current_repo:
            line += f"Current: {self.current_repo} "
        line += ' '.join(f"{symbol}{self.counts[status]}" for status, symbol in self.SYMBOLS
                         if self.counts[status] or status is not Status.CANCELLED)
        sys.stderr.write(line)
        sys.stderr.flush()

    def finish(self) -> None:
        sys.stderr.write("\n")
        sys.stderr.flush()
        tally = ', '.join(f"{status.value}: {self.counts[status]}" for status, _ in self.SYMBOLS)
        logger.info(f"Completed {self.operation_name}: {self.completed}/{self.total} ({tally})")


def print_summary(outcomes: List[RepoOutcome], operation_name: str) -> None:
    """Print the outcome of every repository in a scan, failures grouped by kind.

    Args:
        outcomes: Per-repository outcomes
        operation_name: Name of the operation
    """
    counts = Counter(o.status for o in outcomes)
    failures: Dict[str, List[RepoOutcome]] = defaultdict(list)
    for outcome in outcomes:
        if outcome.status == Status.FAILED:
            failures[outcome.error_kind or "Error"].append(outcome)

    print("\n" + "=" * 60)
    print(f"SUMMARY: {operation_name.upper()}")
    print("=" * 60)
    print(f"Repositories: {len(outcomes)}")
    print(f"✓ Scanned: {counts[Status.SUCCESS]}")
    print(f"⊘ Unchanged: {counts[Status.SKIPPED]}")
    if counts[Status.CANCELLED]:
        print(f"⊘ Cancelled: {counts[Status.CANCELLED]}")
    print(f"✗ Failed: {counts[Status.FAILED]}")

    for kind in sorted(failures):
        print(f"\n{kind}:")
        for outcome in sorted(failures[kind], key=lambda o: o.path):
            print(f"  - {outcome.path}: {outcome.message}")

    print("=" * 60)


def _pair_label(result: ComparisonResult) -> str:
    return " vs ".join(m.label for m in result.machines)


def print_classifications(
    classifications: Dict[RepositoryIdentity, Dict[MachinePair, ComparisonResult]],
    orphans: Optional[Dict[RepositoryIdentity, ComparisonResult]] = None
) -> None:
    """Print pairwise classifications grouped by kind.

    Args:
        classifications: Per-repository pairwise results
        orphans: Orphaned repositories
    """
    orphans = orphans or {}
    grouped: Dict[str, List[ComparisonResult]] = defaultdict(list)
    for results in classifications.values():
        for result in results.values():
            grouped[result.classification.kind].append(result)
    for result in orphans.values():
        grouped[result.classification.kind].append(result)

    print("\n" + "=" * 60)
    print("CLASSIFICATION DISTRIBUTION")
    print("=" * 60)
    print(f"Repositories: {len(set(classifications) | set(orphans))}")

    if not grouped:
        print("No repository is held by more than one machine")

    for kind in sorted(grouped):
        results = grouped[kind]
        print(f"\n{kind}: {len(results)}")
        for result in sorted(results, key=lambda r: (r.repository.key, [m.key for m in r.machines])):
            paths = {h.get('path') for h in result.evidence.get('heads', {}).values()}
            path = result.evidence.get('path') or ", ".join(sorted(p for p in paths if p))
            print(f"  - {result.repository.short} [{_pair_label(result)}] "
                  f"{result.classification.describe()} {path}")

    print("=" * 60)


def print_report(report: ScanReport, operation_name: str = "scan") -> None:
    """Print the outcome summary and classifications of a scan."""
    print_summary(report.outcomes, operation_name)
    if not report.cancelled:
        print_classifications(report.classifications, report.orphans)
