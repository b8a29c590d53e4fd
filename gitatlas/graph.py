"""Commit graph views used to order commits during reconciliation.

A view answers ancestry questions over a (possibly incomplete) commit
graph. History can be missing because a clone is shallow or because only
a bounded number of commits was captured. Walks record the frontier where
they ran out of history so callers can tell "not an ancestor" from
"cannot tell".
"""

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from .core.types import Snapshot


class CommitGraphView(ABC):
    """Read-only ancestry queries over a commit graph."""

    def __init__(self):
        self._walks: Dict[str, Tuple[FrozenSet[str], FrozenSet[str]]] = {}

    @abstractmethod
    def parents(self, commit: str) -> Optional[Tuple[str, ...]]:
        """Parents of a commit, or None when the commit is unknown."""

    def is_truncated(self, commit: str) -> bool:
        """Whether the commit's parents were cut off."""
        return False

    def contains(self, commit: str) -> bool:
        return self.parents(commit) is not None

    def _walk(self, commit: str) -> Tuple[FrozenSet[str], FrozenSet[str]]:
        cached = self._walks.get(commit)
        if cached is not None:
            return cached

        seen: Set[str] = set()
        frontier: Set[str] = set()
        stack = [commit]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            parents = self.parents(current)
            if parents is None or self.is_truncated(current):
                frontier.add(current)
                continue
            stack.extend(p for p in parents if p not in seen)

        result = (frozenset(seen), frozenset(frontier))
        self._walks[commit] = result
        return result

    def walk(self, commit: str) -> Tuple[FrozenSet[str], bool]:
        """All commits reachable from ``commit`` (inclusive).

        Returns:
            Tuple of (reachable commits, whether the walk saw all history)
        """
        reachable, frontier = self._walk(commit)
        return reachable, not frontier

    def reachable(self, commit: str) -> FrozenSet[str]:
        return self._walk(commit)[0]

    def frontier(self, commit: str) -> FrozenSet[str]:
        """Commits in the history of ``commit`` whose parents are missing."""
        return self._walk(commit)[1]

    def is_ancestor(self, ancestor: str, descendant: str) -> Optional[bool]:
        """Whether ``ancestor`` is in the history of ``descendant``.

        Returns:
            True or False, or None when missing history prevents an answer
        """
        if ancestor == descendant:
            return True
        reachable, complete = self.walk(descendant)
        if ancestor in reachable:
            return True
        return False if complete else None

    def merge_bases(self, a: str, b: str) -> List[str]:
        """Nearest common ancestors of two commits, sorted."""
        common = self.reachable(a) & self.reachable(b)
        if not common:
            return []

        # Common ancestors are closed under ancestry, so every strict
        # ancestor of a common commit is reachable from some common parent
        strict: Set[str] = set()
        stack = []
        for commit in common:
            stack.extend(self.parents(commit) or ())
        while stack:
            current = stack.pop()
            if current in strict:
                continue
            strict.add(current)
            stack.extend(self.parents(current) or ())

        return sorted(common - strict)

    def gaps_below(self, bases: Sequence[str], *commits: str) -> bool:
        """Whether all missing history of ``commits`` lies under ``bases``.

        When it does, everything between the commits and their common
        ancestors is known: ancestry answers and unique-commit counts
        computed from this view are exact.
        """
        if not bases:
            return False
        covered: Set[str] = set()
        for base in bases:
            covered |= self.reachable(base)
        return all(self.frontier(commit) <= covered for commit in commits)

    def unique_count(self, commit: str, other: str) -> int:
        """Number of commits reachable from ``commit`` but not from ``other``."""
        return len(self.reachable(commit) - self.reachable(other))


class SnapshotGraph(CommitGraphView):
    """Reachable-set index built from the ancestry captured in snapshots."""

    def __init__(self, snapshots: Iterable[Snapshot]):
        super().__init__()
        self._parents: Dict[str, Tuple[str, ...]] = {}
        truncated: Set[str] = set()
        known: Set[str] = set()
        for snapshot in snapshots:
            for commit, parents in snapshot.ancestry.items():
                if commit in snapshot.truncated:
                    truncated.add(commit)
                    self._parents.setdefault(commit, parents)
                else:
                    self._parents[commit] = parents
                    known.add(commit)
        # Truncated only if no snapshot knows the real parents
        self._truncated = frozenset(truncated - known)

    def parents(self, commit: str) -> Optional[Tuple[str, ...]]:
        return self._parents.get(commit)

    def is_truncated(self, commit: str) -> bool:
        return commit in self._truncated

    def __len__(self) -> int:
        return len(self._parents)
