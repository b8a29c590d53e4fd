"""Shared fixtures: an in-memory git backend and snapshot builders."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from gitatlas.core.errors import CorruptRepository, NotARepository
from gitatlas.core.types import (
    Freshness,
    MachineIdentity,
    RefKind,
    RefPointer,
    RemoteState,
    RepositoryIdentity,
    Snapshot,
)
from gitatlas.git.base import GitBackend, RefRecord

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@dataclass
class FakeRepo:
    """A repository held by FakeGit: refs plus the commit graph."""
    commits: Dict[str, Tuple[str, ...]]
    refs: Dict[str, str]
    remotes: Dict[str, str] = field(default_factory=dict)
    shallow: Set[str] = field(default_factory=set)
    bare: bool = False
    description: Optional[str] = None
    corrupt: bool = False
    # Per remote: outcomes of successive fetches (exception, callable or None)
    fetch_results: Dict[str, List] = field(default_factory=dict)

    def parents_of(self, commit: str) -> Tuple[str, ...]:
        if commit in self.shallow:
            return ()
        return self.commits[commit]


class FakeGit(GitBackend):
    """GitBackend over in-memory repositories keyed by path."""

    def __init__(self):
        self.repos: Dict[str, FakeRepo] = {}
        self.fetch_calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def add(self, path: str, repo: FakeRepo) -> FakeRepo:
        self.repos[str(path)] = repo
        return repo

    def _repo(self, path: str) -> FakeRepo:
        repo = self.repos.get(path)
        if repo is None:
            raise NotARepository("not a git repository", path)
        if repo.corrupt:
            raise CorruptRepository("bad object HEAD", path)
        return repo

    def git_dir(self, path):
        repo = self._repo(path)
        return path if repo.bare else f"{path}/.git"

    def is_bare(self, path):
        return self._repo(path).bare

    def list_refs(self, path):
        repo = self._repo(path)
        return [
            RefRecord(name, commit, 1700000000 + i)
            for i, (name, commit) in enumerate(sorted(repo.refs.items()))
        ]

    def list_remotes(self, path):
        return dict(self._repo(path).remotes)

    def _reachable(self, repo: FakeRepo, names) -> List[str]:
        seen, order = set(), []
        stack = [repo.refs[n] for n in sorted(names)]
        while stack:
            commit = stack.pop()
            if commit in seen or commit not in repo.commits:
                continue
            seen.add(commit)
            order.append(commit)
            stack.extend(repo.parents_of(commit))
        return order

    def root_commits(self, path):
        repo = self._repo(path)
        heads = [n for n in repo.refs if n.startswith("refs/heads/")]
        return sorted(c for c in self._reachable(repo, heads) if not repo.parents_of(c))

    def ancestry(self, path, limit):
        repo = self._repo(path)
        commits = self._reachable(repo, repo.refs)[:limit]
        return {c: repo.parents_of(c) for c in commits}

    def shallow_commits(self, path):
        return set(self._repo(path).shallow)

    def description(self, path):
        return self._repo(path).description

    def fetch(self, path, remote, timeout, cancel=None):
        with self._lock:
            self.fetch_calls.append((path, remote))
            results = self._repo(path).fetch_results.get(remote, [])
            outcome = results.pop(0) if results else None
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            outcome(self._repo(path))


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def machine_a() -> MachineIdentity:
    return MachineIdentity(hostname="alpha", token="a" * 32)


@pytest.fixture
def machine_b() -> MachineIdentity:
    return MachineIdentity(hostname="beta", token="b" * 32)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Strictly increasing capture timestamps."""
    state = {'now': T0}
    lock = threading.Lock()

    def tick() -> datetime:
        with lock:
            state['now'] += timedelta(seconds=1)
            return state['now']

    return tick


@pytest.fixture
def make_snapshot():
    """Build a Snapshot from heads and an ancestry map."""

    def build(
        machine: MachineIdentity,
        heads: Dict[str, str],
        ancestry: Dict[str, Tuple[str, ...]],
        roots=("c0",),
        remotes: Tuple[RemoteState, ...] = (),
        remote_refs: Optional[Dict[str, str]] = None,
        path: str = "/src/project",
        captured_at: datetime = T0,
        truncated=frozenset(),
    ) -> Snapshot:
        refs = [
            RefPointer(name=f"refs/heads/{name}", commit=commit, kind=RefKind.HEAD, committed_at=i)
            for i, (name, commit) in enumerate(sorted(heads.items()))
        ]
        for name, commit in sorted((remote_refs or {}).items()):
            remote = name.split("/", 1)[0]
            state = next((r for r in remotes if r.name == remote), None)
            refs.append(RefPointer(
                name=f"refs/remotes/{name}",
                commit=commit,
                kind=RefKind.REMOTE,
                remote=remote,
                freshness=state.status if state else Freshness.STALE,
            ))
        return Snapshot(
            machine=machine,
            repository=RepositoryIdentity.from_roots(roots),
            path=path,
            captured_at=captured_at,
            refs=tuple(refs),
            remotes=remotes,
            ancestry=dict(ancestry),
            truncated=frozenset(truncated),
        )

    return build


def linear(*commits: str) -> Dict[str, Tuple[str, ...]]:
    """Ancestry of a linear history, oldest commit first."""
    ancestry = {}
    previous = None
    for commit in commits:
        ancestry[commit] = (previous,) if previous else ()
        previous = commit
    return ancestry


@pytest.fixture
def history():
    return linear
