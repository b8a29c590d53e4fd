"""Topology extraction: read a local repository into a Snapshot."""

import hashlib
import os
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .core.errors import CorruptRepository, EmptyRepository, NotARepository, PermissionDenied
from .core.types import (
    HEADS_PREFIX,
    REMOTES_PREFIX,
    Freshness,
    MachineIdentity,
    RefKind,
    RefPointer,
    RemoteState,
    RepositoryIdentity,
    Snapshot,
)
from .git.base import GitBackend, RefRecord

logger = logging.getLogger('gitatlas')

DEFAULT_HISTORY_DEPTH = 10000


def ref_digest(refs: Iterable[RefRecord]) -> str:
    """Digest of a ref listing, independent of listing order."""
    lines = sorted(f"{r.commit} {r.name}" for r in refs)
    return hashlib.sha1("\n".join(lines).encode('utf-8')).hexdigest()


def _remote_for_ref(name: str, remote_names: Iterable[str]) -> str:
    """Resolve which remote a refs/remotes/... ref belongs to.

    Remote names may contain slashes, so the longest matching name wins.
    """
    rest = name[len(REMOTES_PREFIX):]
    matches = [r for r in remote_names if rest.startswith(f"{r}/")]
    if matches:
        return max(matches, key=len)
    return rest.split("/", 1)[0]


class TopologyExtractor:
    """Build Snapshots of local repositories without network access."""

    def __init__(
        self,
        backend: GitBackend,
        machine: MachineIdentity,
        history_depth: int = DEFAULT_HISTORY_DEPTH,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize the extractor.

        Args:
            backend: Git access collaborator
            machine: Identity of the local machine
            history_depth: Maximum number of commits of ancestry captured
            clock: Source of capture timestamps (UTC)
        """
        self.backend = backend
        self.machine = machine
        self.history_depth = history_depth
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _check_path(self, path: str) -> None:
        if not os.path.exists(path):
            raise NotARepository("Path does not exist", path)
        if not os.path.isdir(path):
            raise NotARepository("Path is not a directory", path)
        if not os.access(path, os.R_OK | os.X_OK):
            raise PermissionDenied("Repository directory is not readable", path)

    def extract(
        self,
        path: str,
        remote_states: Optional[Dict[str, RemoteState]] = None
    ) -> Snapshot:
        """Capture the topology of the repository at ``path``.

        Args:
            path: Working copy, bare repository or .git directory
            remote_states: Fetch outcomes per remote name; remotes missing
                from the mapping are recorded as stale

        Returns:
            Snapshot for the local machine

        Raises:
            NotARepository: Path is not a git repository
            CorruptRepository: Refs or objects cannot be read
            PermissionDenied: Repository is not readable
            EmptyRepository: Repository has no branch heads
        """
        path = os.path.abspath(path)
        self._check_path(path)
        remote_states = remote_states or {}

        self.backend.git_dir(path)
        is_bare = self.backend.is_bare(path)
        records = self.backend.list_refs(path)
        head_records = [r for r in records if r.name.startswith(HEADS_PREFIX)]
        if not head_records:
            raise EmptyRepository("Repository has no branch heads", path)

        configured = self.backend.list_remotes(path)
        shallow = self.backend.shallow_commits(path)

        all_roots = self.backend.root_commits(path)
        # Shallow boundaries look parentless but are not real roots
        roots = [r for r in all_roots if r not in shallow] or all_roots
        if not roots:
            raise CorruptRepository("Branch heads exist but no root commit was found", path)

        ancestry = self.backend.ancestry(path, self.history_depth)
        refs = self._build_refs(records, configured, remote_states)
        remotes = tuple(
            remote_states.get(name) or RemoteState(name=name, url=url)
            for name, url in sorted(configured.items())
        )

        snapshot = Snapshot(
            machine=self.machine,
            repository=RepositoryIdentity.from_roots(roots),
            path=path,
            captured_at=self.clock(),
            refs=refs,
            remotes=remotes,
            ancestry=ancestry,
            truncated=frozenset(shallow & set(ancestry)),
            is_bare=is_bare,
            description=self.backend.description(path),
            ref_digest=ref_digest(records),
        )
        logger.debug(
            f"Extracted {path}: {len(snapshot.heads)} heads, "
            f"{len(snapshot.remote_refs)} remote refs, {len(roots)} roots"
        )
        return snapshot

    def _build_refs(
        self,
        records: List[RefRecord],
        configured: Dict[str, str],
        remote_states: Dict[str, RemoteState]
    ) -> tuple:
        heads = []
        remote_refs = []
        for record in records:
            if record.name.startswith(HEADS_PREFIX):
                heads.append(RefPointer(
                    name=record.name,
                    commit=record.commit,
                    kind=RefKind.HEAD,
                    committed_at=record.committed_at,
                ))
            elif record.name.startswith(REMOTES_PREFIX):
                remote = _remote_for_ref(record.name, configured)
                state = remote_states.get(remote)
                remote_refs.append(RefPointer(
                    name=record.name,
                    commit=record.commit,
                    kind=RefKind.REMOTE,
                    remote=remote,
                    committed_at=record.committed_at,
                    freshness=state.status if state else Freshness.STALE,
                ))
        heads.sort(key=lambda r: r.name)
        remote_refs.sort(key=lambda r: r.name)
        return tuple(heads + remote_refs)
