"""Core types for the reconciliation engine."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Tuple


HEADS_PREFIX = "refs/heads/"
REMOTES_PREFIX = "refs/remotes/"

# Reasons attached to Unknown / Orphaned classifications
NO_SHARED_HISTORY = "no shared history"
INSUFFICIENT_HISTORY = "insufficient history"
NO_HEADS = "no branch heads"
ORPHAN_REASON = "no reachable remote, no peer clone"


class RefKind(Enum):
    """Kind of a reference captured in a snapshot."""
    HEAD = "head"
    REMOTE = "remote"


class Freshness(Enum):
    """How current a reference (or remote) is within a snapshot."""
    LOCAL = "local"
    FRESH = "fresh"
    STALE = "stale"
    UNREACHABLE = "unreachable"
    AUTH_REQUIRED = "auth_required"


@dataclass(frozen=True)
class MachineIdentity:
    """Stable identity of a host.

    The hostname alone is not enough (renames, collisions), so a durable
    random token generated on first use is part of the identity.
    """
    hostname: str = field(compare=False)
    token: str

    @property
    def key(self) -> str:
        """Key used by the snapshot store; stable across hostname changes."""
        return self.token[:16]

    @property
    def label(self) -> str:
        return f"{self.hostname}:{self.token[:8]}"

    def to_dict(self) -> Dict[str, str]:
        return {'hostname': self.hostname, 'token': self.token}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MachineIdentity':
        return cls(hostname=data['hostname'], token=data['token'])

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class RepositoryIdentity:
    """Identity of a logical project, derived from its root commits."""
    roots: FrozenSet[str]

    @classmethod
    def from_roots(cls, roots: Iterable[str]) -> 'RepositoryIdentity':
        """Build an identity from a set of root commits.

        Raises:
            ValueError: If no root commit is given
        """
        root_set = frozenset(roots)
        if not root_set:
            raise ValueError("A repository identity needs at least one root commit")
        return cls(roots=root_set)

    @property
    def key(self) -> str:
        digest = hashlib.sha1("\n".join(sorted(self.roots)).encode('ascii'))
        return digest.hexdigest()

    @property
    def short(self) -> str:
        return self.key[:12]

    def shares_root(self, other: 'RepositoryIdentity') -> bool:
        return bool(self.roots & other.roots)

    def __str__(self) -> str:
        return self.short


@dataclass(frozen=True)
class RefPointer:
    """A named reference and the commit it resolves to."""
    name: str
    commit: str
    kind: RefKind
    remote: Optional[str] = None
    committed_at: Optional[int] = None
    freshness: Freshness = Freshness.LOCAL

    @property
    def short_name(self) -> str:
        """Name without the refs/heads/ or refs/remotes/ prefix."""
        for prefix in (HEADS_PREFIX, REMOTES_PREFIX):
            if self.name.startswith(prefix):
                return self.name[len(prefix):]
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'commit': self.commit,
            'kind': self.kind.value,
            'remote': self.remote,
            'committed_at': self.committed_at,
            'freshness': self.freshness.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RefPointer':
        return cls(
            name=data['name'],
            commit=data['commit'],
            kind=RefKind(data['kind']),
            remote=data.get('remote'),
            committed_at=data.get('committed_at'),
            freshness=Freshness(data.get('freshness', Freshness.LOCAL.value)),
        )


@dataclass(frozen=True)
class RemoteState:
    """A configured remote and the outcome of refreshing it."""
    name: str
    url: str
    status: Freshness = Freshness.STALE
    attempts: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    fetched_at: Optional[datetime] = None

    @property
    def unreachable(self) -> bool:
        return self.status == Freshness.UNREACHABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'url': self.url,
            'status': self.status.value,
            'attempts': self.attempts,
            'error': self.error,
            'error_kind': self.error_kind,
            'fetched_at': self.fetched_at.isoformat() if self.fetched_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RemoteState':
        fetched_at = data.get('fetched_at')
        return cls(
            name=data['name'],
            url=data['url'],
            status=Freshness(data.get('status', Freshness.STALE.value)),
            attempts=data.get('attempts', 0),
            error=data.get('error'),
            error_kind=data.get('error_kind'),
            fetched_at=datetime.fromisoformat(fetched_at) if fetched_at else None,
        )


@dataclass(frozen=True)
class Snapshot:
    """Immutable, timestamped capture of one repository on one machine.

    ``refs`` holds local heads first, then remote-tracking refs, each sorted
    by name. ``ancestry`` maps every captured commit to its parents;
    ``truncated`` lists commits whose parents were cut off (shallow
    boundary), so their history is unknown rather than empty.
    """
    machine: MachineIdentity
    repository: RepositoryIdentity
    path: str
    captured_at: datetime
    refs: Tuple[RefPointer, ...] = ()
    remotes: Tuple[RemoteState, ...] = ()
    ancestry: Dict[str, Tuple[str, ...]] = field(default_factory=dict, compare=False)
    truncated: FrozenSet[str] = frozenset()
    is_bare: bool = False
    description: Optional[str] = None
    ref_digest: str = ""

    @property
    def roots(self) -> FrozenSet[str]:
        return self.repository.roots

    @property
    def heads(self) -> List[RefPointer]:
        return [r for r in self.refs if r.kind == RefKind.HEAD]

    @property
    def remote_refs(self) -> List[RefPointer]:
        return [r for r in self.refs if r.kind == RefKind.REMOTE]

    def remote(self, name: str) -> Optional[RemoteState]:
        for remote in self.remotes:
            if remote.name == name:
                return remote
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'machine': self.machine.to_dict(),
            'roots': sorted(self.repository.roots),
            'path': self.path,
            'captured_at': self.captured_at.isoformat(),
            'refs': [r.to_dict() for r in self.refs],
            'remotes': [r.to_dict() for r in self.remotes],
            'ancestry': {c: list(p) for c, p in sorted(self.ancestry.items())},
            'truncated': sorted(self.truncated),
            'is_bare': self.is_bare,
            'description': self.description,
            'ref_digest': self.ref_digest,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        return cls(
            machine=MachineIdentity.from_dict(data['machine']),
            repository=RepositoryIdentity.from_roots(data['roots']),
            path=data['path'],
            captured_at=datetime.fromisoformat(data['captured_at']),
            refs=tuple(RefPointer.from_dict(r) for r in data.get('refs', [])),
            remotes=tuple(RemoteState.from_dict(r) for r in data.get('remotes', [])),
            ancestry={c: tuple(p) for c, p in data.get('ancestry', {}).items()},
            truncated=frozenset(data.get('truncated', [])),
            is_bare=data.get('is_bare', False),
            description=data.get('description'),
            ref_digest=data.get('ref_digest', ""),
        )


# Classification sum type

@dataclass(frozen=True)
class Classification:
    """Relationship between two (or, for orphans, one) copies of a repository."""
    kind: ClassVar[str] = "Classification"

    def describe(self) -> str:
        return self.kind


@dataclass(frozen=True)
class InSync(Classification):
    kind: ClassVar[str] = "InSync"


@dataclass(frozen=True)
class Ahead(Classification):
    machine: MachineIdentity
    kind: ClassVar[str] = "Ahead"

    def describe(self) -> str:
        return f"Ahead({self.machine.key})"


@dataclass(frozen=True)
class Behind(Classification):
    machine: MachineIdentity
    kind: ClassVar[str] = "Behind"

    def describe(self) -> str:
        return f"Behind({self.machine.key})"


@dataclass(frozen=True)
class Diverged(Classification):
    common_ancestor: Optional[str]
    kind: ClassVar[str] = "Diverged"

    def describe(self) -> str:
        base = self.common_ancestor[:12] if self.common_ancestor else "none"
        return f"Diverged(common-ancestor={base})"


@dataclass(frozen=True)
class Orphaned(Classification):
    reason: str
    kind: ClassVar[str] = "Orphaned"

    def describe(self) -> str:
        return f"Orphaned({self.reason})"


@dataclass(frozen=True)
class Unknown(Classification):
    reason: str
    kind: ClassVar[str] = "Unknown"

    def describe(self) -> str:
        return f"Unknown({self.reason})"


@dataclass(frozen=True)
class ComparisonResult:
    """Derived comparison of a repository across a pair or group of machines."""
    repository: RepositoryIdentity
    machines: Tuple[MachineIdentity, ...]
    classification: Classification
    evidence: Dict[str, Any] = field(default_factory=dict, compare=True, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repository': self.repository.key,
            'machines': [m.key for m in self.machines],
            'classification': self.classification.kind,
            'description': self.classification.describe(),
            'evidence': self.evidence,
        }


# Scan outcomes

class Status(Enum):
    """Status of one repository within a scan cycle."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RepoOutcome:
    """Result of scanning a single repository path."""
    path: str
    status: Status
    message: str
    snapshot: Optional[Snapshot] = None
    error_kind: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == Status.SUCCESS

    @property
    def skipped(self) -> bool:
        return self.status == Status.SKIPPED

    @property
    def failed(self) -> bool:
        return self.status == Status.FAILED

    @property
    def cancelled(self) -> bool:
        return self.status == Status.CANCELLED


MachinePair = Tuple[MachineIdentity, MachineIdentity]


@dataclass
class ScanReport:
    """Everything a scan cycle produced, for the reporting layer."""
    outcomes: List[RepoOutcome] = field(default_factory=list)
    classifications: Dict[RepositoryIdentity, Dict[MachinePair, ComparisonResult]] = field(default_factory=dict)
    orphans: Dict[RepositoryIdentity, ComparisonResult] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def failed(self) -> List[RepoOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def has_failures(self) -> bool:
        return any(o.failed for o in self.outcomes)
