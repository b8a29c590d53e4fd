"""Reconciler: classify how the copies of a repository relate.

Comparison is always pairwise. No machine is authoritative, so with n
machines holding a repository there are n*(n-1)/2 results and any
"majority" view is left to the reporting layer.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .core.types import (
    INSUFFICIENT_HISTORY,
    NO_HEADS,
    NO_SHARED_HISTORY,
    ORPHAN_REASON,
    Ahead,
    Behind,
    Classification,
    ComparisonResult,
    Diverged,
    InSync,
    MachineIdentity,
    MachinePair,
    Orphaned,
    RepositoryIdentity,
    Snapshot,
    Unknown,
)
from .core.urls import points_at
from .graph import CommitGraphView, SnapshotGraph
from .policies import HeadPolicy
from .policies.canonical import CanonicalHeadPolicy
from .store import SnapshotStore

logger = logging.getLogger('gitatlas')

Catalog = Dict[RepositoryIdentity, Dict[MachineIdentity, Snapshot]]
GraphFactory = Callable[[Sequence[Snapshot]], CommitGraphView]


def _head_evidence(snapshot: Snapshot, head) -> Dict[str, Optional[str]]:
    return {
        'path': snapshot.path,
        'ref': head.name if head else None,
        'commit': head.commit if head else None,
    }


def group_of(
    catalog: Catalog,
    repository: RepositoryIdentity
) -> Optional[Tuple[RepositoryIdentity, Dict[MachineIdentity, Snapshot]]]:
    """Catalog entry of the logical repository sharing a root with ``repository``."""
    if repository in catalog:
        return repository, catalog[repository]
    for identity, snapshots in catalog.items():
        if identity.shares_root(repository):
            return identity, snapshots
    return None


class Reconciler:
    """Compute ComparisonResults from the snapshots in a store."""

    def __init__(
        self,
        store: SnapshotStore,
        policy: Optional[HeadPolicy] = None,
        graph_factory: Optional[GraphFactory] = None
    ):
        """Initialize the reconciler.

        Args:
            store: Snapshot store to read from (never written)
            policy: Primary head policy (default: canonical branch names)
            graph_factory: Builds a fresh graph view for each comparison
        """
        self.store = store
        self.policy = policy or CanonicalHeadPolicy()
        self.graph_factory = graph_factory or SnapshotGraph

    def classify(self, repository: RepositoryIdentity) -> Dict[MachinePair, ComparisonResult]:
        """Pairwise classification of every machine holding ``repository``.

        Args:
            repository: The logical repository, or the identity of any one
                of its clones

        Returns:
            Results keyed by machine pair, ordered by machine key
        """
        found = group_of(self.store.all_latest(), repository)
        if found is None:
            return {}
        identity, snapshots = found
        return self.classify_snapshots(snapshots, identity)

    def classify_snapshots(
        self,
        snapshots: Dict[MachineIdentity, Snapshot],
        repository: Optional[RepositoryIdentity] = None
    ) -> Dict[MachinePair, ComparisonResult]:
        machines = sorted(snapshots, key=lambda m: m.key)
        results: Dict[MachinePair, ComparisonResult] = {}
        for i, a in enumerate(machines):
            for b in machines[i + 1:]:
                results[(a, b)] = self.compare(snapshots[a], snapshots[b], repository)
        return results

    def compare(
        self,
        a: Snapshot,
        b: Snapshot,
        repository: Optional[RepositoryIdentity] = None
    ) -> ComparisonResult:
        """Classify snapshot ``a`` relative to snapshot ``b``.

        Ahead/Behind name the first machine: compare(a, b) yielding
        Behind(A) means compare(b, a) yields Ahead(B). The two clones may
        have different root sets; results are reported against
        ``repository``, or the union of both root sets when omitted.
        """
        machines = (a.machine, b.machine)
        if repository is None:
            repository = RepositoryIdentity.from_roots(a.roots | b.roots)

        def result(classification: Classification, **evidence) -> ComparisonResult:
            return ComparisonResult(
                repository=repository,
                machines=machines,
                classification=classification,
                evidence=evidence,
            )

        if not a.repository.shares_root(b.repository):
            return result(
                Unknown(NO_SHARED_HISTORY),
                roots={
                    a.machine.key: sorted(a.roots),
                    b.machine.key: sorted(b.roots),
                },
            )

        head_a = self.policy.select(a)
        head_b = self.policy.select(b)
        heads = {
            a.machine.key: _head_evidence(a, head_a),
            b.machine.key: _head_evidence(b, head_b),
        }
        if head_a is None or head_b is None:
            return result(Unknown(NO_HEADS), heads=heads)

        ha, hb = head_a.commit, head_b.commit
        if ha == hb:
            return result(InSync(), heads=heads)

        graph = self.graph_factory([a, b])
        a_in_b = graph.is_ancestor(ha, hb)
        if a_in_b:
            return result(
                Behind(a.machine),
                heads=heads,
                commits_behind=graph.unique_count(hb, ha),
            )

        b_in_a = graph.is_ancestor(hb, ha)
        if b_in_a:
            return result(
                Ahead(a.machine),
                heads=heads,
                commits_ahead=graph.unique_count(ha, hb),
            )

        bases = graph.merge_bases(ha, hb)
        if a_in_b is None or b_in_a is None:
            # Conclusive only if the captured windows reach past the common ancestor
            if not graph.gaps_below(bases, ha, hb):
                return result(Unknown(INSUFFICIENT_HISTORY), heads=heads)
        elif not bases:
            return result(Unknown(NO_SHARED_HISTORY), heads=heads)

        # Fork versus out-of-sync copy is not decided here; evidence only
        return result(
            Diverged(bases[0]),
            heads=heads,
            common_ancestor=bases[0],
            merge_bases=bases,
            unique_commits={
                a.machine.key: graph.unique_count(ha, hb),
                b.machine.key: graph.unique_count(hb, ha),
            },
        )

    def find_orphan(
        self,
        repository: RepositoryIdentity,
        catalog: Optional[Catalog] = None
    ) -> Optional[ComparisonResult]:
        """Check whether a repository is orphaned.

        A repository is orphaned when exactly one machine holds it, all of
        its remotes are unreachable (or it has none), and no snapshot on any
        other machine has a remote pointing at it.

        Args:
            repository: Repository to check
            catalog: Latest snapshots of the whole store (read if omitted)

        Returns:
            An Orphaned result, or None if the repository is not orphaned
        """
        catalog = catalog if catalog is not None else self.store.all_latest()
        found = group_of(catalog, repository)
        if found is None:
            return None
        repository, snapshots = found
        if len(snapshots) != 1:
            return None

        (snapshot,) = snapshots.values()
        if not all(remote.unreachable for remote in snapshot.remotes):
            return None

        peers = self._referrers(snapshot, catalog)
        if peers:
            return None

        return ComparisonResult(
            repository=repository,
            machines=(snapshot.machine,),
            classification=Orphaned(ORPHAN_REASON),
            evidence={
                'path': snapshot.path,
                'remotes': [
                    {'name': r.name, 'url': r.url, 'status': r.status.value, 'error_kind': r.error_kind}
                    for r in snapshot.remotes
                ],
            },
        )

    def _referrers(self, snapshot: Snapshot, catalog: Catalog) -> List[Snapshot]:
        """Snapshots on other machines with a remote pointing at ``snapshot``."""
        referrers = []
        for machine_snapshots in catalog.values():
            for machine, other in machine_snapshots.items():
                if machine == snapshot.machine:
                    continue
                if any(points_at(r.url, snapshot.machine.hostname, snapshot.path) for r in other.remotes):
                    referrers.append(other)
        return referrers

    def orphans(self, catalog: Optional[Catalog] = None) -> Dict[RepositoryIdentity, ComparisonResult]:
        """Run the orphan pass over every repository in the catalog."""
        catalog = catalog if catalog is not None else self.store.all_latest()
        found = {}
        for repository in catalog:
            orphan = self.find_orphan(repository, catalog)
            if orphan is not None:
                found[repository] = orphan
        if found:
            logger.info(f"Found {len(found)} orphaned repositories")
        return found
