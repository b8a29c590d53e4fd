"""MCP tool implementations for gitatlas.

Read-only queries over the snapshot store:
- atlas_repositories: List known repositories and the machines holding them
- atlas_latest: Latest snapshot of a repository per machine
- atlas_history: Snapshot history of one (machine, repository) key
- atlas_classify: Pairwise classification plus orphan check

Tools never scan or fetch; they only read what previous scans stored.
"""

from collections import Counter
from typing import Any, Dict, List, Optional

from ..config import Config
from ..core.types import MachineIdentity, RepositoryIdentity, Snapshot
from ..policies import get_policy
from ..reconciler import Reconciler
from ..store import SnapshotStore
from .logging_utils import store_query


def _open_store(config: Optional[Config] = None) -> SnapshotStore:
    config = config or Config.from_env_and_args()
    return SnapshotStore(config.store_dir)


def _resolve_repository(store: SnapshotStore, key: str) -> RepositoryIdentity:
    """Resolve a repository key prefix.

    Raises:
        KeyError: If the key is unknown or ambiguous
    """
    repository = store.find_repository(key)
    if repository is None:
        raise KeyError(f"Unknown repository: {key}")
    return repository


def _resolve_machine(store: SnapshotStore, key: str) -> MachineIdentity:
    matches = [m for m in store.machines() if m.key.startswith(key) or m.hostname == key]
    if len(matches) != 1:
        raise KeyError(f"Unknown or ambiguous machine: {key}")
    return matches[0]


def _summarize(snapshot: Snapshot) -> Dict[str, Any]:
    """Snapshot without its ancestry map, which is large and not useful to callers."""
    data = snapshot.to_dict()
    data.pop('ancestry', None)
    data['machine'] = snapshot.machine.label
    data['repository'] = snapshot.repository.key
    return data


def list_repositories(config: Optional[Config] = None) -> List[Dict[str, Any]]:
    """All repositories in the store with the machines holding them."""
    store = _open_store(config)
    with store_query("all_latest"):
        catalog = store.all_latest()
    return [
        {
            'repository': repository.key,
            'machines': sorted(m.label for m in snapshots),
            'paths': sorted({s.path for s in snapshots.values()}),
        }
        for repository, snapshots in catalog.items()
    ]


def latest_snapshots(repository: str, config: Optional[Config] = None) -> Dict[str, Any]:
    store = _open_store(config)
    identity = _resolve_repository(store, repository)
    with store_query("latest", repository=identity.short):
        latest = store.latest(identity)
    return {
        'repository': identity.key,
        'snapshots': [_summarize(latest[m]) for m in sorted(latest, key=lambda m: m.key)],
    }


def snapshot_history(
    machine: str,
    repository: str,
    limit: Optional[int] = None,
    config: Optional[Config] = None
) -> Dict[str, Any]:
    """Snapshot history of one key, newest first.

    Args:
        machine: Machine key prefix or hostname
        repository: Repository key prefix
        limit: Maximum number of snapshots returned
    """
    store = _open_store(config)
    identity = _resolve_repository(store, repository)
    machine_identity = _resolve_machine(store, machine)
    with store_query("history", repository=identity.short, machine=machine_identity.key, limit=limit):
        history = store.history(machine_identity, identity, limit)
    return {
        'repository': identity.key,
        'machine': machine_identity.label,
        'snapshots': [_summarize(s) for s in history],
    }


def classify_repository(repository: str, config: Optional[Config] = None) -> Dict[str, Any]:
    """Pairwise classification of a repository across machines."""
    config = config or Config.from_env_and_args()
    store = _open_store(config)
    identity = _resolve_repository(store, repository)
    reconciler = Reconciler(store, policy=get_policy(config.head_policy))

    with store_query("classify", repository=identity.short):
        results = reconciler.classify(identity)
        orphan = reconciler.find_orphan(identity)

    comparisons = [result.to_dict() for result in results.values()]
    if orphan is not None:
        comparisons.append(orphan.to_dict())
    return {
        'repository': identity.key,
        'comparisons': comparisons,
        'distribution': dict(Counter(c['classification'] for c in comparisons)),
    }
