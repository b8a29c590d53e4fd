"""Snapshot store: durable append-only catalog of snapshots.

On-disk layout::

    <root>/<machine-key>/machine.json
    <root>/<machine-key>/<repository-key>/<captured-at-microseconds>.json

Each (machine, repository) key is an append-only directory of snapshots,
so writers on different machines never touch the same files and any
directory can be replayed for audit.

Keys use the exact root set of a clone. Reads group keys whose root sets
overlap into one logical repository. Unparseable snapshot files (a
half-synced copy, say) are logged and skipped in favour of the next
newest file of their key.
"""

import json
import os
import threading
import logging
from datetime import datetime, timezone
from itertools import islice
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .core.errors import CorruptSnapshot, StaleWrite, StoreUnavailable
from .core.types import MachineIdentity, RepositoryIdentity, Snapshot

logger = logging.getLogger('gitatlas')

MACHINE_FILE = "machine.json"
SNAPSHOT_SUFFIX = ".json"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _timestamp_key(captured_at: datetime) -> int:
    if captured_at.tzinfo is None:
        captured_at = captured_at.replace(tzinfo=timezone.utc)
    delta = captured_at - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds


def _snapshot_filename(captured_at: datetime) -> str:
    return f"{_timestamp_key(captured_at):020d}{SNAPSHOT_SUFFIX}"


class SnapshotStore:
    """Filesystem-backed store with per-key write isolation."""

    def __init__(self, root: str):
        """Open (and create if needed) a store rooted at ``root``.

        Raises:
            StoreUnavailable: If the root cannot be created or written
        """
        self.root = os.path.abspath(root)
        try:
            os.makedirs(self.root, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create store: {e}", self.root)
        if not os.access(self.root, os.W_OK):
            raise StoreUnavailable("Store root is not writable", self.root)

        self._guard = threading.Lock()
        self._key_locks: Dict[Tuple[str, str], threading.Lock] = {}

    def _key_lock(self, machine_key: str, repository_key: str) -> threading.Lock:
        key = (machine_key, repository_key)
        # The guard only protects the lock table; writes hold the key lock alone
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def _key_dir(self, machine_key: str, repository_key: str) -> str:
        return os.path.join(self.root, machine_key, repository_key)

    def _snapshot_files(self, key_dir: str) -> List[str]:
        """Snapshot filenames in a key directory, newest first."""
        try:
            names = os.listdir(key_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreUnavailable(f"Cannot list snapshots: {e}", key_dir)
        return sorted((n for n in names if n.endswith(SNAPSHOT_SUFFIX)), reverse=True)

    def _load(self, file_path: str) -> Snapshot:
        """Read one snapshot file.

        Raises:
            CorruptSnapshot: The file is truncated or not a snapshot
            StoreUnavailable: The file cannot be read
        """
        try:
            with open(file_path, 'r') as f:
                return Snapshot.from_dict(json.load(f))
        except OSError as e:
            raise StoreUnavailable(f"Cannot read snapshot: {e}", file_path)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CorruptSnapshot(f"Unreadable snapshot: {e}", file_path)

    def _load_all(self, file_paths: Iterable[str]) -> Iterator[Snapshot]:
        """Load snapshot files in order, skipping corrupt ones."""
        for file_path in file_paths:
            try:
                yield self._load(file_path)
            except CorruptSnapshot as e:
                logger.warning(f"Skipping {e.path}: {e.message}")

    def _newest(self, key_dir: str) -> Optional[Snapshot]:
        """Newest readable snapshot of a key directory."""
        files = (os.path.join(key_dir, name) for name in self._snapshot_files(key_dir))
        return next(self._load_all(files), None)

    def _read_machine(self, machine_file: str) -> Optional[dict]:
        try:
            with open(machine_file, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except ValueError as e:
            logger.warning(f"Ignoring unreadable machine file {machine_file}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _write_json(self, file_path: str, data: dict) -> None:
        tmp_path = f"{file_path}.{threading.get_ident()}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=1, sort_keys=True)
        os.replace(tmp_path, file_path)

    def put(self, snapshot: Snapshot) -> str:
        """Append a snapshot as the new latest for its key.

        Args:
            snapshot: Snapshot to persist

        Returns:
            Path of the written snapshot file

        Raises:
            StaleWrite: If the snapshot is not newer than the stored latest
            StoreUnavailable: If the store cannot be written
        """
        machine, repository = snapshot.machine, snapshot.repository
        key_dir = self._key_dir(machine.key, repository.key)
        filename = _snapshot_filename(snapshot.captured_at)

        with self._key_lock(machine.key, repository.key):
            existing = self._snapshot_files(key_dir)
            if existing and existing[0] >= filename:
                raise StaleWrite(
                    f"Snapshot captured at {snapshot.captured_at.isoformat()} is not newer "
                    f"than stored snapshot {existing[0]}",
                    snapshot.path
                )
            try:
                os.makedirs(key_dir, exist_ok=True)
                machine_file = os.path.join(self.root, machine.key, MACHINE_FILE)
                if self._read_machine(machine_file) != machine.to_dict():
                    self._write_json(machine_file, machine.to_dict())
                file_path = os.path.join(key_dir, filename)
                self._write_json(file_path, snapshot.to_dict())
            except OSError as e:
                raise StoreUnavailable(f"Cannot write snapshot: {e}", key_dir)

        logger.debug(f"Stored snapshot {machine.key}/{repository.short} at {filename}")
        return file_path

    def machines(self) -> List[MachineIdentity]:
        """All machines that have written to the store."""
        machines = []
        for machine_key in self._list_dirs(self.root):
            machine_file = os.path.join(self.root, machine_key, MACHINE_FILE)
            try:
                data = self._read_machine(machine_file)
            except OSError as e:
                raise StoreUnavailable(f"Cannot read machine file: {e}", machine_file)
            if data is None:
                continue
            try:
                machines.append(MachineIdentity.from_dict(data))
            except KeyError as e:
                logger.warning(f"Ignoring machine file {machine_file} without {e}")
        return sorted(machines, key=lambda m: m.key)

    def _list_dirs(self, path: str) -> List[str]:
        try:
            return sorted(
                entry.name for entry in os.scandir(path)
                if entry.is_dir() and not entry.name.startswith('.')
            )
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreUnavailable(f"Cannot list directory: {e}", path)

    def _key_dirs(self, machine_key: Optional[str] = None) -> Iterator[str]:
        machine_keys = [machine_key] if machine_key else self._list_dirs(self.root)
        for key in machine_keys:
            machine_dir = os.path.join(self.root, key)
            for repository_key in self._list_dirs(machine_dir):
                yield os.path.join(machine_dir, repository_key)

    def _groups(self, entries: Iterable[Snapshot]) -> List[Tuple[RepositoryIdentity, List[Snapshot]]]:
        """Group snapshots whose root sets overlap, transitively.

        Each group is one logical repository, identified by the union of
        its members' roots. Clones with extra roots (a merged unrelated
        history, an orphan branch) join the group of their peers.
        """
        groups: List[Tuple[Set[str], List[Snapshot]]] = []
        for snapshot in entries:
            roots, members = set(snapshot.roots), [snapshot]
            for group in [g for g in groups if g[0] & roots]:
                groups.remove(group)
                roots |= group[0]
                members.extend(group[1])
            groups.append((roots, members))
        return sorted(
            ((RepositoryIdentity.from_roots(roots), members) for roots, members in groups),
            key=lambda g: g[0].key
        )

    @staticmethod
    def _by_machine(members: Iterable[Snapshot]) -> Dict[MachineIdentity, Snapshot]:
        """Newest snapshot per machine among a group's members."""
        result: Dict[MachineIdentity, Snapshot] = {}
        for snapshot in sorted(members, key=lambda s: (s.captured_at, s.path)):
            result[snapshot.machine] = snapshot
        return result

    def _catalog(self) -> List[Tuple[RepositoryIdentity, List[Snapshot]]]:
        entries = (self._newest(key_dir) for key_dir in self._key_dirs())
        return self._groups(s for s in entries if s is not None)

    def repositories(self) -> List[RepositoryIdentity]:
        """All logical repositories held by any machine."""
        return [identity for identity, _ in self._catalog()]

    def find_repository(self, prefix: str) -> Optional[RepositoryIdentity]:
        """Resolve a repository by (a unique prefix of) its key.

        Raises:
            KeyError: If the prefix matches more than one repository
        """
        matches = [r for r in self.repositories() if r.key.startswith(prefix)]
        if len(matches) > 1:
            raise KeyError(f"Ambiguous repository key prefix: {prefix}")
        return matches[0] if matches else None

    def latest(self, repository: RepositoryIdentity) -> Dict[MachineIdentity, Snapshot]:
        """Most recent snapshot of a repository on every machine holding it.

        ``repository`` may be any identity sharing a root with the logical
        repository, such as the identity of a single clone.
        """
        members = [
            snapshot
            for identity, group in self._catalog() if identity.shares_root(repository)
            for snapshot in group
        ]
        return self._by_machine(members)

    def all_latest(self) -> Dict[RepositoryIdentity, Dict[MachineIdentity, Snapshot]]:
        """Latest snapshots for every logical repository in the catalog."""
        return {identity: self._by_machine(members) for identity, members in self._catalog()}

    def last_written(self, machine: MachineIdentity, repository: RepositoryIdentity) -> Optional[Snapshot]:
        """Newest snapshot stored under exactly this (machine, repository) key."""
        return self._newest(self._key_dir(machine.key, repository.key))

    def history(
        self,
        machine: MachineIdentity,
        repository: RepositoryIdentity,
        limit: Optional[int] = None
    ) -> List[Snapshot]:
        """Snapshots of a repository on one machine, newest first.

        Covers every key of the machine that belongs to the same logical
        repository, so history continues across a change of root set.
        """
        related: Set[str] = set(repository.roots)
        for identity, _ in self._catalog():
            if identity.shares_root(repository):
                related |= identity.roots

        files = []
        for key_dir in self._key_dirs(machine.key):
            newest = self._newest(key_dir)
            if newest is not None and newest.roots & related:
                files.extend((name, key_dir) for name in self._snapshot_files(key_dir))
        files.sort(reverse=True)

        snapshots = self._load_all(os.path.join(key_dir, name) for name, key_dir in files)
        if limit is None:
            return list(snapshots)
        return list(islice(snapshots, max(limit, 0)))

    def prune(self, keep: int) -> int:
        """Apply the retention policy: keep the newest ``keep`` snapshots per key.

        The latest snapshot of a key is never removed, even with ``keep`` < 1.

        Returns:
            Number of snapshot files removed
        """
        keep = max(keep, 1)
        removed = 0
        for machine_key in self._list_dirs(self.root):
            for repository_key in self._list_dirs(os.path.join(self.root, machine_key)):
                key_dir = self._key_dir(machine_key, repository_key)
                with self._key_lock(machine_key, repository_key):
                    for name in self._snapshot_files(key_dir)[keep:]:
                        try:
                            os.remove(os.path.join(key_dir, name))
                            removed += 1
                        except FileNotFoundError:
                            continue
                        except OSError as e:
                            raise StoreUnavailable(f"Cannot prune snapshot: {e}", key_dir)
        if removed:
            logger.info(f"Pruned {removed} snapshot(s), keeping {keep} per key")
        return removed

