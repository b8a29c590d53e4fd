"""Interface to the git access collaborator."""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, NamedTuple, Optional, Set, Tuple


class RefRecord(NamedTuple):
    """A reference as read from the repository."""
    name: str
    commit: str
    committed_at: Optional[int]


class GitBackend(ABC):
    """Capabilities the engine needs from git.

    Reads never touch the network; only ``fetch`` does. Implementations
    raise the errors from ``gitatlas.core.errors``.
    """

    @abstractmethod
    def git_dir(self, path: str) -> str:
        """Absolute git directory for a working copy or bare repository.

        Raises:
            NotARepository: If the path is not a git repository
            PermissionDenied: If the repository cannot be read
        """

    @abstractmethod
    def is_bare(self, path: str) -> bool:
        pass

    @abstractmethod
    def list_refs(self, path: str) -> List[RefRecord]:
        """All local branch heads and remote-tracking refs."""

    @abstractmethod
    def list_remotes(self, path: str) -> Dict[str, str]:
        """Configured remotes mapped to their fetch URLs."""

    @abstractmethod
    def root_commits(self, path: str) -> List[str]:
        """Parentless commits reachable from any local branch head."""

    @abstractmethod
    def ancestry(self, path: str, limit: int) -> Dict[str, Tuple[str, ...]]:
        """Commit -> parents for at most ``limit`` commits reachable from all refs."""

    @abstractmethod
    def shallow_commits(self, path: str) -> Set[str]:
        """Commits at a shallow-clone boundary (their parents are missing)."""

    @abstractmethod
    def description(self, path: str) -> Optional[str]:
        pass

    @abstractmethod
    def fetch(
        self,
        path: str,
        remote: str,
        timeout: float,
        cancel: Optional[threading.Event] = None
    ) -> None:
        """Fetch a single remote, updating its remote-tracking refs.

        Raises:
            Unreachable: Network or remote-side failure
            AuthRequired: Credentials missing or rejected
            FetchTimeout: The attempt exceeded ``timeout`` seconds
            ScanCancelled: ``cancel`` was set while fetching
        """
