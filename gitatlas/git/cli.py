"""Git backend implemented with the git command line."""

import os
import subprocess
import threading
import time
import logging
from typing import Dict, List, Optional, Set, Tuple

from .base import GitBackend, RefRecord
from ..core.errors import (
    AuthRequired,
    CorruptRepository,
    FetchError,
    FetchTimeout,
    NotARepository,
    PermissionDenied,
    ScanCancelled,
    Unreachable,
)

logger = logging.getLogger('gitatlas')

REF_FORMAT = "%(objectname) %(refname) %(committerdate:unix)"

AUTH_PATTERNS = (
    "authentication failed",
    "permission denied (publickey",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid username or password",
    "http basic: access denied",
    "returned error: 401",
    "returned error: 403",
    "host key verification failed",
)

PERMANENT_PATTERNS = (
    "repository not found",
    "does not appear to be a git repository",
    "no such remote",
    "returned error: 404",
)


def classify_fetch_error(stderr: str, path: Optional[str] = None) -> FetchError:
    """Map git fetch stderr output to a fetch error.

    Args:
        stderr: Error output of the failed fetch
        path: Repository path for error context

    Returns:
        AuthRequired, or Unreachable flagged transient unless the remote
        is known to be gone
    """
    text = stderr.lower()
    message = stderr.strip().splitlines()[-1] if stderr.strip() else "fetch failed"
    if any(pattern in text for pattern in AUTH_PATTERNS):
        return AuthRequired(message, path)
    if any(pattern in text for pattern in PERMANENT_PATTERNS):
        return Unreachable(message, path, transient=False)
    return Unreachable(message, path, transient=True)


def _git_env() -> Dict[str, str]:
    env = dict(os.environ)
    env['LC_ALL'] = 'C'
    env['GIT_TERMINAL_PROMPT'] = '0'
    env.setdefault('GIT_SSH_COMMAND', 'ssh -o BatchMode=yes')
    return env


class SubprocessGit(GitBackend):
    """GitBackend running ``git`` in a subprocess per query."""

    def __init__(self, git: str = "git", poll_interval: float = 0.2):
        """Initialize the backend.

        Args:
            git: Git executable
            poll_interval: Seconds between cancellation checks while fetching
        """
        self.git = git
        self.poll_interval = poll_interval

    def _run(self, path: str, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run a read-only git command in ``path``.

        Raises:
            NotARepository: Missing path or not a repository
            PermissionDenied: Unreadable path or repository
            CorruptRepository: Any other git failure when ``check`` is set
        """
        try:
            result = subprocess.run(
                [self.git, *args],
                cwd=path,
                capture_output=True,
                text=True,
                env=_git_env(),
                check=False
            )
        except FileNotFoundError:
            raise NotARepository("Path does not exist", path)
        except NotADirectoryError:
            raise NotARepository("Path is not a directory", path)
        except PermissionError as e:
            raise PermissionDenied(str(e), path)

        if check and result.returncode != 0:
            stderr = result.stderr.strip()
            lowered = stderr.lower()
            logger.debug(f"git {' '.join(args)} failed in {path}: {stderr}")
            if "not a git repository" in lowered:
                raise NotARepository(stderr or "Not a git repository", path)
            if "permission denied" in lowered or "dubious ownership" in lowered:
                raise PermissionDenied(stderr, path)
            raise CorruptRepository(stderr or f"git {args[0]} failed", path)
        return result

    def git_dir(self, path: str) -> str:
        return self._run(path, ["rev-parse", "--absolute-git-dir"]).stdout.strip()

    def is_bare(self, path: str) -> bool:
        out = self._run(path, ["rev-parse", "--is-bare-repository"]).stdout.strip()
        return out == "true"

    def list_refs(self, path: str) -> List[RefRecord]:
        out = self._run(
            path, ["for-each-ref", f"--format={REF_FORMAT}", "refs/heads", "refs/remotes"]
        ).stdout
        refs = []
        for line in out.splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            commit, name = parts[0], parts[1]
            # Symbolic refs/remotes/<remote>/HEAD duplicates a real branch
            if name.startswith("refs/remotes/") and name.endswith("/HEAD"):
                continue
            committed_at = int(parts[2]) if len(parts) > 2 and parts[2].isdigit() else None
            refs.append(RefRecord(name=name, commit=commit, committed_at=committed_at))
        return refs

    def list_remotes(self, path: str) -> Dict[str, str]:
        out = self._run(path, ["remote", "-v"]).stdout
        remotes: Dict[str, str] = {}
        for line in out.splitlines():
            parts = line.split()
            if len(parts) >= 2 and (len(parts) < 3 or parts[2] == "(fetch)"):
                remotes[parts[0]] = parts[1]
        return remotes

    def root_commits(self, path: str) -> List[str]:
        result = self._run(path, ["rev-list", "--max-parents=0", "--branches", "--"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def ancestry(self, path: str, limit: int) -> Dict[str, Tuple[str, ...]]:
        result = self._run(
            path,
            ["rev-list", "--parents", f"--max-count={limit}", "--branches", "--remotes", "--"]
        )
        graph: Dict[str, Tuple[str, ...]] = {}
        for line in result.stdout.splitlines():
            parts = line.split()
            if parts:
                graph[parts[0]] = tuple(parts[1:])
        return graph

    def shallow_commits(self, path: str) -> Set[str]:
        shallow_file = self._run(path, ["rev-parse", "--git-path", "shallow"]).stdout.strip()
        if not os.path.isabs(shallow_file):
            shallow_file = os.path.join(path, shallow_file)
        try:
            with open(shallow_file, 'r') as f:
                return {line.strip() for line in f if line.strip()}
        except FileNotFoundError:
            return set()
        except PermissionError as e:
            raise PermissionDenied(str(e), path)

    def description(self, path: str) -> Optional[str]:
        desc_file = os.path.join(self.git_dir(path), "description")
        try:
            with open(desc_file, 'r') as f:
                text = f.read().strip()
        except FileNotFoundError:
            return None
        except PermissionError as e:
            raise PermissionDenied(str(e), path)
        if not text or text.startswith("Unnamed repository;"):
            return None
        return text

    def fetch(
        self,
        path: str,
        remote: str,
        timeout: float,
        cancel: Optional[threading.Event] = None
    ) -> None:
        logger.debug(f"Fetching {remote} in {path} (timeout={timeout}s)")
        try:
            proc = subprocess.Popen(
                [self.git, "fetch", "--prune", "--quiet", remote],
                cwd=path,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=_git_env()
            )
        except (FileNotFoundError, NotADirectoryError):
            raise NotARepository("Path does not exist", path)
        except PermissionError as e:
            raise PermissionDenied(str(e), path)

        deadline = time.monotonic() + timeout
        while True:
            try:
                _, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    proc.kill()
                    proc.communicate()
                    raise ScanCancelled(f"Fetch of {remote} cancelled", path)
                if time.monotonic() >= deadline:
                    proc.kill()
                    proc.communicate()
                    raise FetchTimeout(f"Fetch of {remote} timed out after {timeout}s", path)

        if proc.returncode != 0:
            raise classify_fetch_error(stderr or "", path)
