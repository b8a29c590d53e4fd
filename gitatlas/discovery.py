"""Discovery of candidate repositories on the local filesystem."""

import os
import logging
from typing import Iterable, Iterator, List, Optional, Set

logger = logging.getLogger('gitatlas')

GIT_DIR_NAME = ".git"


def is_bare_repository(path: str) -> bool:
    """Whether ``path`` looks like a bare repository (HEAD, objects/, refs/)."""
    return (
        os.path.isfile(os.path.join(path, "HEAD"))
        and os.path.isdir(os.path.join(path, "objects"))
        and os.path.isdir(os.path.join(path, "refs"))
    )


def find_git_dirs(
    roots: Iterable[str],
    follow_symlinks: bool = False,
    ignore: Optional[Iterable[str]] = None
) -> Iterator[str]:
    """Lazily walk ``roots`` yielding repository paths.

    Working copies are yielded as the directory holding ``.git``; bare
    repositories as themselves. The walk never descends into a found
    ``.git`` directory or bare repository, but does continue below a working
    copy so nested repositories are found too.

    Args:
        roots: Directories to search
        follow_symlinks: Follow symbolic links to directories
        ignore: Paths that are skipped along with everything below them

    Yields:
        Absolute repository paths, each at most once
    """
    ignored = {os.path.abspath(p) for p in (ignore or [])}
    visited: Set[str] = set()
    seen: Set[str] = set()

    for root in roots:
        frontier: List[str] = [os.path.abspath(root)]
        while frontier:
            path = frontier.pop()
            if path in ignored:
                continue

            if os.path.islink(path):
                if not follow_symlinks:
                    continue
                real = os.path.realpath(path)
            else:
                real = path

            if not os.path.isdir(real):
                continue
            # Symlink cycles and roots nested in each other
            if real in visited:
                continue
            visited.add(real)

            try:
                entries = sorted(os.scandir(path), key=lambda e: e.name, reverse=True)
            except OSError as e:
                logger.error(f"Failed to read directory {path}: {e}")
                continue

            names = {entry.name for entry in entries}
            if GIT_DIR_NAME in names or is_bare_repository(path):
                if path not in seen:
                    seen.add(path)
                    yield path
                if GIT_DIR_NAME not in names:
                    continue

            for entry in entries:
                if entry.name == GIT_DIR_NAME:
                    continue
                frontier.append(entry.path)
