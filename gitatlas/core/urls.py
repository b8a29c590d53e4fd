"""Parsing of git remote URLs."""

import posixpath
import re
from typing import Optional, Tuple

LOCAL_HOST = "local"

# scheme://[user@]host[:port]/path
_URL = re.compile(r'^([a-zA-Z][a-zA-Z0-9+.-]*)://(?:[^@/]+@)?(\[[^\]]+\]|[^:/]*)(?::\d+)?(/.*)?$')
# [user@]host:path, the scp-like syntax used by ssh remotes
_SCP_LIKE = re.compile(r'^(?:[^@/]+@)?([^:/]+):(?!//)(.*)$')


def split_url(url: str) -> Tuple[str, str]:
    """Split a remote URL into (host, path).

    Local paths and file:// URLs have the host ``"local"``.
    """
    match = _URL.match(url)
    if match:
        scheme, host, path = match.group(1).lower(), match.group(2), match.group(3) or ""
        if scheme == "file" or not host:
            return LOCAL_HOST, path
        return host.lower(), path
    match = _SCP_LIKE.match(url)
    if match:
        return match.group(1).lower(), match.group(2)
    return LOCAL_HOST, url


def host_of(url: str) -> str:
    return split_url(url)[0]


def normalize_repo_path(path: str) -> str:
    """Path of a repository with trailing slashes and .git suffixes removed."""
    path = path.rstrip("/")
    if path.endswith("/.git"):
        path = path[:-len("/.git")]
    elif path.endswith(".git"):
        path = path[:-len(".git")]
    return posixpath.normpath(path) if path else path


def _short_host(host: str) -> str:
    return host.split(".", 1)[0].lower()


def points_at(url: str, hostname: str, path: str, home: Optional[str] = None) -> bool:
    """Whether a remote URL designates the repository at ``path`` on ``hostname``.

    Only URLs naming a host can point at another machine. Paths relative to
    the login directory (``host:repo`` or ``~/repo``) match by suffix.
    """
    host, url_path = split_url(url)
    if host == LOCAL_HOST or _short_host(host) != _short_host(hostname):
        return False
    target = normalize_repo_path(path)
    candidate = normalize_repo_path(url_path)
    if not candidate:
        return False
    if candidate == target:
        return True
    relative = candidate[2:] if candidate.startswith("~/") else candidate
    if home and not relative.startswith("/"):
        return posixpath.join(home.rstrip("/"), relative) == target
    return not relative.startswith("/") and target.endswith("/" + relative)
