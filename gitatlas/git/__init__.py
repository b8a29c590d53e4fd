"""Git access collaborator for gitatlas."""

from .base import GitBackend, RefRecord
from .cli import SubprocessGit, classify_fetch_error

__all__ = [
    'GitBackend',
    'RefRecord',
    'SubprocessGit',
    'classify_fetch_error',
]
