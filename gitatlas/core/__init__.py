"""Core package for gitatlas."""

from .types import (
    Freshness,
    RefKind,
    MachineIdentity,
    RepositoryIdentity,
    RefPointer,
    RemoteState,
    Snapshot,
    Classification,
    InSync,
    Ahead,
    Behind,
    Diverged,
    Orphaned,
    Unknown,
    ComparisonResult,
    Status,
    RepoOutcome,
    ScanReport,
)

from .errors import AtlasError
from .registry import Registry
from .identity import load_machine_identity, rotate_machine_identity
from .logger import setup_logging, get_logger

__all__ = [
    # Types
    'Freshness',
    'RefKind',
    'MachineIdentity',
    'RepositoryIdentity',
    'RefPointer',
    'RemoteState',
    'Snapshot',
    'Classification',
    'InSync',
    'Ahead',
    'Behind',
    'Diverged',
    'Orphaned',
    'Unknown',
    'ComparisonResult',
    'Status',
    'RepoOutcome',
    'ScanReport',
    # Errors
    'AtlasError',
    # Registry
    'Registry',
    # Identity and logging
    'load_machine_identity',
    'rotate_machine_identity',
    'setup_logging',
    'get_logger',
]
