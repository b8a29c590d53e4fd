"""Utilities package for gitatlas."""

from .progress import (
    ProgressTracker,
    print_summary,
    print_classifications,
    print_report,
)

__all__ = [
    'ProgressTracker',
    'print_summary',
    'print_classifications',
    'print_report',
]
