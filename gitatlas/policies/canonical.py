"""Prefer a canonical branch name, falling back to the newest head."""

from typing import Optional, Sequence

from .base import HeadPolicy, most_recent
from ..core.types import RefPointer, Snapshot

DEFAULT_CANONICAL_NAMES = ("main", "master", "trunk")


class CanonicalHeadPolicy(HeadPolicy):
    """Use the first branch matching a canonical name."""

    name = "canonical"
    description = "First of main/master/trunk, else the most recently committed head"

    def __init__(self, names: Optional[Sequence[str]] = None):
        self.names = tuple(names or DEFAULT_CANONICAL_NAMES)

    def select(self, snapshot: Snapshot) -> Optional[RefPointer]:
        heads = snapshot.heads
        by_name = {head.short_name: head for head in heads}
        for name in self.names:
            if name in by_name:
                return by_name[name]
        return most_recent(heads)
