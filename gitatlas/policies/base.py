"""Base class for primary head selection policies."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.types import RefPointer, Snapshot


def most_recent(heads: List[RefPointer]) -> Optional[RefPointer]:
    """Most recently committed head; ties broken by branch name."""
    if not heads:
        return None
    return sorted(heads, key=lambda r: (-(r.committed_at or 0), r.name))[0]


class HeadPolicy(ABC):
    """Selects the branch head that represents a snapshot in comparisons.

    Each machine's primary head is chosen independently, so two machines
    may be compared on differently named branches when their checkouts
    differ.
    """

    name: str = "base"
    description: str = "Base head policy"

    @abstractmethod
    def select(self, snapshot: Snapshot) -> Optional[RefPointer]:
        """Pick the primary head of a snapshot, or None if it has no heads."""
