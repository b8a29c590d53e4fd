"""Always compare the most recently committed head."""

from typing import Optional

from .base import HeadPolicy, most_recent
from ..core.types import RefPointer, Snapshot


class RecentHeadPolicy(HeadPolicy):
    name = "recent"
    description = "The most recently committed head"

    def select(self, snapshot: Snapshot) -> Optional[RefPointer]:
        return most_recent(snapshot.heads)
