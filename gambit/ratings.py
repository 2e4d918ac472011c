"""Rating collaborator interface.

Sessions report finished human-vs-human games through this protocol; the
implementation (persistence and the rating formula) lives outside this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RatingDelta:
    """Rating change reported back for both seats."""

    white_rating: int
    black_rating: int
    white_change: int
    black_change: int


class RatingRecorder(Protocol):
    """Records results and answers rating lookups."""

    def record_result(self, white_id: str, black_id: str, result: str) -> RatingDelta:
        """Store a result ("1-0", "0-1" or "1/2-1/2") and return the change."""
        ...

    def lookup_rating(self, identity: str) -> int:
        ...
