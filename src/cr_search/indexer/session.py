"""Explicit indexing session: the bulk buffer and its dimension registry."""

from __future__ import annotations

from dataclasses import dataclass, field

from cr_search.indexer.bulk_request_part import BulkRequestPart
from cr_search.services.dimensions_service import DimensionsService


@dataclass
class IndexingSession:
    """Mutable state of one indexing run, disposed of by ``reset``.

    One logical writer drives a session at a time; callers sharing a session
    across tasks must serialize access themselves.
    """

    dimensions: DimensionsService = field(default_factory=DimensionsService)
    parts: list[BulkRequestPart] = field(default_factory=list)
    bulk_processing: bool = False

    def append(self, part: BulkRequestPart) -> None:
        self.parts.append(part)

    def __len__(self) -> int:
        return len(self.parts)

    @property
    def size(self) -> int:
        """Accumulated payload size in bytes."""
        return sum(part.size for part in self.parts)

    def discard_partition(self, dimensions_hash: str) -> None:
        """Drop every part of a partition once it has been sent."""
        self.parts = [
            part
            for part in self.parts
            if not (
                isinstance(part, BulkRequestPart) and part.target_dimensions_hash == dimensions_hash
            )
        ]
        self.dimensions.forget(dimensions_hash)

    def reset(self) -> None:
        self.dimensions.reset()
        self.parts = []
