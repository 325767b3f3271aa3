"""Mostaql Hub — Bounded Seen Set.

Remembers which listing IDs have already been notified so a re-listed or
re-ordered project does not trigger a second alert. Memory is capped:
once the capacity is exceeded the oldest IDs are evicted first.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, Iterator

from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CAPACITY = 500


class SeenSet:
    """Insertion-ordered set of listing IDs with a fixed capacity.

    Attributes:
        capacity: Maximum number of IDs retained.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"SeenSet capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()

    def contains(self, listing_id: str) -> bool:
        """Return True if the id was previously recorded and not yet evicted."""
        return listing_id in self._ids

    def add(self, listing_id: str) -> None:
        """Record an id, evicting the oldest entries beyond capacity.

        Re-adding a known id keeps its original position.
        """
        if listing_id in self._ids:
            return
        self._ids[listing_id] = None
        evicted = 0
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)
            evicted += 1
        if evicted:
            logger.debug("SeenSet evicted %d oldest id(s) (cap=%d)", evicted, self.capacity)

    def add_many(self, listing_ids: Iterable[str]) -> None:
        for listing_id in listing_ids:
            self.add(listing_id)

    def clear(self) -> None:
        """Forget every recorded id."""
        count = len(self._ids)
        self._ids.clear()
        logger.info("SeenSet cleared (%d ids forgotten)", count)

    def snapshot(self) -> list[str]:
        """Return a copy of the ids, oldest first."""
        return list(self._ids)

    def __contains__(self, listing_id: object) -> bool:
        return listing_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __repr__(self) -> str:
        return f"SeenSet(size={len(self._ids)}, capacity={self.capacity})"
