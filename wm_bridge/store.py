"""State store for the window-manager bridge.

Holds the current Snapshot. Readers take the reference without locking;
Snapshots are immutable and replaced whole. Only the bridge publishes.
"""

import logging
from typing import Optional

from .models.snapshot import EMPTY_SNAPSHOT, Snapshot

logger = logging.getLogger(__name__)


class StateStore:
    """Single-writer, multi-reader holder of the current Snapshot.

    Generations increase by one per publication. A publisher states the
    generation its data was gathered against; if another Snapshot was
    published in the meantime the candidate is stale and is dropped.
    """

    def __init__(self, initial: Optional[Snapshot] = None) -> None:
        self._current: Snapshot = initial or EMPTY_SNAPSHOT
        self._published = 0
        self._discarded = 0

    @property
    def current(self) -> Snapshot:
        """The published Snapshot (never partially updated)."""
        return self._current

    @property
    def generation(self) -> int:
        return self._current.generation

    def publish(self, candidate: Snapshot, base_generation: int) -> Optional[Snapshot]:
        """Swap in a candidate if nothing newer was published since it started.

        Args:
            candidate: Freshly parsed Snapshot
            base_generation: Store generation when the refresh began

        Returns:
            The published Snapshot stamped with its generation, or None if the
            candidate was stale and discarded
        """
        current = self._current
        if current.generation != base_generation:
            self._discarded += 1
            logger.debug(
                f"Discarding stale snapshot (started at generation {base_generation}, "
                f"current is {current.generation})"
            )
            return None

        published = candidate.with_generation(current.generation + 1)
        self._current = published
        self._published += 1
        logger.debug(
            f"Published snapshot generation {published.generation} "
            f"({len(published.spaces)} spaces, {len(published.windows)} windows)"
        )
        return published

    def get_stats(self) -> dict:
        return {
            "generation": self.generation,
            "published": self._published,
            "discarded": self._discarded,
        }
