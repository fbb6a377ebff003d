"""
Hot-swap registry — the one mutable slot holding the live Snapshot.

Readers take a single reference read and never lock. The reload worker
is the only writer; ``replace`` swaps the reference under a short lock
and never copies data. A reader that already holds the old Snapshot
keeps using it until its request finishes.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import NamedTuple

from .snapshot import Snapshot

logger = logging.getLogger("passbridge.registry")


class InstalledSnapshot(NamedTuple):
    """The live Snapshot with its install metadata, read as one value."""

    snapshot: Snapshot
    generation: int
    installed_at: datetime


class SnapshotRegistry:
    """Concurrency-safe holder of the currently serving Snapshot.

    Args:
        initial: The bootstrap Snapshot; the registry is never empty.
    """

    def __init__(self, initial: Snapshot):
        self._write_lock = threading.Lock()
        self._slot = InstalledSnapshot(initial, 1, datetime.now(timezone.utc))

    def current(self) -> Snapshot:
        """Return the live Snapshot. Never blocks, never fails."""
        return self._slot.snapshot

    def installed(self) -> InstalledSnapshot:
        """Live Snapshot, generation and install time from a single read."""
        return self._slot

    def replace(self, snapshot: Snapshot) -> int:
        """Install ``snapshot`` as the live one.

        Returns:
            The generation number assigned to it.
        """
        with self._write_lock:
            generation = self._slot.generation + 1
            self._slot = InstalledSnapshot(snapshot, generation, datetime.now(timezone.utc))
        logger.info(
            "Installed snapshot generation %d (%d secrets)", generation, len(snapshot)
        )
        return generation

    @property
    def generation(self) -> int:
        return self._slot.generation

    @property
    def installed_at(self) -> datetime:
        return self._slot.installed_at
