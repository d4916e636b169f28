"""
Snapshot hand-off between the simulation thread and a presentation consumer.

Capacity-1 mailbox with overwrite-latest semantics: the producer replaces
any snapshot the consumer has not taken yet and never waits on it. The
consumer blocks (with timeout) for the newest snapshot.
"""

import threading
from typing import Optional

from .data_types import WorldSnapshot


class SnapshotChannel:
    """
    Bounded overwrite-latest channel for WorldSnapshots.

    Example:
        channel = SnapshotChannel()
        channel.publish(world.export_snapshot())   # simulation thread
        snap = channel.take(timeout=0.1)           # render thread
    """

    def __init__(self):
        self._cv = threading.Condition()
        self._latest: Optional[WorldSnapshot] = None
        self._closed = False
        self.published = 0
        self.dropped = 0

    def publish(self, snapshot: WorldSnapshot):
        """Store snapshot, replacing any untaken one (never blocks on the consumer)"""
        with self._cv:
            if self._closed:
                return
            if self._latest is not None:
                self.dropped += 1
            self._latest = snapshot
            self.published += 1
            self._cv.notify()

    def take(self, timeout: Optional[float] = None) -> Optional[WorldSnapshot]:
        """
        Remove and return the newest snapshot.

        Args:
            timeout: Seconds to wait; None waits until a snapshot arrives or
                the channel closes

        Returns:
            Newest snapshot, or None on timeout or when closed and empty
        """
        with self._cv:
            self._cv.wait_for(lambda: self._latest is not None or self._closed, timeout)
            snapshot = self._latest
            self._latest = None
            return snapshot

    def close(self):
        """Stop accepting snapshots and wake any waiting consumer"""
        with self._cv:
            self._closed = True
            self._cv.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed
