from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from gastrak.models import Snapshot

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SnapshotPublisher:
    """Holds the one visible Snapshot and swaps it atomically on refresh.

    The lock only covers the reference swap. Readers get the Snapshot
    object itself and keep using it after a later publish replaces it.
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._snapshot: Optional[Snapshot] = None
        self._generation = 0

    @property
    def generation(self) -> int:
        """Number of snapshots published so far."""
        with self._lock.read():
            return self._generation

    def publish(self, snapshot: Snapshot) -> None:
        with self._lock.write():
            self._snapshot = snapshot
            self._generation += 1
            generation = self._generation
        logger.info(
            "Published snapshot #%d: %d current, %d history (loaded_at %s)",
            generation, len(snapshot.current), len(snapshot.history),
            snapshot.loaded_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        )

    def read(self) -> Optional[Snapshot]:
        """Return the visible Snapshot, or None before the first publish."""
        with self._lock.read():
            return self._snapshot
