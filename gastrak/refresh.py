from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from gastrak import refresh_log
from gastrak.loader import load_snapshot
from gastrak.models import Snapshot
from gastrak.store import SnapshotPublisher

logger = logging.getLogger(__name__)


def _utc_now_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RefreshLoop:
    """Reload the sources on a fixed interval and publish each new Snapshot.

    start() performs the first load synchronously and lets its error
    propagate, so a server whose data never loaded does not come up.
    Later failures are logged and the previous Snapshot stays live.

    clock and sleep are injectable so tests can drive the loop without
    waiting in real time.
    """

    def __init__(
        self,
        publisher: SnapshotPublisher,
        current_path: str,
        history_path: Optional[str] = None,
        interval: float = 60.0,
        refresh_log_path: str = "",
        loader: Callable[[str, Optional[str]], Snapshot] = load_snapshot,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.publisher = publisher
        self.current_path = current_path
        self.history_path = history_path
        self.interval = interval
        self.refresh_log_path = refresh_log_path
        self._loader = loader
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.status: dict = {
            "last_refresh": None,
            "last_success": None,
            "status": "pending",
            "error": "",
            "current": 0,
            "history": 0,
        }

    def _build(self) -> Snapshot:
        return self._loader(self.current_path, self.history_path)

    def _record_success(self, snapshot: Snapshot) -> None:
        ts = _utc_now_str()
        self.status = {
            "last_refresh": ts,
            "last_success": ts,
            "status": "ok",
            "error": "",
            "current": len(snapshot.current),
            "history": len(snapshot.history),
        }
        refresh_log.record(self.refresh_log_path, refresh_log.RefreshEvent(
            time=ts, status="ok", current=len(snapshot.current),
            history=len(snapshot.history), error="",
        ))

    def _record_failure(self, exc: Exception) -> None:
        ts = _utc_now_str()
        self.status = {**self.status, "last_refresh": ts, "status": "error", "error": str(exc)}
        refresh_log.record(self.refresh_log_path, refresh_log.RefreshEvent(
            time=ts, status="error", current=0, history=0, error=str(exc),
        ))

    def load_initial(self) -> Snapshot:
        """Load and publish synchronously. Raises LoadError on failure."""
        try:
            snapshot = self._build()
        except Exception as exc:
            self._record_failure(exc)
            raise
        self.publisher.publish(snapshot)
        self._record_success(snapshot)
        return snapshot

    async def refresh(self) -> bool:
        """Run one periodic refresh. Returns False when the old Snapshot was kept."""
        try:
            snapshot = await asyncio.to_thread(self._build)
        except Exception as exc:
            logger.exception("Refresh failed; keeping previous snapshot")
            self._record_failure(exc)
            return False
        self.publisher.publish(snapshot)
        self._record_success(snapshot)
        return True

    async def run(self) -> None:
        """Refresh every `interval` seconds until cancelled."""
        next_run = self._clock() + self.interval
        while True:
            await self._sleep(max(0.0, next_run - self._clock()))
            await self.refresh()
            next_run = self._clock() + self.interval

    async def start(self) -> None:
        self.load_initial()
        self._task = asyncio.create_task(self.run())
        logger.info("Refresh loop started (every %.0fs)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
