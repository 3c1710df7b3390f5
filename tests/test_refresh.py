import asyncio
import json

import pytest

from gastrak.loader import MalformedRecord, SourceUnavailable
from gastrak.refresh import RefreshLoop
from gastrak.store import SnapshotPublisher

CSV_V1 = "1700000000,42,Store1,47.6,-122.3,3.99,,4.49\n"
CSV_V2 = CSV_V1 + "1700003600,43,Store2,47.5,-122.2,3.89,,\n"


class FakeClock:
    """Synthetic monotonic clock advanced only by fake sleeps."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now


def _sleeper(clock: FakeClock, ticks: int, on_tick=None):
    async def sleep(seconds: float) -> None:
        if len(clock.sleeps) >= ticks:
            raise asyncio.CancelledError
        clock.sleeps.append(seconds)
        clock.now += seconds
        if on_tick:
            on_tick(len(clock.sleeps))
    return sleep


def test_initial_load_publishes(tmp_path):
    current = tmp_path / "current.csv"
    current.write_text(CSV_V1)
    pub = SnapshotPublisher()
    loop = RefreshLoop(pub, str(current))
    snap = loop.load_initial()
    assert pub.read() is snap
    assert loop.status["status"] == "ok"
    assert loop.status["current"] == 1


def test_initial_load_failure_is_raised(tmp_path):
    pub = SnapshotPublisher()
    loop = RefreshLoop(pub, str(tmp_path / "missing.csv"))
    with pytest.raises(SourceUnavailable):
        asyncio.run(loop.start())
    assert pub.read() is None
    assert loop.status["status"] == "error"


def test_failed_refresh_keeps_previous_snapshot(tmp_path):
    current = tmp_path / "current.csv"
    current.write_text(CSV_V1)
    pub = SnapshotPublisher()
    loop = RefreshLoop(pub, str(current))
    before = loop.load_initial()

    current.unlink()
    ok = asyncio.run(loop.refresh())

    assert ok is False
    assert pub.read() is before
    assert pub.read() == before
    assert loop.status["status"] == "error"
    assert loop.status["last_success"] is not None


def test_malformed_refresh_keeps_previous_snapshot(tmp_path):
    current = tmp_path / "current.csv"
    current.write_text(CSV_V1)
    pub = SnapshotPublisher()
    loop = RefreshLoop(pub, str(current))
    before = loop.load_initial()

    current.write_text(CSV_V2 + "oops,1,A,1,2,,,\n")
    assert asyncio.run(loop.refresh()) is False
    assert pub.read() is before
    assert "row 3" in loop.status["error"]


def test_refresh_picks_up_new_data(tmp_path):
    current = tmp_path / "current.csv"
    current.write_text(CSV_V1)
    pub = SnapshotPublisher()
    loop = RefreshLoop(pub, str(current))
    loop.load_initial()

    current.write_text(CSV_V2)
    assert asyncio.run(loop.refresh()) is True
    assert len(pub.read().current) == 2
    assert pub.generation == 2


def test_run_ticks_on_interval_with_synthetic_clock(tmp_path):
    current = tmp_path / "current.csv"
    current.write_text(CSV_V1)
    pub = SnapshotPublisher()
    clock = FakeClock()

    def on_tick(n):
        # the source disappears before the second tick and returns for the third
        if n == 2:
            current.unlink()
        elif n == 3:
            current.write_text(CSV_V2)

    loop = RefreshLoop(
        pub, str(current), interval=60.0,
        clock=clock, sleep=_sleeper(clock, ticks=3, on_tick=on_tick),
    )
    loop.load_initial()

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(loop.run())

    assert clock.sleeps == [60.0, 60.0, 60.0]
    # initial + tick 1 + tick 3 succeeded; tick 2 failed
    assert pub.generation == 3
    assert len(pub.read().current) == 2


def test_loader_is_injectable():
    calls = []

    def failing_loader(current, history):
        calls.append((current, history))
        raise MalformedRecord(current, 1, "bad")

    loop = RefreshLoop(SnapshotPublisher(), "cur.csv", "hist.db", loader=failing_loader)
    assert asyncio.run(loop.refresh()) is False
    assert calls == [("cur.csv", "hist.db")]


def test_start_and_stop(tmp_path):
    current = tmp_path / "current.csv"
    current.write_text(CSV_V1)
    pub = SnapshotPublisher()
    loop = RefreshLoop(pub, str(current), interval=3600)

    async def lifecycle():
        await loop.start()
        assert loop._task is not None
        await loop.stop()
        assert loop._task is None

    asyncio.run(lifecycle())
    assert pub.generation == 1


def test_refresh_log_written(tmp_path):
    current = tmp_path / "current.csv"
    current.write_text(CSV_V1)
    log = tmp_path / "logs" / "refreshes.jsonl"
    loop = RefreshLoop(SnapshotPublisher(), str(current), refresh_log_path=str(log))
    loop.load_initial()
    current.unlink()
    asyncio.run(loop.refresh())

    lines = [json.loads(l) for l in log.read_text().splitlines()]
    assert [l["status"] for l in lines] == ["ok", "error"]
    assert lines[0]["current"] == 1
    assert lines[1]["error"]
