from __future__ import annotations

import csv
import logging
import math
import os
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Iterator, Optional

from gastrak.config import SQLITE_SUFFIXES
from gastrak.models import Observation, Snapshot, Station

logger = logging.getLogger(__name__)

FIELD_COUNT = 8
# timestamp, station id, name, latitude, longitude, regular, premium, diesel


class LoadError(Exception):
    """A source could not be turned into observations. Nothing was loaded."""


class SourceUnavailable(LoadError):
    """The source could not be stat'ed, opened, or queried."""


class MalformedRecord(LoadError):
    """A row failed to parse."""

    def __init__(self, source: str, row: int, reason: str) -> None:
        super().__init__(f"{source}: row {row}: {reason}")
        self.source = source
        self.row = row
        self.reason = reason


def read_csv_rows(path: str) -> Iterator[tuple[int, list[str]]]:
    """Yield (line number, fields) from a headerless CSV file."""
    try:
        f = open(path, newline="", encoding="utf-8")
    except OSError as exc:
        raise SourceUnavailable(f"failed to open data file {path}: {exc}") from exc
    with f:
        reader = csv.reader(f)
        try:
            for row in reader:
                if not row:
                    continue
                yield reader.line_num, row
        except csv.Error as exc:
            raise MalformedRecord(path, reader.line_num, str(exc)) from exc


def read_sqlite_rows(path: str) -> Iterator[tuple[int, list[str]]]:
    """Yield (row number, fields) from the `data` table of an SQLite file.

    Columns are taken positionally in the same order as the CSV layout.
    NULL columns become empty strings.
    """
    try:
        conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
    except sqlite3.Error as exc:
        raise SourceUnavailable(f"failed to open history db {path}: {exc}") from exc
    with closing(conn):
        try:
            rows = conn.execute("SELECT * FROM data ORDER BY time").fetchall()
        except sqlite3.Error as exc:
            raise SourceUnavailable(f"failed to query history db {path}: {exc}") from exc
    for n, row in enumerate(rows, start=1):
        yield n, ["" if v is None else str(v) for v in row]


def _parse_int(source: str, row: int, name: str, val: str) -> int:
    try:
        return int(val.strip())
    except ValueError:
        raise MalformedRecord(source, row, f"{name} is not an integer: {val!r}") from None


def _parse_float(source: str, row: int, name: str, val: str) -> float:
    try:
        num = float(val.strip())
    except ValueError:
        raise MalformedRecord(source, row, f"{name} is not a number: {val!r}") from None
    if not math.isfinite(num):
        raise MalformedRecord(source, row, f"{name} must be finite: {val!r}")
    return num


def _parse_price(source: str, row: int, name: str, val: str) -> Optional[Decimal]:
    """Parse an optional price. Empty and zero both mean "not sold"."""
    val = val.strip()
    if not val:
        return None
    try:
        price = Decimal(val)
    except InvalidOperation:
        raise MalformedRecord(source, row, f"{name} is not a decimal: {val!r}") from None
    if not price.is_finite() or price < 0:
        raise MalformedRecord(source, row, f"{name} must be a non-negative amount: {val!r}")
    if price == 0:
        return None
    return price


def parse_rows(source: str, rows: Iterable[tuple[int, list[str]]]) -> list[Observation]:
    """Turn numbered 8-field rows into observations, all or nothing.

    Stations are deduplicated by id: the first row for an id defines the
    Station, later rows reuse that object without comparing name or
    coordinates.
    """
    stations: dict[int, Station] = {}
    out: list[Observation] = []
    for n, fields in rows:
        if len(fields) != FIELD_COUNT:
            raise MalformedRecord(source, n, f"expected {FIELD_COUNT} fields, got {len(fields)}")

        ts = _parse_int(source, n, "timestamp", fields[0])
        station_id = _parse_int(source, n, "station id", fields[1])
        # coordinates must parse on every row even when the station is reused
        latitude = _parse_float(source, n, "latitude", fields[3])
        longitude = _parse_float(source, n, "longitude", fields[4])
        station = stations.get(station_id)
        if station is None:
            station = Station(
                id=station_id,
                name=fields[2],
                latitude=latitude,
                longitude=longitude,
            )
            stations[station_id] = station

        try:
            timestamp = datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise MalformedRecord(source, n, f"timestamp out of range: {ts}") from None

        out.append(Observation(
            timestamp=timestamp,
            station=station,
            regular_price=_parse_price(source, n, "regular price", fields[5]),
            premium_price=_parse_price(source, n, "premium price", fields[6]),
            diesel_price=_parse_price(source, n, "diesel price", fields[7]),
        ))
    logger.debug("Parsed %d observations (%d stations) from %s", len(out), len(stations), source)
    return out


def load(path: str) -> list[Observation]:
    """Load a CSV or SQLite source. Raises LoadError; never returns partial data."""
    if Path(path).suffix.lower() in SQLITE_SUFFIXES:
        if not Path(path).exists():
            raise SourceUnavailable(f"history db {path} does not exist")
        rows = read_sqlite_rows(path)
    else:
        rows = read_csv_rows(path)
    return parse_rows(path, rows)


def load_snapshot(current_path: str, history_path: Optional[str] = None) -> Snapshot:
    """Build a complete Snapshot from the configured sources."""
    try:
        mtime = os.stat(current_path).st_mtime
    except OSError as exc:
        raise SourceUnavailable(f"failed to stat current data {current_path}: {exc}") from exc

    current = load(current_path)
    history = load(history_path) if history_path else []
    logger.info(
        "Loaded %d current and %d history observations",
        len(current), len(history),
    )
    return Snapshot(
        loaded_at=datetime.fromtimestamp(int(mtime), tz=timezone.utc),
        current=tuple(current),
        history=tuple(history),
        has_history=bool(history_path),
    )
