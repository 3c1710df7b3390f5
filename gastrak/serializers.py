from __future__ import annotations

import csv
import io
from decimal import Decimal
from typing import Iterable, Optional

from gastrak.models import Observation


def _price_or_empty(val: Optional[Decimal]) -> str:
    return "" if val is None else str(val)


def _coord(val: float) -> str:
    return repr(float(val))


def observation_row(obs: Observation) -> list[str]:
    """Return the 8 CSV fields for one observation, in source order."""
    return [
        str(obs.unix_time),
        str(obs.station.id),
        obs.station.name,
        _coord(obs.station.latitude),
        _coord(obs.station.longitude),
        _price_or_empty(obs.regular_price),
        _price_or_empty(obs.premium_price),
        _price_or_empty(obs.diesel_price),
    ]


def to_csv(observations: Iterable[Observation]) -> str:
    """Encode observations as headerless CSV, the same layout the loader reads."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    for obs in observations:
        writer.writerow(observation_row(obs))
    return buf.getvalue()


def to_json_list(observations: Iterable[Observation]) -> list[dict]:
    return [o.to_api_dict() for o in observations]


def to_points(points: Iterable[tuple[int, Decimal]]) -> list[list[float]]:
    """[[timestamp, price], ...] for chart libraries."""
    return [[ts, float(price)] for ts, price in points]


def to_points_transposed(points: Iterable[tuple[int, Decimal]]) -> list[list[float]]:
    """[[timestamps...], [prices...]], the column layout uPlot-style charts take."""
    timestamps: list[float] = []
    prices: list[float] = []
    for ts, price in points:
        timestamps.append(ts)
        prices.append(float(price))
    return [timestamps, prices]
