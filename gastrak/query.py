from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from gastrak.models import Observation


class InvalidQuery(ValueError):
    """Request input that cannot be answered (reported as HTTP 400)."""


def grade_price(obs: Observation, grade: str) -> Optional[Decimal]:
    """Return the price for a grade name, case-insensitive.

    Unknown grades resolve to None rather than raising.
    """
    g = grade.strip().lower()
    if g == "regular":
        return obs.regular_price
    if g == "premium":
        return obs.premium_price
    if g == "diesel":
        return obs.diesel_price
    return None


@dataclass(frozen=True)
class PriceQuery:
    """Conjunctive filter; omitted fields impose no constraint."""

    name: Optional[str] = None
    grade: Optional[str] = None

    def matches(self, obs: Observation) -> bool:
        if self.name and obs.station.name.casefold() != self.name.casefold():
            return False
        if self.grade and grade_price(obs, self.grade) is None:
            return False
        return True


def filter_observations(observations: Iterable[Observation], query: PriceQuery) -> list[Observation]:
    """Return the observations that pass the query, in input order."""
    return [o for o in observations if query.matches(o)]


def project_timeseries(
    observations: Iterable[Observation], query: PriceQuery,
) -> list[tuple[int, Decimal]]:
    """Map passing observations to (unix timestamp, price) for the query's grade."""
    if not query.grade:
        raise InvalidQuery("must specify `grade` for a time series")
    points: list[tuple[int, Decimal]] = []
    for o in observations:
        if not query.matches(o):
            continue
        price = grade_price(o, query.grade)
        # matches() already guarantees the grade's price is present
        points.append((o.unix_time, price))
    return points
