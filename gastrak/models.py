from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True, slots=True)
class Station:
    """A retail location selling fuel, identified by a stable integer id."""

    id: int
    name: str
    latitude: float   # degrees
    longitude: float  # degrees


@dataclass(frozen=True, slots=True)
class Observation:
    """One timestamped set of fuel prices for one station.

    Many observations from the same load share a single Station instance.
    A price of None means that grade is not sold there at that time; the
    loader never stores a zero price.
    """

    timestamp: datetime  # UTC, second resolution
    station: Station
    regular_price: Optional[Decimal] = None
    premium_price: Optional[Decimal] = None
    diesel_price: Optional[Decimal] = None

    @property
    def unix_time(self) -> int:
        return int(self.timestamp.timestamp())

    def to_api_dict(self) -> dict:
        """Serialize for the JSON API response.

          timestamp:  int     unix seconds
          id:         int
          name:       string
          latitude:   float   degrees
          longitude:  float   degrees
          regular:    float   only when sold
          premium:    float   only when sold
          diesel:     float   only when sold

        Absent prices are omitted, never sent as 0 or null.
        """
        d: dict = {
            "timestamp": self.unix_time,
            "id":        self.station.id,
            "name":      self.station.name,
            "latitude":  self.station.latitude,
            "longitude": self.station.longitude,
        }
        _prices = [
            ("regular", self.regular_price),
            ("premium", self.premium_price),
            ("diesel",  self.diesel_price),
        ]
        for key, val in _prices:
            if val is not None:
                d[key] = float(val)
        return d


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Fully loaded (current, history) pair, published as one unit."""

    loaded_at: datetime  # mtime of the current source, not refresh wall clock
    current: tuple[Observation, ...] = ()
    history: tuple[Observation, ...] = ()
    has_history: bool = False

    @property
    def station_count(self) -> int:
        return len({o.station.id for o in self.current})
