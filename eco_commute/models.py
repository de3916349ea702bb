"""Data models for location fixes, trips and aggregate stats."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Final, Mapping

TRAVEL_MODES: Final[tuple[str, ...]] = ("walk", "cycle", "bus", "metro", "bike", "car", "carpool", "vehicle")
INFERRED_MODES: Final[tuple[str, ...]] = ("walk", "cycle", "vehicle")

# 持久化记录的固定键名（导出/导入与跨版本读取依赖它们）
TRIPS_KEY: Final[str] = "ecoCommute.trips"
STATS_KEY: Final[str] = "ecoCommute.stats"

DEFAULT_TZ: Final[str] = "UTC"


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A geographic point in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Fix:
    """A single location sample.

    Attributes:
        time_ms: Unix epoch milliseconds.
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        horizontal_accuracy_m: Horizontal accuracy in meters, -1.0 when unknown.
    """

    time_ms: int
    latitude: float
    longitude: float
    horizontal_accuracy_m: float = -1.0

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class TripMetrics:
    """Metrics of an in-progress or finished trip."""

    distance_km: float
    duration_seconds: float
    avg_speed_kmh: float
    inferred_mode: str | None
    carbon_saved_kg: float
    accepted_fixes: int = 0
    rejected_fixes: int = 0


def round2(value: float) -> float:
    """Round to 2 decimals, mapping NaN/inf/negative to 0.0."""

    if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
        return 0.0
    return round(float(value), 2)


def round_int(value: float) -> int:
    """Round to the nearest integer, mapping NaN/inf/negative to 0."""

    if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
        return 0
    return int(round(value))


def is_number(value: Any) -> bool:
    """True for int/float values, excluding bool."""

    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class TripCandidate:
    """A finished trip before the ledger assigns an id."""

    date: str
    distance_km: float
    duration_seconds: int
    mode: str
    carbon_saved_kg: float
    points: int


@dataclass(frozen=True, slots=True)
class Trip:
    """A persisted trip record (immutable once saved)."""

    id: str
    date: str
    distance_km: float
    duration_seconds: int
    mode: str
    carbon_saved_kg: float
    points: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "distanceKm": self.distance_km,
            "durationSeconds": self.duration_seconds,
            "mode": self.mode,
            "carbonSavedKg": self.carbon_saved_kg,
            "points": self.points,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Trip:
        """Parse a stored trip dict.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """

        if not isinstance(data, Mapping):
            raise ValueError(f"trip must be an object, got {type(data).__name__}")
        trip_id = data.get("id")
        date = data.get("date")
        mode = data.get("mode")
        if not isinstance(trip_id, str) or not trip_id:
            raise ValueError(f"invalid trip id: {trip_id!r}")
        if not isinstance(date, str):
            raise ValueError(f"invalid trip date: {date!r}")
        if mode not in TRAVEL_MODES:
            raise ValueError(f"invalid trip mode: {mode!r}")
        for name in ("distanceKm", "durationSeconds", "carbonSavedKg", "points"):
            if not is_number(data.get(name)):
                raise ValueError(f"invalid trip field {name}: {data.get(name)!r}")
        return cls(
            id=trip_id,
            date=date,
            distance_km=round2(data["distanceKm"]),
            duration_seconds=round_int(data["durationSeconds"]),
            mode=mode,
            carbon_saved_kg=round2(data["carbonSavedKg"]),
            points=round_int(data["points"]),
        )


@dataclass(frozen=True, slots=True)
class AggregateStats:
    """Lifetime totals derived from all saved trips."""

    total_distance_km: float = 0.0
    total_carbon_kg: float = 0.0
    total_points: int = 0
    trip_count: int = 0
    last_updated: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalDistanceKm": self.total_distance_km,
            "totalCarbonKg": self.total_carbon_kg,
            "totalPoints": self.total_points,
            "tripCount": self.trip_count,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AggregateStats:
        """Parse a stored aggregate dict.

        Raises:
            ValueError: If any of the four totals is missing or not a number.
        """

        if not isinstance(data, Mapping):
            raise ValueError(f"stats must be an object, got {type(data).__name__}")
        for name in ("totalDistanceKm", "totalCarbonKg", "totalPoints", "tripCount"):
            if not is_number(data.get(name)):
                raise ValueError(f"invalid stats field {name}: {data.get(name)!r}")
        last_updated = data.get("lastUpdated")
        return cls(
            total_distance_km=round2(data["totalDistanceKm"]),
            total_carbon_kg=round2(data["totalCarbonKg"]),
            total_points=round_int(data["totalPoints"]),
            trip_count=round_int(data["tripCount"]),
            last_updated=last_updated if isinstance(last_updated, str) else None,
        )
