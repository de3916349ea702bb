"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
from typing import Sequence

from eco_commute.models import Coordinate

EARTH_RADIUS_KM = 6371.0  # mean Earth radius


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in kilometers between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in kilometers. NaN inputs yield 0.0.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    # 浮点误差可能让 a 略微超出 [0, 1]
    a = min(1.0, max(0.0, a))
    d = 2.0 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return d if math.isfinite(d) else 0.0


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates (symmetric, 0 for a == b)."""

    if a == b:
        return 0.0
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def path_distance_km(path: Sequence[Coordinate]) -> float:
    """Sum of distances over consecutive pairs; 0.0 for fewer than 2 points."""

    if len(path) < 2:
        return 0.0
    return sum(distance_km(path[i - 1], path[i]) for i in range(1, len(path)))
