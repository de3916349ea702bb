"""Speed, mode inference and avoided-carbon helpers."""

from __future__ import annotations

import math
from typing import Final

# 速度阈值（km/h）：[0, 6) 步行，[6, 20) 骑行，[20, ∞) 机动车
WALK_MAX_KMH: Final[float] = 6.0
CYCLE_MAX_KMH: Final[float] = 20.0

# 以开车为基准，每公里避免的排放（kg CO2）
CAR_EQUIVALENT_KG_PER_KM: Final[float] = 0.12


def _finite(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def average_speed_kmh(distance_km: float, duration_seconds: float) -> float:
    """Average speed in km/h.

    Returns 0.0 when duration is not positive, distance is negative, or either
    value is NaN/inf.
    """

    if not _finite(distance_km) or not _finite(duration_seconds):
        return 0.0
    if duration_seconds <= 0 or distance_km < 0:
        return 0.0
    return distance_km / (duration_seconds / 3600.0)


def infer_mode(avg_speed_kmh: float) -> str:
    """Classify a speed into walk / cycle / vehicle."""

    if not _finite(avg_speed_kmh) or avg_speed_kmh < WALK_MAX_KMH:
        return "walk"
    if avg_speed_kmh < CYCLE_MAX_KMH:
        return "cycle"
    return "vehicle"


def carbon_avoided_kg(distance_km: float) -> float:
    """CO2 avoided by not driving ``distance_km`` (car-equivalent factor)."""

    if not _finite(distance_km) or distance_km < 0:
        return 0.0
    return distance_km * CAR_EQUIVALENT_KG_PER_KM


def format_speed(speed_kmh: float) -> str:
    if not _finite(speed_kmh):
        speed_kmh = 0.0
    return f"{speed_kmh:.1f} km/h"


def format_elapsed(seconds: float) -> str:
    """Format elapsed seconds as MM:SS (minutes may exceed 59)."""

    s = int(seconds) if _finite(seconds) and seconds > 0 else 0
    return f"{s // 60:02d}:{s % 60:02d}"
