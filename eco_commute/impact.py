"""Turn trip metrics into a ledger candidate (mode, carbon saved, eco points)."""

from __future__ import annotations

from typing import Final

from eco_commute.models import TRAVEL_MODES, TripCandidate, TripMetrics, round2, round_int
from eco_commute.speed import carbon_avoided_kg
from eco_commute.timeutils import now_iso

# 各出行方式每公里排放（kg CO2/km），手动选择方式时使用
MODE_FACTORS_KG_PER_KM: Final[dict[str, float]] = {
    "walk": 0.0,
    "cycle": 0.0,
    "bus": 0.089,
    "metro": 0.041,
    "bike": 0.114,
    "car": 0.21,
    "carpool": 0.105,
    "vehicle": 0.21,
}
CAR_FACTOR_KG_PER_KM: Final[float] = MODE_FACTORS_KG_PER_KM["car"]

ACTIVE_MODES: Final[frozenset[str]] = frozenset({"walk", "cycle"})
ACTIVE_POINTS_PER_KM: Final[int] = 15
OTHER_POINTS_PER_KM: Final[int] = 8


def manual_carbon_saved_kg(distance_km: float, mode: str) -> float:
    """CO2 saved versus driving, using the per-mode factor table."""

    if mode not in MODE_FACTORS_KG_PER_KM:
        raise ValueError(f"未知出行方式：{mode!r}，可选：{', '.join(TRAVEL_MODES)}")
    dist = round2(distance_km)
    return max(0.0, (CAR_FACTOR_KG_PER_KM - MODE_FACTORS_KG_PER_KM[mode]) * dist)


def eco_points(distance_km: float, mode: str) -> int:
    per_km = ACTIVE_POINTS_PER_KM if mode in ACTIVE_MODES else OTHER_POINTS_PER_KM
    return round_int(round2(distance_km) * per_km)


def build_candidate(
    metrics: TripMetrics,
    manual_mode: str | None = None,
    date: str | None = None,
) -> TripCandidate:
    """Build the trip record handed to the ledger.

    A manually selected mode wins over the inferred one and uses the factor table.
    Otherwise the inferred mode is used with the car-equivalent factor; when no mode
    could be inferred yet (trip too short) the trip is recorded as a walk.
    """

    if manual_mode is not None:
        mode = manual_mode
        carbon = manual_carbon_saved_kg(metrics.distance_km, mode)
    else:
        mode = metrics.inferred_mode or "walk"
        carbon = carbon_avoided_kg(metrics.distance_km)

    return TripCandidate(
        date=date or now_iso(),
        distance_km=round2(metrics.distance_km),
        duration_seconds=round_int(metrics.duration_seconds),
        mode=mode,
        carbon_saved_kg=round2(carbon),
        points=eco_points(metrics.distance_km, mode),
    )
