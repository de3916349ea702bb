import math

import pytest

from eco_commute.geo import distance_km, haversine_km, path_distance_km
from eco_commute.models import INFERRED_MODES, Coordinate
from eco_commute.speed import (
    average_speed_kmh,
    carbon_avoided_kg,
    format_elapsed,
    format_speed,
    infer_mode,
)

BERLIN = Coordinate(52.5200, 13.4050)
POTSDAM = Coordinate(52.3906, 13.0645)


def test_distance_symmetric_and_zero():
    d1 = distance_km(BERLIN, POTSDAM)
    d2 = distance_km(POTSDAM, BERLIN)
    assert d1 == pytest.approx(d2, rel=1e-12)
    assert distance_km(BERLIN, BERLIN) == 0.0


def test_distance_known_value():
    # one degree of latitude on a 6371 km sphere
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(2 * math.pi * 6371 / 360, rel=1e-9)
    assert distance_km(BERLIN, POTSDAM) == pytest.approx(27.0, abs=1.0)


def test_path_distance_short_paths():
    assert path_distance_km([]) == 0.0
    assert path_distance_km([BERLIN]) == 0.0
    assert path_distance_km([BERLIN, BERLIN]) == 0.0


def test_path_distance_sums_segments():
    mid = Coordinate(52.45, 13.2)
    total = path_distance_km([BERLIN, mid, POTSDAM])
    assert total == pytest.approx(distance_km(BERLIN, mid) + distance_km(mid, POTSDAM))


def test_average_speed_guards():
    assert average_speed_kmh(5.0, 0) == 0.0
    assert average_speed_kmh(5.0, -10) == 0.0
    assert average_speed_kmh(0.0, 600) == 0.0
    assert average_speed_kmh(-1.0, 600) == 0.0
    assert average_speed_kmh(float("nan"), 600) == 0.0
    assert average_speed_kmh(1.0, float("nan")) == 0.0
    assert average_speed_kmh(10.0, 1800) == pytest.approx(20.0)


@pytest.mark.parametrize(
    "speed, mode",
    [(0.0, "walk"), (5.9, "walk"), (6.0, "cycle"), (19.9, "cycle"), (20.0, "vehicle"), (80.0, "vehicle")],
)
def test_infer_mode_thresholds(speed, mode):
    assert infer_mode(speed) == mode
    assert mode in INFERRED_MODES


def test_infer_mode_bad_input():
    assert infer_mode(float("nan")) == "walk"
    assert infer_mode(-3.0) == "walk"


def test_carbon_avoided():
    assert carbon_avoided_kg(10) == pytest.approx(1.2)
    assert carbon_avoided_kg(0) == 0.0
    assert carbon_avoided_kg(-2) == 0.0


def test_formatting():
    assert format_speed(12.345) == "12.3 km/h"
    assert format_elapsed(0) == "00:00"
    assert format_elapsed(75) == "01:15"
    assert format_elapsed(3725) == "62:05"
