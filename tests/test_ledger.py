import json
import random
import threading

import pytest

from eco_commute.ledger import LedgerWriteError, TripLedger, compute_totals, new_trip_id
from eco_commute.models import STATS_KEY, TRIPS_KEY, AggregateStats, TripCandidate
from eco_commute.store import MemoryStore, StoreError


def _candidate(distance_km, mode, carbon, points, duration=600, date="2025-01-06T08:00:00.000+00:00"):
    return TripCandidate(
        date=date,
        distance_km=distance_km,
        duration_seconds=duration,
        mode=mode,
        carbon_saved_kg=carbon,
        points=points,
    )


def _three_trip_ledger() -> tuple[TripLedger, MemoryStore]:
    store = MemoryStore()
    ledger = TripLedger(store)
    ledger.save_trip(_candidate(2.0, "walk", 0.24, 30))
    ledger.save_trip(_candidate(5.0, "car", 0.0, 40))
    ledger.save_trip(_candidate(1.0, "cycle", 0.12, 15))
    return ledger, store


class FlakyStore(MemoryStore):
    """Fails writes to one key."""

    def __init__(self, fail_key: str) -> None:
        super().__init__()
        self.fail_key = fail_key
        self.failing = False

    def set(self, key: str, value: bytes) -> None:
        if self.failing and key == self.fail_key:
            raise StoreError("disk full")
        super().set(key, value)


def test_empty_ledger_defaults():
    ledger = TripLedger(MemoryStore())
    assert ledger.get_aggregate_stats() == AggregateStats()
    assert ledger.get_trips() == []
    assert ledger.trips_grouped_by_mode() == {}
    assert ledger.trip_count() == 0
    assert ledger.goal_progress() == 0.0


def test_three_trip_scenario():
    ledger, _ = _three_trip_ledger()
    stats = ledger.get_aggregate_stats()
    assert stats.trip_count == 3
    assert stats.total_distance_km == 8.00
    assert stats.total_carbon_kg == pytest.approx(0.36)
    assert stats.total_points == 85
    assert stats.last_updated is not None

    trips = ledger.get_trips()
    assert [t.mode for t in trips] == ["cycle", "car", "walk"]
    assert ledger.get_trips(limit=2)[0].mode == "cycle"
    assert len(ledger.get_trips(limit=2)) == 2
    assert ledger.get_trips(limit=0) == []
    assert ledger.trips_grouped_by_mode() == {"cycle": 1, "car": 1, "walk": 1}
    assert ledger.goal_progress(50.0) == pytest.approx(16.0)
    assert ledger.goal_progress(4.0) == 100.0
    assert ledger.verify_integrity() is True


def test_save_trip_rounds_and_assigns_id():
    ledger = TripLedger(MemoryStore())
    trip = ledger.save_trip(_candidate(1.23456, "bus", 0.123456, 9.6, duration=59.7))
    assert trip.id.startswith("trip_")
    assert trip.distance_km == 1.23
    assert trip.carbon_saved_kg == 0.12
    assert trip.points == 10
    assert trip.duration_seconds == 60
    assert ledger.get_trips() == [trip]


def test_save_trip_normalizes_bad_numbers():
    ledger = TripLedger(MemoryStore())
    trip = ledger.save_trip(_candidate(float("nan"), "walk", -1.0, -5))
    assert trip.distance_km == 0.0
    assert trip.carbon_saved_kg == 0.0
    assert trip.points == 0


def test_save_trip_unknown_mode():
    ledger = TripLedger(MemoryStore())
    with pytest.raises(ValueError):
        ledger.save_trip(_candidate(1.0, "teleport", 0.0, 1))
    assert ledger.get_trips() == []


def test_trip_ids_unique():
    ids = iter(["dup", "dup", "other"])
    ledger = TripLedger(MemoryStore(), id_factory=lambda: next(ids))
    first = ledger.save_trip(_candidate(1.0, "walk", 0.12, 15))
    second = ledger.save_trip(_candidate(1.0, "walk", 0.12, 15))
    assert first.id == "dup"
    assert second.id == "other"
    assert new_trip_id() != new_trip_id()


def test_aggregate_consistent_after_many_saves():
    rng = random.Random(7)
    ledger = TripLedger(MemoryStore())
    modes = ["walk", "cycle", "bus", "metro", "bike", "car", "carpool", "vehicle"]
    for _ in range(200):
        ledger.save_trip(
            _candidate(
                rng.uniform(0, 30),
                rng.choice(modes),
                rng.uniform(0, 4),
                rng.randint(0, 400),
                duration=rng.randint(0, 7200),
            )
        )
    trips = ledger.get_trips()
    stats = ledger.get_aggregate_stats()
    assert stats.trip_count == 200
    assert abs(stats.total_distance_km - sum(t.distance_km for t in trips)) <= 0.01
    assert abs(stats.total_carbon_kg - sum(t.carbon_saved_kg for t in trips)) <= 0.01
    assert stats.total_points == sum(t.points for t in trips)


def test_verify_integrity_repairs_corrupt_points():
    ledger, store = _three_trip_ledger()
    stats = json.loads(store.get(STATS_KEY))
    stats["totalPoints"] = 999
    store.set(STATS_KEY, json.dumps(stats).encode("utf-8"))

    assert ledger.verify_integrity() is False
    assert ledger.get_aggregate_stats().total_points == 85
    assert ledger.verify_integrity() is True


def test_verify_integrity_repairs_missing_stats():
    ledger, store = _three_trip_ledger()
    store.remove(STATS_KEY)
    assert ledger.get_aggregate_stats() == AggregateStats()
    assert ledger.verify_integrity() is False
    assert ledger.get_aggregate_stats().total_distance_km == 8.0
    assert ledger.verify_integrity() is True


def test_verify_integrity_tolerates_small_float_noise():
    ledger, store = _three_trip_ledger()
    stats = json.loads(store.get(STATS_KEY))
    stats["totalDistanceKm"] = 8.004
    store.set(STATS_KEY, json.dumps(stats).encode("utf-8"))
    assert ledger.verify_integrity() is True


@pytest.mark.parametrize(
    "blob",
    [
        b"{not json",
        b"\xff\xfe",
        b"[]",
        b'{"totalDistanceKm": "8", "totalCarbonKg": 0, "totalPoints": 0, "tripCount": 0}',
        b'{"totalDistanceKm": 1, "totalCarbonKg": 0, "totalPoints": true, "tripCount": 0}',
    ],
)
def test_corrupt_stats_read_as_defaults(blob):
    store = MemoryStore({STATS_KEY: blob})
    assert TripLedger(store).get_aggregate_stats() == AggregateStats()


@pytest.mark.parametrize("blob", [b"garbage", b'{"a": 1}', b"null", b'"trips"'])
def test_corrupt_trips_read_as_empty(blob):
    store = MemoryStore({TRIPS_KEY: blob})
    assert TripLedger(store).get_trips() == []


def test_malformed_trip_entries_skipped():
    ledger, store = _three_trip_ledger()
    raw = json.loads(store.get(TRIPS_KEY))
    raw.insert(1, {"id": "broken", "mode": "walk"})
    store.set(TRIPS_KEY, json.dumps(raw).encode("utf-8"))
    assert [t.mode for t in ledger.get_trips()] == ["cycle", "car", "walk"]


def test_unparsed_entries_survive_save():
    ledger, store = _three_trip_ledger()
    raw = json.loads(store.get(TRIPS_KEY))
    future = {
        "id": "trip_future",
        "date": "2025-01-07T08:00:00.000Z",
        "distanceKm": 3.0,
        "durationSeconds": 900,
        "mode": "scooter",
        "carbonSavedKg": 0.3,
        "points": 20,
    }
    raw.insert(1, future)
    store.set(TRIPS_KEY, json.dumps(raw).encode("utf-8"))

    ledger.save_trip(_candidate(1.0, "walk", 0.12, 15))

    stored = json.loads(store.get(TRIPS_KEY))
    assert future in stored
    assert len(stored) == 5
    assert ledger.trip_count() == 4
    stats = ledger.get_aggregate_stats()
    assert stats.trip_count == 4
    assert stats.total_distance_km == 9.0
    assert ledger.verify_integrity() is True


def test_save_trip_avoids_ids_of_unparsed_entries():
    store = MemoryStore({TRIPS_KEY: json.dumps([{"id": "taken", "mode": "scooter"}]).encode("utf-8")})
    ids = iter(["taken", "fresh"])
    ledger = TripLedger(store, id_factory=lambda: next(ids))
    assert ledger.save_trip(_candidate(1.0, "walk", 0.12, 15)).id == "fresh"


@pytest.mark.parametrize("date", [None, "", "garbage", 1736150400000])
def test_save_trip_rejects_bad_date(date):
    ledger, store = _three_trip_ledger()
    before = store.get(TRIPS_KEY)
    with pytest.raises(ValueError):
        ledger.save_trip(_candidate(1.0, "walk", 0.12, 15, date=date))
    assert store.get(TRIPS_KEY) == before
    assert ledger.trip_count() == 3


def test_concurrent_saves_keep_aggregate_consistent():
    ledger = TripLedger(MemoryStore())
    workers = 8
    per_worker = 10
    barrier = threading.Barrier(workers)
    errors = []

    def run():
        barrier.wait()
        try:
            for _ in range(per_worker):
                ledger.save_trip(_candidate(1.0, "cycle", 0.12, 15))
        except Exception as exc:  # 线程内的异常交给主线程断言
            errors.append(exc)

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    total = workers * per_worker
    assert ledger.trip_count() == total
    assert len({t.id for t in ledger.get_trips()}) == total
    stats = ledger.get_aggregate_stats()
    assert stats.trip_count == total
    assert stats.total_points == 15 * total
    assert stats.total_distance_km == pytest.approx(float(total))
    assert ledger.verify_integrity() is True


def test_save_failure_leaves_state_unchanged():
    store = FlakyStore(STATS_KEY)
    ledger = TripLedger(store)
    ledger.save_trip(_candidate(2.0, "walk", 0.24, 30))
    before_trips = store.get(TRIPS_KEY)
    before_stats = store.get(STATS_KEY)

    store.failing = True
    with pytest.raises(LedgerWriteError):
        ledger.save_trip(_candidate(5.0, "car", 0.0, 40))

    assert store.get(TRIPS_KEY) == before_trips
    assert store.get(STATS_KEY) == before_stats
    assert ledger.trip_count() == 1


def test_save_failure_on_first_trip_removes_partial_list():
    store = FlakyStore(STATS_KEY)
    store.failing = True
    ledger = TripLedger(store)
    with pytest.raises(LedgerWriteError):
        ledger.save_trip(_candidate(2.0, "walk", 0.24, 30))
    assert store.get(TRIPS_KEY) is None


def test_export_import_roundtrip():
    ledger, _ = _three_trip_ledger()
    snapshot = ledger.export_all()
    stats_before = ledger.get_aggregate_stats()
    trips_before = ledger.get_trips()

    other = TripLedger(MemoryStore())
    assert other.import_all(snapshot) is True
    assert other.get_aggregate_stats() == stats_before
    assert other.get_trips() == trips_before

    # importing into itself is a no-op
    assert ledger.import_all(snapshot) is True
    assert ledger.get_aggregate_stats() == stats_before
    assert ledger.get_trips() == trips_before


def test_export_shape():
    ledger, _ = _three_trip_ledger()
    data = json.loads(ledger.export_all())
    assert data["totalPoints"] == 85
    assert data["tripCount"] == 3
    assert data["trips"][0]["mode"] == "cycle"
    assert set(data["trips"][0]) == {
        "id",
        "date",
        "distanceKm",
        "durationSeconds",
        "mode",
        "carbonSavedKg",
        "points",
    }


@pytest.mark.parametrize(
    "snapshot",
    [
        "not json",
        "[]",
        '{"totalDistanceKm": 1, "totalCarbonKg": 0, "totalPoints": 0, "trips": []}',
        '{"totalDistanceKm": 1, "totalCarbonKg": 0, "totalPoints": 0, "tripCount": 0, "trips": {}}',
        '{"totalDistanceKm": "1", "totalCarbonKg": 0, "totalPoints": 0, "tripCount": 0, "trips": []}',
        '{"totalDistanceKm": 1, "totalCarbonKg": 0, "totalPoints": 0, "tripCount": 1, "trips": [{"id": "x"}]}',
    ],
)
def test_import_rejects_invalid_snapshot(snapshot):
    ledger, _ = _three_trip_ledger()
    before = ledger.export_all()
    assert ledger.import_all(snapshot) is False
    assert ledger.export_all() == before


def test_import_rejects_duplicate_ids():
    ledger, _ = _three_trip_ledger()
    snapshot = json.loads(ledger.export_all())
    snapshot["trips"].append(dict(snapshot["trips"][0]))
    snapshot["tripCount"] = len(snapshot["trips"])
    before = ledger.export_all()
    assert ledger.import_all(json.dumps(snapshot)) is False
    assert ledger.export_all() == before


def test_import_legacy_backup():
    legacy = {
        "totalDistance": 3.5,
        "totalCO2": 0.42,
        "totalPoints": 53,
        "trips": [
            {
                "id": "trip_1_abc",
                "date": "2025-01-05T08:00:00.000Z",
                "duration": 1200,
                "distance": 3.5,
                "co2": 0.42,
                "points": 53,
                "mode": "cycle",
            }
        ],
    }
    ledger = TripLedger(MemoryStore())
    assert ledger.import_all(json.dumps(legacy)) is True
    stats = ledger.get_aggregate_stats()
    assert stats.trip_count == 1
    assert stats.total_points == 53
    assert ledger.get_trips()[0].duration_seconds == 1200
    assert ledger.verify_integrity() is True


def test_import_write_failure_returns_false():
    store = FlakyStore(STATS_KEY)
    ledger = TripLedger(store)
    ledger.save_trip(_candidate(2.0, "walk", 0.24, 30))
    snapshot = ledger.export_all()
    ledger.save_trip(_candidate(1.0, "cycle", 0.12, 15))
    before = ledger.export_all()

    store.failing = True
    assert ledger.import_all(snapshot) is False
    assert ledger.export_all() == before


def test_clear_all():
    ledger, _ = _three_trip_ledger()
    assert ledger.clear_all() is True
    assert ledger.get_trips() == []
    assert ledger.get_aggregate_stats() == AggregateStats()
    assert ledger.verify_integrity() is True


def test_compute_totals():
    ledger, _ = _three_trip_ledger()
    totals = compute_totals(ledger.get_trips(), last_updated="x")
    assert totals.total_distance_km == 8.0
    assert totals.total_points == 85
    assert totals.trip_count == 3
    assert totals.last_updated == "x"
