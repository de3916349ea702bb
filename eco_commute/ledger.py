"""Durable trip ledger with self-consistent aggregate statistics.

Persisted layout (two JSON records in a key-value store):

    - ``ecoCommute.trips``: list of trip objects, newest first.
    - ``ecoCommute.stats``: aggregate object (totalDistanceKm, totalCarbonKg,
      totalPoints, tripCount, lastUpdated).

The aggregate is always recomputed from the full trip list rather than updated
incrementally, so repeated saves cannot drift. Reads never raise: missing, unparsable
or structurally invalid records fall back to zero-valued defaults.
"""

from __future__ import annotations

import json
import logging
import math
import secrets
import string
import threading
import time
from typing import Any, Callable, Final, Iterable

from eco_commute.models import (
    STATS_KEY,
    TRAVEL_MODES,
    TRIPS_KEY,
    AggregateStats,
    Trip,
    TripCandidate,
    round2,
    round_int,
)
from eco_commute.store import KeyValueStore
from eco_commute.timeutils import now_iso, parse_iso

logger = logging.getLogger(__name__)

FLOAT_TOLERANCE: Final[float] = 0.01
EXPORT_VERSION: Final[int] = 1
DEFAULT_GOAL_KM: Final[float] = 50.0

_ID_ALPHABET = string.digits + string.ascii_lowercase


class LedgerWriteError(RuntimeError):
    """Raised when a ledger mutation could not be persisted (state left unchanged)."""


def new_trip_id() -> str:
    """Time-based id with a random base36 suffix, e.g. ``trip_1734512345678_k3j9x0a1b``."""

    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"trip_{int(time.time() * 1000)}_{suffix}"


def compute_totals(trips: Iterable[Trip], last_updated: str | None = None) -> AggregateStats:
    """Elementwise sum over trips."""

    distance = 0.0
    carbon = 0.0
    points = 0
    count = 0
    for t in trips:
        distance += t.distance_km
        carbon += t.carbon_saved_kg
        points += t.points
        count += 1
    return AggregateStats(
        total_distance_km=round2(distance),
        total_carbon_kg=round2(carbon),
        total_points=points,
        trip_count=count,
        last_updated=last_updated,
    )


def _upgrade_legacy_snapshot(data: dict[str, Any]) -> dict[str, Any]:
    """Map the old single-record backup format onto the current snapshot shape.

    Old backups look like ``{totalDistance, totalCO2, totalPoints, trips}`` with trip
    fields ``distance``, ``co2`` and ``duration``.
    """

    if "totalDistanceKm" in data or "totalDistance" not in data:
        return data
    trips = data.get("trips")
    upgraded_trips: Any = trips
    if isinstance(trips, list):
        upgraded_trips = []
        for t in trips:
            if not isinstance(t, dict):
                upgraded_trips.append(t)
                continue
            upgraded_trips.append(
                {
                    "id": t.get("id"),
                    "date": t.get("date"),
                    "distanceKm": t.get("distance"),
                    "durationSeconds": t.get("duration"),
                    "mode": t.get("mode"),
                    "carbonSavedKg": t.get("co2"),
                    "points": t.get("points"),
                }
            )
    return {
        "totalDistanceKm": data.get("totalDistance"),
        "totalCarbonKg": data.get("totalCO2"),
        "totalPoints": data.get("totalPoints"),
        "tripCount": len(trips) if isinstance(trips, list) else None,
        "lastUpdated": data.get("lastUpdated"),
        "trips": upgraded_trips,
    }


class TripLedger:
    """Persist finished trips and keep AggregateStats equal to their sum."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], str] = now_iso,
        id_factory: Callable[[], str] = new_trip_id,
    ) -> None:
        self._store = store
        self._clock = clock
        self._id_factory = id_factory
        # 同一账本的“读-改-写”串行化，避免并发调用方交错写入
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # reads

    def _read_json(self, key: str) -> Any | None:
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("存储记录 %s 已损坏，按默认值处理：%s", key, exc)
            return None

    def _load_entries(self) -> list[tuple[Any, Trip | None]]:
        """Stored trip entries in order, each paired with its parsed Trip (None if invalid).

        Entries that do not parse (for example a mode written by a newer version) are
        kept so that writes can carry them through unchanged.
        """

        raw = self._read_json(TRIPS_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("存储记录 %s 不是列表，按空列表处理", TRIPS_KEY)
            return []
        entries: list[tuple[Any, Trip | None]] = []
        skipped = 0
        for item in raw:
            try:
                entries.append((item, Trip.from_dict(item)))
            except ValueError:
                entries.append((item, None))
                skipped += 1
        if skipped > 0:
            logger.warning("行程列表中有 %s 条记录无法解析，读取时跳过（写入时原样保留）", skipped)
        return entries

    def _load_trips(self) -> list[Trip]:
        return [t for _, t in self._load_entries() if t is not None]

    def _load_stats(self) -> AggregateStats:
        raw = self._read_json(STATS_KEY)
        if raw is None:
            return AggregateStats()
        try:
            return AggregateStats.from_dict(raw)
        except ValueError as exc:
            logger.warning("存储记录 %s 结构错误，按默认值处理：%s", STATS_KEY, exc)
            return AggregateStats()

    def get_aggregate_stats(self) -> AggregateStats:
        """Persisted aggregate, or zero-valued defaults when missing/malformed."""

        with self._lock:
            return self._load_stats()

    def get_trips(self, limit: int | None = None) -> list[Trip]:
        """Trips newest first, optionally capped to ``limit`` entries."""

        with self._lock:
            trips = self._load_trips()
        if limit is None:
            return trips
        return trips[: max(0, int(limit))]

    def trip_count(self) -> int:
        """Number of stored trips that parse."""

        return len(self.get_trips())

    def trips_grouped_by_mode(self) -> dict[str, int]:
        """Mode -> number of stored trips with that mode."""

        counts: dict[str, int] = {}
        for t in self.get_trips():
            counts[t.mode] = counts.get(t.mode, 0) + 1
        return counts

    def goal_progress(self, goal_km: float = DEFAULT_GOAL_KM) -> float:
        """Total distance as a percentage of ``goal_km``, capped at 100."""

        if not isinstance(goal_km, (int, float)) or not math.isfinite(goal_km) or goal_km <= 0:
            return 0.0
        total = self.get_aggregate_stats().total_distance_km
        return min(total / goal_km * 100.0, 100.0)

    # ------------------------------------------------------------------
    # writes

    def _write(self, entries: list[Any], stats: AggregateStats) -> None:
        """Persist trip list and aggregate together, or neither.

        Raises:
            LedgerWriteError: If serialization or a store write fails. The previous
                trip list is restored before raising.
        """

        try:
            trips_blob = json.dumps(entries, ensure_ascii=False).encode("utf-8")
            stats_blob = json.dumps(stats.to_dict(), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise LedgerWriteError(f"序列化失败：{exc}") from exc

        previous = self._store.get(TRIPS_KEY)
        try:
            self._store.set(TRIPS_KEY, trips_blob)
        except Exception as exc:
            raise LedgerWriteError(f"写入 {TRIPS_KEY} 失败：{exc}") from exc

        try:
            self._store.set(STATS_KEY, stats_blob)
        except Exception as exc:
            # 回滚行程列表，保证列表与汇总要么都更新、要么都不变
            try:
                if previous is None:
                    self._store.remove(TRIPS_KEY)
                else:
                    self._store.set(TRIPS_KEY, previous)
            except Exception:
                logger.exception("回滚 %s 失败", TRIPS_KEY)
            raise LedgerWriteError(f"写入 {STATS_KEY} 失败：{exc}") from exc

    def save_trip(self, candidate: TripCandidate) -> Trip:
        """Persist a finished trip and recompute the aggregate from all trips.

        Args:
            candidate: Trip fields without an id.

        Returns:
            The stored Trip (rounded, with its new id).

        Raises:
            ValueError: If the mode is not a known travel mode or the date is not
                an ISO-8601 timestamp.
            LedgerWriteError: If the store write fails (nothing is changed).
        """

        if candidate.mode not in TRAVEL_MODES:
            raise ValueError(f"未知出行方式：{candidate.mode!r}，可选：{', '.join(TRAVEL_MODES)}")
        if not isinstance(candidate.date, str):
            raise ValueError(f"行程日期必须是 ISO-8601 字符串：{candidate.date!r}")
        parse_iso(candidate.date)

        with self._lock:
            entries = self._load_entries()
            existing_ids = {
                raw["id"] for raw, _ in entries if isinstance(raw, dict) and isinstance(raw.get("id"), str)
            }
            trip_id = self._id_factory()
            while trip_id in existing_ids:
                trip_id = self._id_factory()

            trip = Trip(
                id=trip_id,
                date=candidate.date,
                distance_km=round2(candidate.distance_km),
                duration_seconds=round_int(candidate.duration_seconds),
                mode=candidate.mode,
                carbon_saved_kg=round2(candidate.carbon_saved_kg),
                points=round_int(candidate.points),
            )
            trips = [trip, *(t for _, t in entries if t is not None)]
            stats = compute_totals(trips, last_updated=self._clock())
            # 无法解析的旧/新版本记录原样写回，只是不计入汇总
            self._write([trip.to_dict(), *(raw for raw, _ in entries)], stats)

        logger.info(
            "已保存行程 %s：%.2f km，%s，%.2f kg CO2，%s 分",
            trip.id,
            trip.distance_km,
            trip.mode,
            trip.carbon_saved_kg,
            trip.points,
        )
        return trip

    def verify_integrity(self) -> bool:
        """Check the aggregate against the sum of stored trips, repairing on mismatch.

        Returns:
            True if the aggregate was consistent; False if it was repaired (or the
            repair could not be written).
        """

        with self._lock:
            trips = self._load_trips()
            stored = self._load_stats()
            calc = compute_totals(trips)

            consistent = (
                abs(stored.total_distance_km - calc.total_distance_km) < FLOAT_TOLERANCE
                and abs(stored.total_carbon_kg - calc.total_carbon_kg) < FLOAT_TOLERANCE
                and stored.total_points == calc.total_points
                and stored.trip_count == calc.trip_count
            )
            if consistent:
                return True

            logger.warning(
                "汇总数据不一致（存储=%s，重算=%s），正在修复",
                stored.to_dict(),
                calc.to_dict(),
            )
            repaired = AggregateStats(
                total_distance_km=calc.total_distance_km,
                total_carbon_kg=calc.total_carbon_kg,
                total_points=calc.total_points,
                trip_count=calc.trip_count,
                last_updated=self._clock(),
            )
            try:
                blob = json.dumps(repaired.to_dict(), ensure_ascii=False).encode("utf-8")
                self._store.set(STATS_KEY, blob)
            except Exception:
                logger.exception("写入修复后的汇总失败")
            return False

    def clear_all(self) -> bool:
        """Reset persisted state to zero-valued defaults."""

        with self._lock:
            try:
                self._write([], AggregateStats())
            except LedgerWriteError:
                logger.exception("清空数据失败")
                return False
        logger.info("已清空全部行程数据")
        return True

    # ------------------------------------------------------------------
    # backup

    def export_all(self) -> str:
        """Serialize trips + aggregate as a portable JSON snapshot."""

        with self._lock:
            trips = self._load_trips()
            stats = self._load_stats()
        payload = {"version": EXPORT_VERSION, **stats.to_dict(), "trips": [t.to_dict() for t in trips]}
        return json.dumps(payload, ensure_ascii=False, indent=2)

    def import_all(self, snapshot: str | bytes) -> bool:
        """Replace all persisted state with a snapshot from :meth:`export_all`.

        The snapshot must carry the four aggregate totals as numbers and ``trips`` as
        a list of valid trip objects; otherwise nothing is changed and False is
        returned.
        """

        try:
            data = json.loads(snapshot)
        except (TypeError, ValueError) as exc:
            logger.warning("导入失败：不是有效的 JSON（%s）", exc)
            return False
        if not isinstance(data, dict):
            logger.warning("导入失败：顶层必须是对象")
            return False

        data = _upgrade_legacy_snapshot(data)
        try:
            stats = AggregateStats.from_dict(data)
            raw_trips = data.get("trips")
            if not isinstance(raw_trips, list):
                raise ValueError("trips must be a list")
            trips = [Trip.from_dict(t) for t in raw_trips]
            ids = [t.id for t in trips]
            if len(set(ids)) != len(ids):
                raise ValueError("duplicate trip ids")
        except ValueError as exc:
            logger.warning("导入失败：结构校验未通过（%s）", exc)
            return False

        with self._lock:
            try:
                self._write([t.to_dict() for t in trips], stats)
            except LedgerWriteError:
                logger.exception("导入失败：写入存储出错")
                return False
        logger.info("已导入 %s 条行程", len(trips))
        return True
