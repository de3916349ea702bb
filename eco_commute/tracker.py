"""Live trip tracking: noise filtering, path accumulation and location subscriptions."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Final, Iterable, Protocol

from eco_commute.geo import distance_km, path_distance_km
from eco_commute.models import Coordinate, Fix, TripMetrics
from eco_commute.speed import average_speed_kmh, carbon_avoided_kg, infer_mode

logger = logging.getLogger(__name__)

NOISE_THRESHOLD_KM: Final[float] = 0.2


@dataclass(frozen=True, slots=True)
class TrackerParams:
    """Parameters controlling fix filtering and mode inference."""

    # 与上一个已接受点的距离超过该值即视为 GPS 漂移，直接丢弃
    noise_threshold_km: float = NOISE_THRESHOLD_KM
    # 行程时长不足该秒数时，速度推断的方式不可靠，由调用方使用手动方式
    min_inference_seconds: float = 10.0


def ingest_fix(
    new_fix: Coordinate,
    last_accepted: Coordinate | None,
    threshold_km: float = NOISE_THRESHOLD_KM,
) -> bool:
    """Decide whether a new fix is accepted into the path.

    The first fix of a trip (no ``last_accepted``) is always accepted. Otherwise the
    fix is rejected when it lies strictly farther than ``threshold_km`` from the last
    accepted fix; a fix exactly on the threshold is accepted.
    """

    if last_accepted is None:
        return True
    return distance_km(last_accepted, new_fix) <= threshold_km


class PathTracker:
    """Accumulates the path of one active trip, one fix at a time."""

    def __init__(self, params: TrackerParams | None = None) -> None:
        self._params = params or TrackerParams()
        self._path: list[Coordinate] = []
        self._distance_km = 0.0
        self._first_ms: int | None = None
        self._latest_ms: int | None = None
        self.accepted = 0
        self.rejected = 0

    @property
    def path(self) -> tuple[Coordinate, ...]:
        return tuple(self._path)

    @property
    def last_accepted(self) -> Coordinate | None:
        return self._path[-1] if self._path else None

    @property
    def distance_km(self) -> float:
        """Distance accumulated over the accepted path so far."""

        return self._distance_km

    @property
    def duration_seconds(self) -> float:
        """Time span between the first fix and the latest fix seen."""

        if self._first_ms is None or self._latest_ms is None:
            return 0.0
        return max(0.0, (self._latest_ms - self._first_ms) / 1000.0)

    def ingest(self, fix: Fix) -> bool:
        """Filter and append one fix. Returns True if the fix was accepted."""

        if self._first_ms is None:
            self._first_ms = fix.time_ms
        if self._latest_ms is None or fix.time_ms > self._latest_ms:
            self._latest_ms = fix.time_ms

        coord = fix.coordinate
        last = self.last_accepted
        if not ingest_fix(coord, last, self._params.noise_threshold_km):
            self.rejected += 1
            logger.debug(
                "丢弃漂移点 (%.6f, %.6f)：距上一个有效点 %.3f km",
                coord.latitude,
                coord.longitude,
                distance_km(last, coord) if last is not None else 0.0,
            )
            return False

        if last is not None:
            self._distance_km += distance_km(last, coord)
        self._path.append(coord)
        self.accepted += 1
        return True

    def recompute_distance_km(self) -> float:
        """Recompute the path distance from scratch (matches the running total)."""

        return path_distance_km(self._path)

    def metrics(self, elapsed_seconds: float | None = None) -> TripMetrics:
        """Current trip metrics.

        Args:
            elapsed_seconds: Wall-clock trip time from the host. When omitted, the
                span between fix timestamps is used.
        """

        duration = self.duration_seconds if elapsed_seconds is None else max(0.0, float(elapsed_seconds))
        dist = self._distance_km
        speed = average_speed_kmh(dist, duration)
        mode = infer_mode(speed) if duration >= self._params.min_inference_seconds else None
        return TripMetrics(
            distance_km=dist,
            duration_seconds=duration,
            avg_speed_kmh=speed,
            inferred_mode=mode,
            carbon_saved_kg=carbon_avoided_kg(dist),
            accepted_fixes=self.accepted,
            rejected_fixes=self.rejected,
        )

    def reset(self) -> None:
        self._path.clear()
        self._distance_km = 0.0
        self._first_ms = None
        self._latest_ms = None
        self.accepted = 0
        self.rejected = 0


# ---------------------------------------------------------------------------
# Sensor errors

PERMISSION_DENIED: Final[str] = "permission_denied"
POSITION_UNAVAILABLE: Final[str] = "position_unavailable"
TIMEOUT: Final[str] = "timeout"
UNKNOWN: Final[str] = "unknown"

_ERROR_MESSAGES: Final[dict[str, str]] = {
    PERMISSION_DENIED: "Location permission denied. Please enable location access.",
    POSITION_UNAVAILABLE: "Location information unavailable. Please check your device settings.",
    TIMEOUT: "Location request timed out. Please try again.",
    UNKNOWN: "An unknown error occurred while accessing location.",
}


@dataclass(frozen=True, slots=True)
class LocationError:
    """A classified, user-displayable sensor error."""

    code: str
    message: str

    @property
    def halts_tracking(self) -> bool:
        return self.code == PERMISSION_DENIED


def location_error(code: str) -> LocationError:
    """Classify an error code; unrecognized codes map to ``unknown``."""

    key = code if code in _ERROR_MESSAGES else UNKNOWN
    return LocationError(code=key, message=_ERROR_MESSAGES[key])


# ---------------------------------------------------------------------------
# Subscriptions

FixCallback = Callable[[Fix], None]
ErrorCallback = Callable[[LocationError], None]


class LocationSource(Protocol):
    """Host location service: continuous fix delivery until stopped."""

    def start(self, on_fix: FixCallback, on_error: ErrorCallback) -> int: ...

    def stop(self, handle: int) -> None: ...


class ReplayLocationSource:
    """Replay recorded fixes synchronously (offline runs and tests).

    ``events`` may mix ``Fix`` objects and error-code strings. Delivery stops as soon
    as the subscription is stopped, even from inside a callback.
    """

    def __init__(self, events: Iterable[Fix | str]) -> None:
        self._events = list(events)
        self._handles = itertools.count(1)
        self._active: set[int] = set()

    @property
    def active(self) -> bool:
        return bool(self._active)

    def start(self, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        handle = next(self._handles)
        self._active.add(handle)
        for event in self._events:
            if handle not in self._active:
                break
            if isinstance(event, str):
                on_error(location_error(event))
            else:
                on_fix(event)
        return handle

    def stop(self, handle: int) -> None:
        self._active.discard(handle)


class TripRecorder:
    """Drive a PathTracker from a LocationSource.

    States: idle -> tracking -> idle. Stopping unregisters the subscription and
    discards the in-progress path; nothing is persisted here.
    """

    def __init__(self, source: LocationSource, params: TrackerParams | None = None) -> None:
        self._source = source
        self._tracker = PathTracker(params)
        self._handle: int | None = None
        self._tracking = False
        self.last_error: LocationError | None = None

    @property
    def tracking(self) -> bool:
        return self._tracking

    @property
    def tracker(self) -> PathTracker:
        return self._tracker

    def start(self) -> None:
        if self._tracking:
            return
        self._tracker.reset()
        self.last_error = None
        self._tracking = True
        handle = self._source.start(self._on_fix, self._on_error)
        if self._tracking:
            self._handle = handle
        else:
            # 回调中已自动停止（例如权限被拒），确保退订
            self._source.stop(handle)

    def stop(self, elapsed_seconds: float | None = None) -> TripMetrics:
        """Stop tracking and return the final metrics; the path is discarded."""

        metrics = self._tracker.metrics(elapsed_seconds)
        self._halt()
        self._tracker.reset()
        return metrics

    def metrics(self, elapsed_seconds: float | None = None) -> TripMetrics:
        return self._tracker.metrics(elapsed_seconds)

    def _halt(self) -> None:
        self._tracking = False
        if self._handle is not None:
            self._source.stop(self._handle)
            self._handle = None

    def _on_fix(self, fix: Fix) -> None:
        if not self._tracking:
            return
        self._tracker.ingest(fix)

    def _on_error(self, error: LocationError) -> None:
        if not self._tracking:
            return
        self.last_error = error
        logger.warning("定位错误 %s：%s", error.code, error.message)
        if error.halts_tracking:
            self._halt()
