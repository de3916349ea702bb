from __future__ import annotations

import argparse
import csv
import math
import random
from datetime import datetime
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo


TZ: Final[str] = "Europe/Berlin"

# 各出行方式的大致速度区间（km/h）
SPEED_KMH: Final[dict[str, tuple[float, float]]] = {
    "walk": (3.5, 5.5),
    "cycle": (12.0, 18.0),
    "vehicle": (25.0, 45.0),
}


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def generate_points(
    *,
    rows: int,
    seed: int,
    start_local: datetime,
    mode: str,
    start_lat: float,
    start_lon: float,
    interval_s: float,
    spike_rate: float,
) -> list[dict[str, str]]:
    """Generate a fake commute track moving roughly north-east, with GPS spikes."""

    rng = random.Random(seed)
    tz = ZoneInfo(TZ)
    t_ms = _epoch_ms(start_local.replace(tzinfo=tz))

    lat = start_lat
    lon = start_lon
    heading = rng.uniform(0.3, 1.2)  # radians
    lo, hi = SPEED_KMH[mode]

    out: list[dict[str, str]] = []
    for _ in range(rows):
        step_km = rng.uniform(lo, hi) * interval_s / 3600.0
        heading += rng.uniform(-0.15, 0.15)
        lat += (step_km * math.cos(heading)) / 111.32
        lon += (step_km * math.sin(heading)) / (111.32 * math.cos(math.radians(lat)))

        out_lat, out_lon, hacc = lat, lon, rng.choice([3.0, 5.0, 8.0, 12.0])
        if rng.random() < spike_rate:
            # 模拟定位漂移：偶尔跳出几百米到几公里
            out_lat += rng.choice([-1, 1]) * rng.uniform(0.005, 0.03)
            out_lon += rng.choice([-1, 1]) * rng.uniform(0.005, 0.03)
            hacc = rng.uniform(150.0, 800.0)

        out.append(
            {
                "geoTime": str(t_ms),
                "latitude": f"{out_lat:.7f}",
                "longitude": f"{out_lon:.7f}",
                "horizontalAccuracy": f"{hacc:.1f}",
            }
        )
        t_ms += int(interval_s * 1000)
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake commute track CSV for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/track.csv", help="Output CSV path")
    p.add_argument("--rows", type=int, default=300, help="Number of fixes")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument("--mode", type=str, default="cycle", choices=sorted(SPEED_KMH), help="Simulated travel mode")
    p.add_argument("--interval-s", type=float, default=5.0, help="Seconds between fixes")
    p.add_argument("--spike-rate", type=float, default=0.03, help="Fraction of fixes replaced by GPS spikes")
    p.add_argument("--start-lat", type=float, default=52.5200, help="Start latitude")
    p.add_argument("--start-lon", type=float, default=13.4050, help="Start longitude")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-06 08:00:00",
        help="Start local time in Europe/Berlin, e.g. '2025-01-06 08:00:00'",
    )
    args = p.parse_args()

    rows = generate_points(
        rows=args.rows,
        seed=args.seed,
        start_local=datetime.fromisoformat(args.start),
        mode=args.mode,
        start_lat=args.start_lat,
        start_lon=args.start_lon,
        interval_s=args.interval_s,
        spike_rate=args.spike_rate,
    )
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=["geoTime", "latitude", "longitude", "horizontalAccuracy"])
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, mode={args.mode}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
