"""CSV input utilities for recorded location tracks."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from eco_commute.models import Fix

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _parse_int(value: str) -> int:
    return int(value.strip())


def _parse_float(value: str) -> float:
    return float(value.strip())


def _row_to_fix(row: dict[str, str]) -> Fix:
    return Fix(
        time_ms=_parse_int(row["geoTime"]),
        latitude=_parse_float(row["latitude"]),
        longitude=_parse_float(row["longitude"]),
        horizontal_accuracy_m=_parse_float(row.get("horizontalAccuracy", "-1") or "-1"),
    )


def load_fixes(csv_path: str | Path) -> tuple[list[Fix], CsvSummary]:
    """Load all fixes into memory, sorted by time.

    Args:
        csv_path: Path to the recorded track.

    Returns:
        (fixes, summary)

    Raises:
        KeyError: If a required column is missing.

    Notes:
        Required columns: geoTime (epoch ms), latitude, longitude.
        Optional: horizontalAccuracy (meters). Broken rows are skipped.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[Fix] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        missing = [c for c in ("geoTime", "latitude", "longitude") if c not in fieldnames]
        if fieldnames and missing:
            raise KeyError(f"CSV缺少必要字段：{missing}. 实际字段：{list(fieldnames)}")
        for row in reader:
            rows_total += 1
            try:
                parsed.append(_row_to_fix(row))
            except (KeyError, ValueError, TypeError, AttributeError):
                continue

    parsed.sort(key=lambda fx: fx.time_ms)
    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("CSV中有 %s 行解析失败已跳过", summary.rows_skipped)
    return parsed, summary
