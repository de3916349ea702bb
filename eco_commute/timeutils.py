"""Time parsing and formatting utilities."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, tzinfo

from zoneinfo import ZoneInfo


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "Europe/Berlin".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"无效时区：{tz_name!r}。例如可用：Europe/Berlin") from exc


def now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""

    return datetime.now(UTC).isoformat(timespec="milliseconds")


def parse_iso(text: str) -> datetime:
    """Parse an ISO-8601 timestamp into a timezone-aware datetime.

    A trailing "Z" is accepted; naive strings are assumed to be UTC.

    Raises:
        ValueError: If cannot parse.
    """

    s = text.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"无法解析时间：{text!r}。建议格式：2025-12-18T09:30:00+00:00") from exc
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def format_trip_date(text: str, tz_name: str, today: date | None = None) -> str:
    """Short label for a trip date: "Today", "Yesterday" or e.g. "Oct 19".

    Unparseable dates render as "Unknown".
    """

    tz = tzinfo_from_name(tz_name)
    try:
        d = parse_iso(text).astimezone(tz).date()
    except ValueError:
        return "Unknown"
    if today is None:
        today = datetime.now(tz).date()
    if d == today:
        return "Today"
    if d == today - timedelta(days=1):
        return "Yesterday"
    return f"{d.strftime('%b')} {d.day}"
