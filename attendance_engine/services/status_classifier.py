from __future__ import annotations

import enum
from datetime import datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from attendance_engine.models import AttendanceStatus
from attendance_engine.settings import get_settings

DEFAULT_ATTENDANCE_TIMEZONE = "Asia/Kuala_Lumpur"


class ScanAction(str, enum.Enum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_ATTENDANCE_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo(DEFAULT_ATTENDANCE_TIMEZONE)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def local_now(ts_utc: datetime | None = None) -> datetime:
    return normalize_ts(ts_utc).astimezone(attendance_timezone())


def local_time_of_day(ts_utc: datetime | None = None) -> time:
    local = local_now(ts_utc)
    return time(hour=local.hour, minute=local.minute)


def parse_hhmm(raw: str | time | None) -> time | None:
    if raw is None:
        return None
    if isinstance(raw, time):
        return time(hour=raw.hour, minute=raw.minute)
    normalized = raw.strip()
    if not normalized:
        return None
    parts = normalized.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"time must be HH:MM: {raw!r}")
    if not all(part.isdigit() for part in parts):
        raise ValueError(f"time must be HH:MM: {raw!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if hour > 23 or minute > 59:
        raise ValueError(f"time out of range: {raw!r}")
    return time(hour=hour, minute=minute)


def classify(
    event_time: time | str,
    boundary: time | str | None,
    direction: ScanAction,
) -> AttendanceStatus:
    """Derive the status of a check-in or check-out at ``event_time``.

    Both values are organization-local wall-clock times compared at minute
    resolution. ``boundary`` is the window start for check-in and the window
    end for check-out; ``None`` means no window is configured.
    """
    event = parse_hhmm(event_time)
    limit = parse_hhmm(boundary)
    if event is None:
        raise ValueError("event_time is required")
    if limit is None:
        return AttendanceStatus.PRESENT

    if direction == ScanAction.CHECK_IN:
        return AttendanceStatus.LATE if event > limit else AttendanceStatus.PRESENT
    return AttendanceStatus.EARLY_OUT if event < limit else AttendanceStatus.PRESENT
