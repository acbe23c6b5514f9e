"""
Working calendar — calendar-aware due instants and elapsed effort.

Pure functions; no database access. A calendar is a daily working window
("09:00"–"17:00"), a set of working weekdays (0 = Monday) and an IANA time
zone in which the window is interpreted. Instants go in and come out as
aware UTC datetimes; naive inputs are read as UTC.

    compute_due_instant(start, hours, window, days, tz)   → due instant
    working_hours_between(start, end, window, days, tz)   → elapsed working hours
    calendar_for_space(space)                              → WorkingCalendar

Arithmetic inside a day uses wall-clock time of the space's zone, so a
09:00–17:00 window is eight working hours on DST transition days too.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from stageflow.core.exceptions import ConfigurationError, ValidationError
from stageflow.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


# ── Value objects ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WorkingWindow:
    """Daily working window [start, end) in local wall-clock time."""
    start: time
    end: time

    def __post_init__(self):
        if self.end <= self.start:
            raise ConfigurationError(
                f"Working hours end {self.end:%H:%M} must be after start {self.start:%H:%M}",
                details={"start": f"{self.start:%H:%M}", "end": f"{self.end:%H:%M}"},
            )

    @property
    def hours(self) -> float:
        start = datetime.combine(datetime.min.date(), self.start)
        end = datetime.combine(datetime.min.date(), self.end)
        return (end - start).total_seconds() / 3600.0

    def bounds(self, day, zone):
        """Aware (day_start, day_end) for the given local date."""
        return (
            datetime.combine(day, self.start, tzinfo=zone),
            datetime.combine(day, self.end, tzinfo=zone),
        )


@dataclass(frozen=True)
class WorkingCalendar:
    """A space's calendar, bundled so callers pass one object around."""
    window: WorkingWindow
    working_days: frozenset
    tz: str = "UTC"

    def due_instant(self, start, estimated_hours):
        return compute_due_instant(start, estimated_hours, self.window, self.working_days, self.tz)

    def hours_between(self, start, end):
        return working_hours_between(start, end, self.window, self.working_days, self.tz)

    def to_dict(self) -> dict:
        return {
            "working_hours": {
                "start": f"{self.window.start:%H:%M}",
                "end": f"{self.window.end:%H:%M}",
            },
            "working_days": sorted(self.working_days),
            "timezone": self.tz,
        }


# ── Parsing / validation ─────────────────────────────────────────────────────


def _parse_clock(value, field):
    if isinstance(value, time):
        return value
    try:
        hour, minute = str(value).strip().split(":")
        return time(int(hour), int(minute))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"{field} must be a HH:MM time of day", details={"field": field, "value": value},
        ) from exc


def parse_working_window(start, end) -> WorkingWindow:
    """Build a WorkingWindow from "HH:MM" strings (or ``time`` objects)."""
    return WorkingWindow(
        _parse_clock(start, "working_hours_start"),
        _parse_clock(end, "working_hours_end"),
    )


def normalize_working_days(days) -> frozenset:
    """Validate a working-days collection.

    Accepts weekday integers (0 = Monday) or English weekday names. An empty
    set would make every due computation loop forever, so it is rejected.
    """
    if not days:
        raise ConfigurationError("Working days set must not be empty")

    normalized = set()
    for day in days:
        if isinstance(day, str) and day.strip().lower() in WEEKDAY_NAMES:
            normalized.add(WEEKDAY_NAMES.index(day.strip().lower()))
            continue
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise ConfigurationError(
                f"Invalid working day {day!r}; expected 0 (Monday) … 6 (Sunday)",
                details={"working_days": list(days)},
            )
        normalized.add(day)
    return frozenset(normalized)


def resolve_timezone(tz):
    if tz is None or tz == "UTC":
        return timezone.utc
    if not isinstance(tz, str):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown time zone {tz!r}", details={"timezone": tz}) from exc


def calendar_for_space(space) -> WorkingCalendar:
    """Build the WorkingCalendar for a Space row."""
    return WorkingCalendar(
        window=parse_working_window(space.working_hours_start, space.working_hours_end),
        working_days=normalize_working_days(space.working_days),
        tz=space.timezone_name or "UTC",
    )


# ── Algorithms ───────────────────────────────────────────────────────────────


def _next_day_start(cursor, window, zone):
    day = cursor.date() + timedelta(days=1)
    return datetime.combine(day, window.start, tzinfo=zone)


def compute_due_instant(start, estimated_hours, window, working_days, tz="UTC"):
    """Walk forward from ``start`` consuming ``estimated_hours`` of working time.

    Each working day contributes at most ``window.hours``; non-working days
    and the hours outside the window are skipped. Zero hours returns the
    start itself, clamped into the next working window when it falls outside
    one.

    Raises:
        ValidationError: negative or non-finite hours.
        ConfigurationError: empty working days, or the walk exceeds its
            iteration bound.
    """
    if estimated_hours is None:
        estimated_hours = 0.0
    if not math.isfinite(estimated_hours):
        raise ValidationError(
            "estimated_hours must be a finite number",
            details={"estimated_hours": str(estimated_hours)},
        )
    if estimated_hours < 0:
        raise ValidationError(
            "estimated_hours must be non-negative", details={"estimated_hours": estimated_hours},
        )
    days = normalize_working_days(working_days)
    zone = resolve_timezone(tz)

    cursor = ensure_utc(start).astimezone(zone)
    remaining = float(estimated_hours)
    max_days = 7 * (math.ceil(remaining / window.hours) + 2)

    for _ in range(max_days):
        if cursor.weekday() not in days:
            cursor = _next_day_start(cursor, window, zone)
            continue

        day_start, day_end = window.bounds(cursor.date(), zone)
        if cursor < day_start:
            cursor = day_start
        if cursor >= day_end:
            cursor = _next_day_start(cursor, window, zone)
            continue

        available = (day_end - cursor).total_seconds() / 3600.0
        if remaining <= available:
            return (cursor + timedelta(hours=remaining)).astimezone(timezone.utc)

        remaining -= available
        cursor = _next_day_start(cursor, window, zone)

    logger.error(
        "Working calendar walk exceeded %d days (hours=%s, days=%s)",
        max_days, estimated_hours, sorted(days),
    )
    raise ConfigurationError(
        f"Due date computation did not converge within {max_days} days",
        details={"estimated_hours": estimated_hours, "working_days": sorted(days)},
    )


def working_hours_between(start, end, window, working_days, tz="UTC"):
    """Working hours elapsed between two instants (0.0 if end <= start)."""
    days = normalize_working_days(working_days)
    zone = resolve_timezone(tz)
    start = ensure_utc(start).astimezone(zone)
    end = ensure_utc(end).astimezone(zone)
    if end <= start:
        return 0.0

    total = 0.0
    day = start.date()
    while day <= end.date():
        if day.weekday() in days:
            day_start, day_end = window.bounds(day, zone)
            lo = max(start, day_start)
            hi = min(end, day_end)
            if hi > lo:
                total += (hi - lo).total_seconds() / 3600.0
        day += timedelta(days=1)
    return round(total, 4)
