"""
Completion classifier — early / on_time / late outcome of a task or stage visit.

    classify(completed_at, due_at, tz) → Classification(label, delay_hours)

Rules:
    no due instant                        → in_progress (never properly started)
    completed strictly before due         → early
    completed within the due clock hour   → on_time
    otherwise                             → late, delay = completed − due (hours)

"Within the due clock hour" compares both instants truncated to the hour on
the space's local clock (UTC when no zone is given). A task due at 17:30
completed at 17:45 is on_time and one completed at 18:01 is late; in a zone
with a half-hour offset the buckets follow local hours, not UTC ones.
"""

import logging
from dataclasses import dataclass

from stageflow.services.working_calendar import resolve_timezone
from stageflow.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)

EARLY = "early"
ON_TIME = "on_time"
LATE = "late"
IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class Classification:
    label: str
    delay_hours: float = 0.0

    def to_dict(self) -> dict:
        return {"classification": self.label, "delay_hours": self.delay_hours}


def _hour_bucket(value, zone):
    return value.astimezone(zone).replace(minute=0, second=0, microsecond=0)


def classify(completed_at, due_at, tz=None) -> Classification:
    """Classify a completion instant against a due instant.

    ``tz`` is the space's IANA zone name (or a tzinfo); it only affects the
    on_time hour bucket.
    """
    if due_at is None or completed_at is None:
        return Classification(IN_PROGRESS)

    completed_at = ensure_utc(completed_at)
    due_at = ensure_utc(due_at)

    if completed_at < due_at:
        return Classification(EARLY)
    zone = resolve_timezone(tz)
    if _hour_bucket(completed_at, zone) == _hour_bucket(due_at, zone):
        return Classification(ON_TIME)

    delay = (completed_at - due_at).total_seconds() / 3600.0
    return Classification(LATE, round(max(delay, 0.0), 4))


def apply_to_task(task, completed_at, tz=None) -> Classification:
    """Stamp ``classification`` and ``delay_hours`` on a Task row."""
    result = classify(completed_at, task.due_at, tz=tz)
    task.classification = result.label
    task.delay_hours = result.delay_hours
    logger.debug(
        "Task %s classified %s (delay=%.4fh)", task.id, result.label, result.delay_hours,
        extra={"task_id": task.id},
    )
    return result
