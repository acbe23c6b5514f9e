"""Shared datetime and request-input helpers.

ensure_utc:       SQLite hands back naive datetimes; every engine comparison
                  goes through this so naive values are read as UTC.
isoformat_utc:    serialization used by every ``to_dict``.
parse_hours:      non-negative, finite float hours from request input.
"""
import math
from datetime import timezone

from stageflow.core.exceptions import ValidationError


def ensure_utc(value):
    """Return ``value`` as an aware UTC datetime. None passes through."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value):
    value = ensure_utc(value)
    return value.isoformat() if value else None


def parse_hours(value, field="estimated_hours", default=0.0):
    """Parse a non-negative number of hours. Fractions are allowed."""
    if value is None or value == "":
        return default
    try:
        hours = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"{field} must be a number", details={"field": field, "value": value},
        ) from exc
    if not math.isfinite(hours):
        raise ValidationError(
            f"{field} must be a finite number", details={"field": field, "value": str(value)},
        )
    if hours < 0:
        raise ValidationError(
            f"{field} must be non-negative", details={"field": field, "value": value},
        )
    return hours
