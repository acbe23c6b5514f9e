"""Completion classifier: early / on_time / late and delay magnitude."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from stageflow.services import completion_classifier as cc

DUE = datetime(2024, 1, 8, 17, 30, tzinfo=timezone.utc)


def _at(hour, minute=0, day=8):
    return datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.mark.parametrize("completed, label", [
    (_at(9), cc.EARLY),
    (_at(17, 29), cc.EARLY),
    (_at(17, 30), cc.ON_TIME),
    (_at(17, 45), cc.ON_TIME),
    (_at(17, 59), cc.ON_TIME),
    (_at(18, 1), cc.LATE),
    (_at(9, day=9), cc.LATE),
])
def test_labels(completed, label):
    assert cc.classify(completed, DUE).label == label


def test_delay_only_when_late():
    assert cc.classify(_at(17, 45), DUE).delay_hours == 0.0
    assert cc.classify(_at(12), DUE).delay_hours == 0.0
    late = cc.classify(_at(19, 30), DUE)
    assert late.label == cc.LATE
    assert late.delay_hours == 2.0


def test_missing_due_is_in_progress():
    assert cc.classify(_at(12), None) == cc.Classification(cc.IN_PROGRESS, 0.0)


def test_naive_values_read_as_utc():
    assert cc.classify(datetime(2024, 1, 8, 17, 40), DUE.replace(tzinfo=None)).label == cc.ON_TIME


def test_apply_to_task_stamps_fields():
    task = SimpleNamespace(id=1, due_at=DUE, classification="in_progress", delay_hours=0.0)
    result = cc.apply_to_task(task, _at(18, 30))
    assert task.classification == cc.LATE
    assert task.delay_hours == 1.0
    assert result.to_dict() == {"classification": "late", "delay_hours": 1.0}


def test_on_time_bucket_uses_local_clock_hour():
    # Asia/Kolkata is UTC+05:30: due 17:00 local (11:30Z), done 17:40 local (12:10Z)
    due = datetime(2024, 1, 8, 11, 30, tzinfo=timezone.utc)
    done = datetime(2024, 1, 8, 12, 10, tzinfo=timezone.utc)
    assert cc.classify(done, due).label == cc.LATE
    assert cc.classify(done, due, tz="Asia/Kolkata").label == cc.ON_TIME

    # 18:05 local falls in the next local hour
    later = datetime(2024, 1, 8, 12, 35, tzinfo=timezone.utc)
    result = cc.classify(later, due, tz="Asia/Kolkata")
    assert result.label == cc.LATE
    assert result.delay_hours == pytest.approx(65 / 60, abs=1e-4)


def test_apply_to_task_passes_zone():
    due = datetime(2024, 1, 8, 11, 30, tzinfo=timezone.utc)
    task = SimpleNamespace(id=1, due_at=due, classification="in_progress", delay_hours=0.0)
    cc.apply_to_task(task, datetime(2024, 1, 8, 12, 10, tzinfo=timezone.utc), tz="Asia/Kolkata")
    assert task.classification == cc.ON_TIME
