"""
Task lifecycle state machine.

Owns a task's status, timeline and per-stage history. Consults the dependency
graph before stage moves, the working calendar for due instants and the
completion classifier on completion and stage exit.

Every mutating operation follows the same shape:

    load (row-locked) → authorize → validate → mutate + append history
        → commit → publish event to the space

One database transaction covers the whole mutation; any error rolls it back
and propagates unchanged. Events go out only after the commit succeeded and
hub delivery problems never reach the caller.

Status transitions (TASK_STATUS_TRANSITIONS):
    in_progress → paused | completed
    paused      → in_progress          (adds the pause interval to paused_seconds)
    completed   → approved | rejected  (delegates to record_approval)
    rejected    → in_progress          (rework: restarts the stage timeline)
Stage moves are orthogonal and always land in in_progress.

Usage:
    from stageflow.services import task_lifecycle

    task = task_lifecycle.create_task(space_id, {"title": "Cut intro"}, actor_id=1)
    task_lifecycle.set_status(task.id, "completed", actor_id=1)
    task_lifecycle.move_to(task.id, review_group.id, actor_id=1)
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from stageflow.core.exceptions import (
    ConfigurationError,
    DependencyUnsatisfiedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from stageflow.models import db
from stageflow.models.auth import User
from stageflow.models.space import Space
from stageflow.models.task import (
    APPROVAL_DECISIONS,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
    TaskComment,
    TaskStageEntry,
    TaskStatusEntry,
    validate_status_transition,
)
from stageflow.models.workflow import Group
from stageflow.services import completion_classifier, events, permission
from stageflow.services.dependency_graph import can_enter
from stageflow.services.helpers.scoped_queries import get_scoped
from stageflow.services.working_calendar import calendar_for_space
from stageflow.utils.helpers import ensure_utc, parse_hours

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


# ── Internal helpers ─────────────────────────────────────────────────────────


@contextmanager
def _transaction():
    """Commit on success; roll back and re-raise on any failure."""
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _publish(event, exclude_actor=None):
    hub = current_app.extensions.get("broadcast_hub")
    if hub is None:
        return 0
    return hub.publish(event.space_id, event, exclude_actor=exclude_actor)


def _get_actor(actor_id):
    actor = db.session.get(User, actor_id) if actor_id is not None else None
    if actor is None or not actor.is_active:
        raise ForbiddenError("Unknown or inactive actor")
    return actor


def _get_space(space_id):
    space = db.session.get(Space, space_id)
    if space is None:
        raise NotFoundError(resource="Space", resource_id=space_id)
    return space


def _load_task_for_update(task_id):
    """Fetch the task with SELECT ... FOR UPDATE.

    The row lock serializes concurrent status/move/approval operations on
    the same task until the surrounding transaction ends.
    """
    stmt = select(Task).where(Task.id == task_id).with_for_update()
    task = db.session.execute(stmt).scalar_one_or_none()
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


def _get_task(task_id):
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


def _hours_excluding_pauses(start, end, paused_seconds, pause_started_at=None):
    """(end − start − paused) in hours, never negative.

    An ongoing pause (``pause_started_at`` set) counts as paused up to ``end``.
    """
    if start is None:
        return 0.0
    start = ensure_utc(start)
    end = ensure_utc(end)
    paused = paused_seconds or 0.0
    if pause_started_at is not None:
        paused += max((end - ensure_utc(pause_started_at)).total_seconds(), 0.0)
    seconds = (end - start).total_seconds() - paused
    return round(max(seconds, 0.0) / 3600.0, 4)


def _append_status(task, status, actor_id, at, notes=None):
    entry = TaskStatusEntry(
        task_id=task.id, status=status, actor_id=actor_id, notes=notes, created_at=at,
    )
    db.session.add(entry)
    task.status_history.append(entry)
    return entry


def _open_stage(task, group, owner_id, at, due_at, estimated_hours):
    entry = TaskStageEntry(
        task_id=task.id,
        group_id=group.id,
        group_name=group.name,
        owner_id=owner_id,
        entered_at=at,
        due_at=due_at,
        estimated_hours=estimated_hours,
        paused_seconds=0.0,
    )
    db.session.add(entry)
    task.stage_history.append(entry)
    return entry


def _start_timeline(task, calendar, at, estimated_hours):
    """Stamp a fresh timeline for the current stage visit."""
    task.started_at = at
    task.estimated_hours = estimated_hours
    task.due_at = calendar.due_instant(at, estimated_hours)
    task.completed_at = None
    task.pause_started_at = None
    task.paused_seconds = 0.0
    task.actual_hours = 0.0
    task.classification = completion_classifier.IN_PROGRESS
    task.delay_hours = 0.0


def _require_member(space, actor_id):
    _get_actor(actor_id)
    permission.require_member(space, actor_id)


def _validate_owner(space, owner_id):
    if owner_id is None:
        return None
    owner = get_scoped(User, owner_id, tenant_id=space.tenant_id)
    if not permission.is_member(space, owner.id):
        raise ValidationError(
            "Task owner must be a member of the space", details={"owner_id": owner_id},
        )
    return owner


def task_snapshot(task, include_history=False, now=None):
    """Serialized task plus calendar-aware elapsed working hours."""
    data = task.to_dict(include_history=include_history)
    if task.started_at is not None:
        calendar = calendar_for_space(task.space)
        until = task.completed_at or now or _utcnow()
        data["timeline"]["working_hours_elapsed"] = calendar.hours_between(task.started_at, until)
    else:
        data["timeline"]["working_hours_elapsed"] = 0.0
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_task(task_id, actor_id, include_history=False):
    task = _get_task(task_id)
    _require_member(task.space, actor_id)
    return task_snapshot(task, include_history=include_history)


def list_tasks(space_id, actor_id, group_id=None, status=None):
    space = _get_space(space_id)
    _require_member(space, actor_id)

    stmt = select(Task).where(Task.space_id == space.id)
    if group_id is not None:
        stmt = stmt.where(Task.current_group_id == group_id)
    if status is not None:
        if status not in TASK_STATUSES:
            raise ValidationError(f"Unknown status {status!r}", details={"status": status})
        stmt = stmt.where(Task.status == status)
    stmt = stmt.order_by(Task.created_at, Task.id)
    return [task_snapshot(t) for t in db.session.execute(stmt).scalars()]


# ═════════════════════════════════════════════════════════════════════════════
# Creation / details
# ═════════════════════════════════════════════════════════════════════════════


def create_task(space_id, data, actor_id):
    """Create a task anchored to the space's start group.

    Raises:
        ConfigurationError: the space has no start group.
        ValidationError: missing title, bad priority or owner outside the space.
    """
    space = _get_space(space_id)
    actor = _get_actor(actor_id)
    permission.require_member(space, actor_id)

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"field": "title"})
    priority = data.get("priority") or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValidationError(f"Invalid priority {priority!r}", details={"priority": priority})

    start_group = space.start_group()
    if start_group is None:
        raise ConfigurationError("No start group found. Please create a start group first.")

    owner_id = data.get("owner_id") or actor_id
    _validate_owner(space, owner_id)
    estimated_hours = parse_hours(data.get("estimated_hours"), default=start_group.estimated_hours)
    calendar = calendar_for_space(space)
    now = _utcnow()

    with _transaction():
        task = Task(
            space_id=space.id,
            current_group_id=start_group.id,
            title=title,
            description=data.get("description", ""),
            priority=priority,
            owner_id=owner_id,
            status="in_progress",
            approval_status="pending",
        )
        _start_timeline(task, calendar, now, estimated_hours)
        db.session.add(task)
        db.session.flush()

        _open_stage(task, start_group, owner_id, now, task.due_at, estimated_hours)
        _append_status(task, "in_progress", actor_id, now)

    logger.info(
        "Task %s created in space %s (group %s, due %s)",
        task.id, space.id, start_group.id, task.due_at,
        extra={"space_id": space.id, "task_id": task.id, "event_type": events.TASK_CREATED},
    )
    _publish(events.task_created(task, actor), exclude_actor=actor_id)
    return task


def update_task_details(task_id, data, actor_id):
    """Edit title / description / priority. Timeline fields are not editable here."""
    actor = _get_actor(actor_id)
    changes = {}

    with _transaction():
        task = _load_task_for_update(task_id)
        permission.require_task_manager(task, actor_id)

        if "title" in data:
            title = (data.get("title") or "").strip()
            if not title:
                raise ValidationError("title must not be empty", details={"field": "title"})
            if title != task.title:
                task.title = changes["title"] = title
        if "description" in data and data["description"] != task.description:
            task.description = changes["description"] = data["description"] or ""
        if "priority" in data:
            priority = data["priority"]
            if priority not in TASK_PRIORITIES:
                raise ValidationError(
                    f"Invalid priority {priority!r}", details={"priority": priority},
                )
            if priority != task.priority:
                task.priority = changes["priority"] = priority

    if changes:
        _publish(events.task_updated(task, changes, actor), exclude_actor=actor_id)
    return task


def delete_task(task_id, actor_id):
    """Delete a task; status/stage history and comments go with it."""
    actor = _get_actor(actor_id)
    with _transaction():
        task = _load_task_for_update(task_id)
        permission.require_task_manager(task, actor_id)
        space_id = task.space_id
        db.session.delete(task)

    logger.info(
        "Task %s deleted from space %s", task_id, space_id,
        extra={"space_id": space_id, "task_id": task_id},
    )
    _publish(
        events.Event(events.TASK_UPDATED, space_id, {
            "task_id": task_id, "changes": {"deleted": True}, "actor": actor.to_actor(),
        }),
        exclude_actor=actor_id,
    )


def add_comment(task_id, body, actor_id):
    actor = _get_actor(actor_id)
    body = (body or "").strip()
    if not body:
        raise ValidationError("Comment body is required", details={"field": "body"})

    with _transaction():
        task = _get_task(task_id)
        permission.require_member(task.space, actor_id)
        comment = TaskComment(task_id=task.id, author_id=actor.id, body=body, created_at=_utcnow())
        db.session.add(comment)

    _publish(events.comment_added(task, comment), exclude_actor=actor_id)
    return comment


# ═════════════════════════════════════════════════════════════════════════════
# Status transitions
# ═════════════════════════════════════════════════════════════════════════════


def set_status(task_id, new_status, actor_id, notes=None):
    """Apply a status transition and append a status entry.

    Raises:
        ForbiddenError: actor is neither the task owner nor a space admin.
        InvalidStateError: transition not allowed from the current status.
        ValidationError: unknown status.
    """
    if new_status not in TASK_STATUSES:
        raise ValidationError(f"Unknown status {new_status!r}", details={"status": new_status})

    if new_status in APPROVAL_DECISIONS:
        return record_approval(task_id, new_status, actor_id, notes=notes, require_completed=True)

    actor = _get_actor(actor_id)
    now = _utcnow()

    with _transaction():
        task = _load_task_for_update(task_id)
        permission.require_task_manager(task, actor_id)

        old_status = task.status
        if not validate_status_transition(old_status, new_status):
            raise InvalidStateError(
                f"Cannot change task status from '{old_status}' to '{new_status}'"
            )

        task.status = new_status
        changes = {"status": new_status}

        entry = task.open_stage_entry
        if new_status == "in_progress" and old_status == "paused":
            pause_start = ensure_utc(task.pause_started_at) if task.pause_started_at else now
            paused = max((now - pause_start).total_seconds(), 0.0)
            task.paused_seconds = (task.paused_seconds or 0.0) + paused
            task.pause_started_at = None
            if entry is not None:
                entry.paused_seconds = (entry.paused_seconds or 0.0) + paused
            changes["paused_hours"] = round(task.paused_seconds / 3600.0, 4)

        elif new_status == "in_progress":
            # Never started, or rework after a rejection: fresh timeline
            _start_timeline(task, calendar_for_space(task.space), now, task.estimated_hours)
            if entry is not None:
                entry.due_at = task.due_at
            changes["started_at"] = task.started_at.isoformat()
            changes["due_at"] = task.due_at.isoformat()

        elif new_status == "paused":
            task.pause_started_at = now

        elif new_status == "completed":
            task.completed_at = now
            task.actual_hours = _hours_excluding_pauses(
                task.started_at, now, task.paused_seconds,
            )
            result = completion_classifier.apply_to_task(
                task, now, tz=calendar_for_space(task.space).tz,
            )
            changes.update({
                "completed_at": now.isoformat(),
                "actual_hours": task.actual_hours,
                "classification": result.label,
                "delay_hours": result.delay_hours,
            })

        _append_status(task, new_status, actor_id, now, notes)

    logger.info(
        "Task %s status %s → %s", task.id, old_status, new_status,
        extra={"space_id": task.space_id, "task_id": task.id, "event_type": events.TASK_UPDATED},
    )
    _publish(events.task_updated(task, changes, actor), exclude_actor=actor_id)
    return task


def record_approval(task_id, decision, actor_id, notes=None, require_completed=False):
    """Approve or reject a task sitting in an approval-gate group.

    ``require_completed`` is set when the decision arrives as a status change;
    the completed → decision transition is then checked under the row lock.

    Raises:
        ForbiddenError: actor is not a space admin.
        InvalidStateError: current group is not an approval gate, or the
            task is not completed when ``require_completed`` is set.
        ValidationError: decision is not "approved" / "rejected".
    """
    if decision not in APPROVAL_DECISIONS:
        raise ValidationError(
            "decision must be 'approved' or 'rejected'", details={"decision": decision},
        )
    actor = _get_actor(actor_id)
    now = _utcnow()

    with _transaction():
        task = _load_task_for_update(task_id)
        if require_completed and not validate_status_transition(task.status, decision):
            raise InvalidStateError(
                f"Cannot change task status from '{task.status}' to '{decision}'"
            )
        if not permission.is_admin(task.space, actor_id):
            raise ForbiddenError("Only a space admin can approve or reject tasks")
        if not task.current_group.is_approval_gate:
            raise InvalidStateError(
                f"Task is not in an approval group (current group '{task.current_group.name}')"
            )

        task.approval_status = decision
        task.approved_by_id = actor.id
        task.approval_notes = notes
        task.status = decision
        _append_status(task, decision, actor_id, now, notes)

    logger.info(
        "Task %s %s by %s", task.id, decision, actor.id,
        extra={"space_id": task.space_id, "task_id": task.id, "event_type": events.TASK_UPDATED},
    )
    changes = {"status": decision, "approval_status": decision, "approved_by_id": actor.id}
    _publish(events.task_updated(task, changes, actor), exclude_actor=actor_id)
    return task


# ═════════════════════════════════════════════════════════════════════════════
# Stage moves
# ═════════════════════════════════════════════════════════════════════════════


def move_to(task_id, target_group_id, actor_id, new_owner_id=None):
    """Move a task into another group of its space.

    On success the open stage entry is sealed, the task switches group inside
    the same transaction, a new entry is opened, status resets to
    in_progress and a fresh due instant is computed for the target's
    estimated hours.

    Raises:
        ForbiddenError: actor is neither the task owner nor a space admin.
        NotFoundError: target group missing or in another space.
        DependencyUnsatisfiedError: the dependency graph denied entry; the
            task is left untouched.
    """
    actor = _get_actor(actor_id)
    now = _utcnow()

    with _transaction():
        task = _load_task_for_update(task_id)
        permission.require_task_manager(task, actor_id)
        target = get_scoped(Group, target_group_id, space_id=task.space_id)

        if target.id == task.current_group_id:
            raise InvalidStateError(f"Task is already in '{target.name}'")

        check = can_enter(target, task)
        if not check.allowed:
            logger.info(
                "Move of task %s to group %s denied: %s", task.id, target.id, check.reason,
                extra={"space_id": task.space_id, "task_id": task.id},
            )
            raise DependencyUnsatisfiedError(
                check.reason,
                blocking_group_id=check.blocking_group_id,
                blocking_group_name=check.blocking_group_name,
            )

        owner_id = task.owner_id
        if new_owner_id is not None:
            _validate_owner(task.space, new_owner_id)
            owner_id = new_owner_id

        calendar = calendar_for_space(task.space)
        from_group_id = task.current_group_id
        entry = task.open_stage_entry
        if entry is not None:
            hours_spent = _hours_excluding_pauses(
                entry.entered_at, now, entry.paused_seconds, task.pause_started_at,
            )
            outcome = completion_classifier.classify(now, entry.due_at, tz=calendar.tz)
            entry.seal(now, hours_spent, outcome.label)
            db.session.flush()

        task.current_group = target
        task.owner_id = owner_id
        task.status = "in_progress"
        _start_timeline(task, calendar, now, target.estimated_hours)
        _open_stage(task, target, owner_id, now, task.due_at, target.estimated_hours)
        _append_status(task, "in_progress", actor_id, now, f"Moved to {target.name}")
        db.session.flush()
        position = target.tasks.count()

    logger.info(
        "Task %s moved %s → %s", task.id, from_group_id, target.id,
        extra={"space_id": task.space_id, "task_id": task.id, "event_type": events.TASK_MOVED},
    )
    _publish(
        events.task_moved(task, from_group_id, target.id, position, actor),
        exclude_actor=actor_id,
    )
    return task
