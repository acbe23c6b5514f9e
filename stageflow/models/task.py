"""
Stageflow
Task domain models.

Models:
    - Task:             unit of work; current group, status, approval and timeline
    - TaskStatusEntry:  append-only status log (status, actor, instant, note)
    - TaskStageEntry:   per-stage log; open while the task sits in the stage,
                        sealed exactly once when it leaves
    - TaskComment:      discussion thread entry

Architecture:
    Space ──1:N──▶ Task ──1:N──▶ TaskStatusEntry
                        ──1:N──▶ TaskStageEntry ──N:1──▶ Group
                        ──1:N──▶ TaskComment
    Task ──N:1──▶ Group (current_group)

Lifecycle states:
    in_progress → paused | completed
    paused      → in_progress
    completed   → approved | rejected   (approval-gate groups only)
    rejected    → in_progress           (rework)
    approved    → (none; a stage move resets to in_progress)

Invariants:
    - exactly one open TaskStageEntry per task (partial unique index)
    - TaskStatusEntry rows are never updated
    - TaskStageEntry rows only ever change by sealing an open entry
"""

from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect

from stageflow.core.exceptions import InvalidStateError
from stageflow.models import db
from stageflow.utils.helpers import ensure_utc, isoformat_utc


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = {"in_progress", "paused", "completed", "approved", "rejected"}

APPROVAL_STATUSES = {"pending", "approved", "rejected"}

CLASSIFICATIONS = {"early", "on_time", "late", "in_progress"}

TASK_PRIORITIES = {"low", "medium", "high", "urgent"}

# Statuses that only record_approval may set
APPROVAL_DECISIONS = {"approved", "rejected"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

TASK_STATUS_TRANSITIONS = {
    "in_progress": ["paused", "completed"],
    "paused":      ["in_progress"],
    "completed":   ["approved", "rejected"],
    "rejected":    ["in_progress"],
    "approved":    [],
}


def validate_status_transition(old_status, new_status):
    """Return True if the Task status transition is valid."""
    return new_status in TASK_STATUS_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# 1. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    space_id = db.Column(
        db.Integer, db.ForeignKey("spaces.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    current_group_id = db.Column(
        db.Integer, db.ForeignKey("workflow_groups.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    owner_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(10), nullable=False, default="medium")

    status = db.Column(
        db.String(20), nullable=False, default="in_progress",
        comment="in_progress | paused | completed | approved | rejected",
    )

    # Approval
    approval_status = db.Column(db.String(20), nullable=False, default="pending")
    approved_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    approval_notes = db.Column(db.Text, nullable=True)

    # Timeline: reset on every stage entry
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    pause_started_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="Set while paused; cleared on resume",
    )
    paused_seconds = db.Column(db.Float, nullable=False, default=0.0)
    estimated_hours = db.Column(db.Float, nullable=False, default=0.0)
    actual_hours = db.Column(db.Float, nullable=False, default=0.0)

    # Outcome
    classification = db.Column(
        db.String(20), nullable=False, default="in_progress",
        comment="early | on_time | late | in_progress",
    )
    delay_hours = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('in_progress','paused','completed','approved','rejected')",
            name="ck_task_status",
        ),
        db.CheckConstraint(
            "approval_status IN ('pending','approved','rejected')",
            name="ck_task_approval_status",
        ),
        db.CheckConstraint(
            "classification IN ('early','on_time','late','in_progress')",
            name="ck_task_classification",
        ),
        db.CheckConstraint("delay_hours >= 0", name="ck_task_delay_non_negative"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    current_group = db.relationship(
        "Group", back_populates="tasks", foreign_keys=[current_group_id],
    )
    owner = db.relationship("User", foreign_keys=[owner_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])
    status_history = db.relationship(
        "TaskStatusEntry", backref="task",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="TaskStatusEntry.id",
    )
    stage_history = db.relationship(
        "TaskStageEntry", backref="task",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="TaskStageEntry.id",
    )
    comments = db.relationship(
        "TaskComment", backref="task",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="TaskComment.id",
    )

    @property
    def open_stage_entry(self):
        """The single unsealed stage entry (the one for current_group)."""
        for entry in self.stage_history:
            if entry.is_open:
                return entry
        return None

    def has_exited(self, group_id):
        """True if the stage history holds a sealed entry for ``group_id``."""
        return any(e.group_id == group_id and not e.is_open for e in self.stage_history)

    def to_dict(self, include_history=False):
        result = {
            "id": self.id,
            "space_id": self.space_id,
            "current_group_id": self.current_group_id,
            "current_group_name": self.current_group.name if self.current_group else None,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "owner_id": self.owner_id,
            "status": self.status,
            "approval_status": self.approval_status,
            "approved_by_id": self.approved_by_id,
            "approval_notes": self.approval_notes,
            "timeline": {
                "started_at": isoformat_utc(self.started_at),
                "due_at": isoformat_utc(self.due_at),
                "completed_at": isoformat_utc(self.completed_at),
                "pause_started_at": isoformat_utc(self.pause_started_at),
                "paused_hours": round((self.paused_seconds or 0.0) / 3600.0, 4),
                "estimated_hours": self.estimated_hours,
                "actual_hours": self.actual_hours,
            },
            "classification": self.classification,
            "delay_hours": self.delay_hours,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }
        if include_history:
            result["status_history"] = [e.to_dict() for e in self.status_history]
            result["stage_history"] = [e.to_dict() for e in self.stage_history]
            result["comments"] = [c.to_dict() for c in self.comments]
        return result

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. TaskStatusEntry — append-only
# ═════════════════════════════════════════════════════════════════════════════


class TaskStatusEntry(db.Model):
    __tablename__ = "task_status_entries"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False)
    actor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    actor = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "status": self.status,
            "actor_id": self.actor_id,
            "actor_name": self.actor.display_name if self.actor else None,
            "notes": self.notes,
            "created_at": isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f"<TaskStatusEntry task={self.task_id} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. TaskStageEntry — open/sealed
# ═════════════════════════════════════════════════════════════════════════════


class TaskStageEntry(db.Model):
    """
    One visit of a task to a group. ``exited_at`` is NULL while the task is
    in the group (open); ``seal()`` back-fills the exit fields exactly once.

    While open, ``due_at`` follows the task's timeline (a rework restarts it)
    and ``paused_seconds`` accumulates every pause taken during the visit.
    """

    __tablename__ = "task_stage_entries"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    group_id = db.Column(
        db.Integer, db.ForeignKey("workflow_groups.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    group_name = db.Column(
        db.String(200), default="",
        comment="Snapshot so history stays readable after the group is deleted",
    )
    owner_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    entered_at = db.Column(db.DateTime(timezone=True), nullable=False)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_hours = db.Column(db.Float, nullable=False, default=0.0)
    paused_seconds = db.Column(db.Float, nullable=False, default=0.0)

    # Sealing fields
    exited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    hours_spent = db.Column(db.Float, nullable=True)
    classification = db.Column(db.String(20), nullable=True)

    __table_args__ = (
        db.Index(
            "uq_task_stage_entries_open",
            "task_id",
            unique=True,
            sqlite_where=db.text("exited_at IS NULL"),
            postgresql_where=db.text("exited_at IS NULL"),
        ),
    )

    group = db.relationship("Group")

    @property
    def is_open(self):
        return self.exited_at is None

    def seal(self, exited_at, hours_spent, classification):
        """Close the entry. Raises InvalidStateError if already sealed."""
        if not self.is_open:
            raise InvalidStateError(
                f"Stage entry {self.id} for group {self.group_name!r} is already closed"
            )
        self.exited_at = ensure_utc(exited_at)
        self.hours_spent = hours_spent
        self.classification = classification

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "owner_id": self.owner_id,
            "entered_at": isoformat_utc(self.entered_at),
            "due_at": isoformat_utc(self.due_at),
            "estimated_hours": self.estimated_hours,
            "paused_hours": round((self.paused_seconds or 0.0) / 3600.0, 4),
            "exited_at": isoformat_utc(self.exited_at),
            "hours_spent": self.hours_spent,
            "classification": self.classification,
            "is_open": self.is_open,
        }

    def __repr__(self):
        state = "open" if self.is_open else "sealed"
        return f"<TaskStageEntry task={self.task_id} group={self.group_id} [{state}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. TaskComment
# ═════════════════════════════════════════════════════════════════════════════


class TaskComment(db.Model):
    __tablename__ = "task_comments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    author_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    body = db.Column(db.Text, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "author": self.author.to_actor() if self.author else None,
            "body": self.body,
            "timestamp": isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f"<TaskComment {self.id} task={self.task_id}>"


# ── History guards ───────────────────────────────────────────────────────────

_STAGE_ENTRY_SEAL_FIELDS = {"exited_at", "hours_spent", "classification"}
# Running fields an open entry may still update
_STAGE_ENTRY_OPEN_FIELDS = {"due_at", "paused_seconds"}


@event.listens_for(TaskStatusEntry, "before_update")
def _reject_status_entry_update(mapper, connection, target):
    """Status history is append-only."""
    raise InvalidStateError(f"Status history entry {target.id} cannot be modified")


@event.listens_for(TaskStageEntry, "before_update")
def _guard_stage_entry_update(mapper, connection, target):
    """Only an open entry may change, and only its sealing or running fields."""
    state = sa_inspect(target)
    exited = state.attrs["exited_at"].history
    previous_exit = exited.deleted[0] if exited.deleted else (
        None if exited.has_changes() else target.exited_at
    )
    if previous_exit is not None:
        raise InvalidStateError(f"Stage entry {target.id} is already closed")

    for attr in mapper.column_attrs:
        if attr.key in _STAGE_ENTRY_SEAL_FIELDS or attr.key in _STAGE_ENTRY_OPEN_FIELDS:
            continue
        if state.attrs[attr.key].history.has_changes():
            raise InvalidStateError(
                f"Stage entry {target.id}: field {attr.key!r} is immutable"
            )
