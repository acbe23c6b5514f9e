"""
Stageflow
Workflow stage models.

Models:
    - Group:            ordered workflow stage within a space (kanban column)
    - GroupDependency:  stage → predecessor-stage edge, sequential or parallel

Architecture:
    Space ──1:N──▶ Group ──1:N──▶ GroupDependency ──N:1──▶ Group (same space)
    Group ──1:N──▶ Task   (active set: tasks whose current_group_id is the group)

Dependency semantics:
    sequential  the task must have exited the predecessor before entering
    parallel    informational only, no ordering constraint
"""

from datetime import datetime, timezone

from stageflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DEPENDENCY_TYPES = {"sequential", "parallel"}


class Group(db.Model):
    """
    Workflow stage. ``order`` is a 1-based display sequence kept gap-free by
    workflow_service; at most one group per space carries is_start_stage.
    """

    __tablename__ = "workflow_groups"

    id = db.Column(db.Integer, primary_key=True)
    space_id = db.Column(
        db.Integer, db.ForeignKey("spaces.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    order = db.Column(db.Integer, nullable=False, default=1)
    estimated_hours = db.Column(db.Float, nullable=False, default=0.0)

    is_start_stage = db.Column(db.Boolean, nullable=False, default=False)
    is_approval_gate = db.Column(db.Boolean, nullable=False, default=False)
    is_terminal_stage = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("estimated_hours >= 0", name="ck_group_estimated_hours"),
        db.Index("ix_workflow_groups_space_order", "space_id", "order"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    dependencies = db.relationship(
        "GroupDependency",
        foreign_keys="GroupDependency.group_id",
        backref="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="GroupDependency.id",
    )
    dependents = db.relationship(
        "GroupDependency",
        foreign_keys="GroupDependency.depends_on_id",
        backref="depends_on",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tasks = db.relationship(
        "Task", back_populates="current_group", lazy="dynamic",
        foreign_keys="Task.current_group_id", passive_deletes="all",
    )

    def sequential_predecessors(self):
        return [d for d in self.dependencies if d.dependency_type == "sequential"]

    def to_dict(self, include_tasks=False):
        result = {
            "id": self.id,
            "space_id": self.space_id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "estimated_hours": self.estimated_hours,
            "is_start_stage": self.is_start_stage,
            "is_approval_gate": self.is_approval_gate,
            "is_terminal_stage": self.is_terminal_stage,
            "dependencies": [d.to_dict() for d in self.dependencies],
            "task_count": self.tasks.count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_tasks:
            result["tasks"] = [t.to_dict() for t in self.tasks]
        return result

    def __repr__(self):
        return f"<Group {self.id}: #{self.order} {self.name}>"


class GroupDependency(db.Model):
    """Edge from a group to one of its predecessor groups in the same space."""

    __tablename__ = "group_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(
        db.Integer, db.ForeignKey("workflow_groups.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    depends_on_id = db.Column(
        db.Integer, db.ForeignKey("workflow_groups.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    dependency_type = db.Column(
        db.String(20), nullable=False, default="sequential",
        comment="sequential | parallel",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("group_id", "depends_on_id", name="uq_group_dependency"),
        db.CheckConstraint("group_id != depends_on_id", name="ck_group_dep_no_self_loop"),
        db.CheckConstraint(
            "dependency_type IN ('sequential','parallel')",
            name="ck_group_dep_type",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "group_id": self.group_id,
            "depends_on_id": self.depends_on_id,
            "depends_on_name": self.depends_on.name if self.depends_on else None,
            "dependency_type": self.dependency_type,
        }

    def __repr__(self):
        return f"<GroupDependency {self.depends_on_id} → {self.group_id} [{self.dependency_type}]>"
