"""
Stageflow
Space domain models.

Models:
    - Space:        tenant-scoped workspace; owns its working calendar,
                    workflow groups and tasks
    - SpaceMember:  user ↔ space membership with a role

Architecture:
    Tenant ──1:N──▶ Space ──1:N──▶ Group
                          ──1:N──▶ Task
                          ──1:N──▶ SpaceMember

Working calendar:
    working_hours_start / working_hours_end are "HH:MM" strings interpreted in
    the space's IANA ``timezone``. working_days holds Python weekday numbers
    (0 = Monday … 6 = Sunday).
"""

from datetime import datetime, timezone

from stageflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

MEMBER_ROLES = {"admin", "member"}

DEFAULT_WORKING_HOURS_START = "09:00"
DEFAULT_WORKING_HOURS_END = "17:00"
DEFAULT_WORKING_DAYS = [0, 1, 2, 3, 4]


class Space(db.Model):
    """
    Tenant-isolated workspace. Deleting a space cascades to its groups,
    tasks (and thereby task history) and memberships.
    """

    __tablename__ = "spaces"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    admin_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, comment="Space owner; always has admin capability",
    )

    # Working calendar
    working_hours_start = db.Column(db.String(5), default=DEFAULT_WORKING_HOURS_START)
    working_hours_end = db.Column(db.String(5), default=DEFAULT_WORKING_HOURS_END)
    working_days = db.Column(
        db.JSON, default=lambda: list(DEFAULT_WORKING_DAYS),
        comment="Python weekday numbers, 0 = Monday",
    )
    timezone_name = db.Column("timezone", db.String(64), default="UTC")

    allow_parallel_tasks = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ────────────────────────────────────────────────────
    tenant = db.relationship("Tenant", back_populates="spaces")
    admin = db.relationship("User", foreign_keys=[admin_id])
    members = db.relationship(
        "SpaceMember", backref="space", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    groups = db.relationship(
        "Group", backref="space", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="Group.order",
    )
    tasks = db.relationship(
        "Task", backref="space", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def start_group(self):
        """Return the space's unique start group, or None."""
        return self.groups.filter_by(is_start_stage=True).first()

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "admin_id": self.admin_id,
            "working_hours": {
                "start": self.working_hours_start,
                "end": self.working_hours_end,
            },
            "working_days": list(self.working_days or []),
            "timezone": self.timezone_name,
            "allow_parallel_tasks": self.allow_parallel_tasks,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "group_count": self.groups.count(),
            "task_count": self.tasks.count(),
        }
        if include_children:
            result["groups"] = [g.to_dict() for g in self.groups]
            result["members"] = [m.to_dict() for m in self.members]
        return result

    def __repr__(self):
        return f"<Space {self.id}: {self.name}>"


class SpaceMember(db.Model):
    __tablename__ = "space_members"

    id = db.Column(db.Integer, primary_key=True)
    space_id = db.Column(
        db.Integer, db.ForeignKey("spaces.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=False, default="member")
    joined_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("space_id", "user_id", name="uq_space_member"),
        db.CheckConstraint("role IN ('admin','member')", name="ck_space_member_role"),
    )

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "space_id": self.space_id,
            "user_id": self.user_id,
            "name": self.user.display_name if self.user else None,
            "role": self.role,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }

    def __repr__(self):
        return f"<SpaceMember space={self.space_id} user={self.user_id} [{self.role}]>"
