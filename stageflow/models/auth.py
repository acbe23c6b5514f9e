"""
Identity models — Tenant (organization) and User.

Credentials, sessions and token issuance live outside this service; these
rows only anchor tenant scoping and give actors a display name for events
and history entries.
"""

from datetime import datetime, timezone

from stageflow.models import db


class Tenant(db.Model):
    """An organization. Owns users and spaces."""

    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    users = db.relationship(
        "User", back_populates="tenant", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    spaces = db.relationship(
        "Space", back_populates="tenant", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Tenant {self.id}: {self.slug}>"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    avatar_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
    )

    tenant = db.relationship("Tenant", back_populates="users")

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def to_actor(self) -> dict:
        """Compact identity used in event payloads."""
        return {"id": self.id, "name": self.display_name}

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
