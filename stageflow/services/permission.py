"""
Space capability checks.

Two roles exist inside a space: ``admin`` and ``member``. The space owner
(``Space.admin_id``) always has admin capability even without a membership
row. Actors from another tenant are never members.

    is_member(space, actor_id)          member, admin or owner
    is_admin(space, actor_id)           owner or admin-role member
    can_manage_task(task, actor_id)     task owner or space admin

The ``require_*`` variants raise ForbiddenError; services call those.
"""

import logging

from sqlalchemy import select

from stageflow.core.exceptions import ForbiddenError
from stageflow.models import db
from stageflow.models.auth import User
from stageflow.models.space import Space, SpaceMember

logger = logging.getLogger(__name__)


def _membership(space_id, actor_id):
    stmt = select(SpaceMember).where(
        SpaceMember.space_id == space_id, SpaceMember.user_id == actor_id,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _same_tenant(space, actor_id):
    user = db.session.get(User, actor_id)
    return user is not None and user.is_active and user.tenant_id == space.tenant_id


def is_member(space, actor_id) -> bool:
    if actor_id is None or not _same_tenant(space, actor_id):
        return False
    if space.admin_id == actor_id:
        return True
    return _membership(space.id, actor_id) is not None


def is_admin(space, actor_id) -> bool:
    if actor_id is None or not _same_tenant(space, actor_id):
        return False
    if space.admin_id == actor_id:
        return True
    member = _membership(space.id, actor_id)
    return member is not None and member.role == "admin"


def can_manage_task(task, actor_id) -> bool:
    if actor_id is not None and task.owner_id == actor_id and is_member(task.space, actor_id):
        return True
    return is_admin(task.space, actor_id)


def require_member(space, actor_id):
    if not is_member(space, actor_id):
        logger.info(
            "Actor %s denied access to space %s", actor_id, space.id,
            extra={"space_id": space.id},
        )
        raise ForbiddenError("Access denied to this space")


def require_admin(space, actor_id):
    if not is_admin(space, actor_id):
        raise ForbiddenError("Only a space admin can perform this action")


def require_task_manager(task, actor_id):
    if not can_manage_task(task, actor_id):
        raise ForbiddenError("Only the task owner or a space admin can change this task")


def space_authorizer(actor_id, space_id) -> bool:
    """Hub authorizer: actor is a member or owner of the space."""
    space = db.session.get(Space, space_id)
    return space is not None and is_member(space, actor_id)
