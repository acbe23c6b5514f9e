"""
Workflow administration — spaces, memberships, groups and dependency edges.

Group ordering:
    ``Group.order`` is kept as a gap-free 1..n sequence per space. create
    appends, insert shifts the tail, reorder renumbers from an explicit id
    list and delete closes the gap.

Dependency edges:
    add_dependency rejects self-edges, cross-space targets (NotFoundError)
    and duplicates (ConflictError). With DEPENDENCY_CYCLE_CHECK enabled a
    sequential edge that closes a cycle raises ConfigurationError; with it
    disabled the edge is stored and the cycle simply makes its groups
    unenterable.
"""

import logging

from flask import current_app
from sqlalchemy import func, select

from stageflow.core.exceptions import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from stageflow.models import db
from stageflow.models.auth import User
from stageflow.models.space import MEMBER_ROLES, Space, SpaceMember
from stageflow.models.workflow import DEPENDENCY_TYPES, Group, GroupDependency
from stageflow.services import permission
from stageflow.services.dependency_graph import DependencyGraph
from stageflow.services.helpers.scoped_queries import get_scoped
from stageflow.services.working_calendar import (
    normalize_working_days,
    parse_working_window,
    resolve_timezone,
)
from stageflow.utils.helpers import parse_hours

logger = logging.getLogger(__name__)


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


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


def _get_group(group_id):
    group = db.session.get(Group, group_id)
    if group is None:
        raise NotFoundError(resource="Group", resource_id=group_id)
    return group


def _apply_calendar(space, data):
    """Validate and copy working-calendar fields from request data."""
    hours = data.get("working_hours") or {}
    start = hours.get("start", data.get("working_hours_start", space.working_hours_start))
    end = hours.get("end", data.get("working_hours_end", space.working_hours_end))
    window = parse_working_window(start, end)
    space.working_hours_start = f"{window.start:%H:%M}"
    space.working_hours_end = f"{window.end:%H:%M}"

    if "working_days" in data:
        space.working_days = sorted(normalize_working_days(data["working_days"]))
    if "timezone" in data:
        resolve_timezone(data["timezone"])
        space.timezone_name = data["timezone"]


def _ensure_single_start(space_id, exclude_group_id=None):
    stmt = select(Group).where(Group.space_id == space_id, Group.is_start_stage.is_(True))
    if exclude_group_id is not None:
        stmt = stmt.where(Group.id != exclude_group_id)
    existing = db.session.execute(stmt).scalars().first()
    if existing is not None:
        raise ConfigurationError(
            f"Space already has a start group ('{existing.name}')",
            details={"code": "DUPLICATE_START_GROUP", "start_group_id": existing.id},
        )


def _renumber(space_id):
    groups = db.session.execute(
        select(Group).where(Group.space_id == space_id).order_by(Group.order, Group.id)
    ).scalars().all()
    for position, group in enumerate(groups, start=1):
        group.order = position
    return groups


# ═════════════════════════════════════════════════════════════════════════════
# Spaces
# ═════════════════════════════════════════════════════════════════════════════


def list_spaces(actor_id):
    """Spaces the actor owns or belongs to."""
    actor = _get_actor(actor_id)
    member_space_ids = select(SpaceMember.space_id).where(SpaceMember.user_id == actor.id)
    stmt = (
        select(Space)
        .where(Space.tenant_id == actor.tenant_id)
        .where((Space.admin_id == actor.id) | Space.id.in_(member_space_ids))
        .order_by(Space.created_at.desc(), Space.id.desc())
    )
    return db.session.execute(stmt).scalars().all()


def create_space(data, actor_id):
    """Create a space in the actor's tenant; the creator becomes its admin."""
    actor = _get_actor(actor_id)
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"field": "name"})

    config = current_app.config
    space = Space(
        tenant_id=actor.tenant_id,
        name=name,
        description=data.get("description", ""),
        admin_id=actor.id,
        working_hours_start=config.get("DEFAULT_WORKING_HOURS_START", "09:00"),
        working_hours_end=config.get("DEFAULT_WORKING_HOURS_END", "17:00"),
        working_days=list(config.get("DEFAULT_WORKING_DAYS", [0, 1, 2, 3, 4])),
        timezone_name=config.get("DEFAULT_TIMEZONE", "UTC"),
        allow_parallel_tasks=bool(data.get("allow_parallel_tasks", True)),
    )
    _apply_calendar(space, data)

    db.session.add(space)
    db.session.flush()
    db.session.add(SpaceMember(space_id=space.id, user_id=actor.id, role="admin"))
    _commit()

    logger.info("Space %s created by %s", space.id, actor.id, extra={"space_id": space.id})
    return space


def get_space(space_id, actor_id):
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_member(space, actor_id)
    return space


def update_space(space_id, data, actor_id):
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_admin(space, actor_id)

    try:
        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("name must not be empty", details={"field": "name"})
            space.name = name
        if "description" in data:
            space.description = data["description"] or ""
        if "allow_parallel_tasks" in data:
            space.allow_parallel_tasks = bool(data["allow_parallel_tasks"])
        _apply_calendar(space, data)
    except Exception:
        db.session.rollback()
        raise
    _commit()
    return space


def delete_space(space_id, actor_id):
    """Delete a space with its groups, tasks, history and memberships."""
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_admin(space, actor_id)
    db.session.delete(space)
    _commit()
    logger.info("Space %s deleted by %s", space_id, actor_id, extra={"space_id": space_id})


def add_member(space_id, user_id, role, actor_id):
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_admin(space, actor_id)

    role = role or "member"
    if role not in MEMBER_ROLES:
        raise ValidationError(f"Invalid role {role!r}", details={"role": role})
    user = get_scoped(User, user_id, tenant_id=space.tenant_id)

    existing = db.session.execute(
        select(SpaceMember).where(SpaceMember.space_id == space.id, SpaceMember.user_id == user.id)
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("SpaceMember", "user_id", str(user.id))

    member = SpaceMember(space_id=space.id, user_id=user.id, role=role)
    db.session.add(member)
    _commit()
    return member


def remove_member(space_id, user_id, actor_id):
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_admin(space, actor_id)
    if user_id == space.admin_id:
        raise ValidationError("The space owner cannot be removed", details={"user_id": user_id})

    member = db.session.execute(
        select(SpaceMember).where(SpaceMember.space_id == space.id, SpaceMember.user_id == user_id)
    ).scalar_one_or_none()
    if member is None:
        raise NotFoundError(resource="SpaceMember", resource_id=user_id, space_id=space.id)
    db.session.delete(member)
    _commit()


# ═════════════════════════════════════════════════════════════════════════════
# Groups
# ═════════════════════════════════════════════════════════════════════════════


def list_groups(space_id, actor_id):
    space = get_space(space_id, actor_id)
    return space.groups.all()


def get_group(group_id, actor_id):
    group = _get_group(group_id)
    _get_actor(actor_id)
    permission.require_member(group.space, actor_id)
    return group


def _group_from_data(space, data, order):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"field": "name"})
    return Group(
        space_id=space.id,
        name=name,
        description=data.get("description", ""),
        order=order,
        estimated_hours=parse_hours(data.get("estimated_hours")),
        is_start_stage=bool(data.get("is_start_stage", False)),
        is_approval_gate=bool(data.get("is_approval_gate", False)),
        is_terminal_stage=bool(data.get("is_terminal_stage", False)),
    )


def _add_initial_dependencies(group, dependencies):
    for dep in dependencies or []:
        _add_edge(group, dep.get("group_id"), dep.get("type") or dep.get("dependency_type"))


def create_group(space_id, data, actor_id):
    """Append a group at the end of the space's order.

    Raises:
        ConfigurationError: a second start group in the space, or a cyclic edge.
    """
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_admin(space, actor_id)

    last = db.session.execute(
        select(func.max(Group.order)).where(Group.space_id == space.id)
    ).scalar()
    group = _group_from_data(space, data, (last or 0) + 1)
    try:
        if group.is_start_stage:
            _ensure_single_start(space.id)
        db.session.add(group)
        db.session.flush()
        _add_initial_dependencies(group, data.get("dependencies"))
    except Exception:
        db.session.rollback()
        raise
    _commit()

    logger.info(
        "Group %s '%s' created at #%d", group.id, group.name, group.order,
        extra={"space_id": space.id},
    )
    return group


def insert_group(space_id, data, actor_id):
    """Insert a group after ``insert_after`` (None → at the beginning).

    Inserted groups are never start groups.
    """
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_admin(space, actor_id)

    insert_after = data.get("insert_after")
    try:
        if insert_after:
            previous = get_scoped(Group, insert_after, space_id=space.id)
            order = previous.order + 1
        else:
            order = 1

        for group in space.groups.filter(Group.order >= order).all():
            group.order += 1

        new_group = _group_from_data(space, data, order)
        new_group.is_start_stage = False
        db.session.add(new_group)
        db.session.flush()
        _add_initial_dependencies(new_group, data.get("dependencies"))
    except Exception:
        db.session.rollback()
        raise
    _commit()
    return new_group


def reorder_groups(space_id, group_ids, actor_id):
    """Renumber the space's groups to follow ``group_ids`` (a full permutation)."""
    space = _get_space(space_id)
    _get_actor(actor_id)
    permission.require_admin(space, actor_id)

    groups = {g.id: g for g in space.groups.all()}
    if not group_ids or sorted(group_ids) != sorted(groups):
        raise ValidationError(
            "group_ids must list every group of the space exactly once",
            details={"expected": sorted(groups), "received": group_ids},
        )
    for position, group_id in enumerate(group_ids, start=1):
        groups[group_id].order = position
    _commit()
    return [groups[g] for g in group_ids]


def update_group(group_id, data, actor_id):
    group = _get_group(group_id)
    _get_actor(actor_id)
    permission.require_admin(group.space, actor_id)

    try:
        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("name must not be empty", details={"field": "name"})
            group.name = name
        if "description" in data:
            group.description = data["description"] or ""
        if "estimated_hours" in data:
            group.estimated_hours = parse_hours(data["estimated_hours"])
        if data.get("is_start_stage") and not group.is_start_stage:
            _ensure_single_start(group.space_id, exclude_group_id=group.id)
        for flag in ("is_start_stage", "is_approval_gate", "is_terminal_stage"):
            if flag in data:
                setattr(group, flag, bool(data[flag]))
    except Exception:
        db.session.rollback()
        raise
    _commit()
    return group


def delete_group(group_id, actor_id):
    """Delete an empty group; its edges go with it and the order gap closes.

    Raises:
        InvalidStateError: the group still holds tasks.
    """
    group = _get_group(group_id)
    _get_actor(actor_id)
    permission.require_admin(group.space, actor_id)

    task_count = group.tasks.count()
    if task_count:
        raise InvalidStateError(
            "Cannot delete group with tasks. Move or complete all tasks first.",
            details={"task_count": task_count},
        )

    space_id = group.space_id
    db.session.delete(group)
    db.session.flush()
    _renumber(space_id)
    _commit()
    logger.info("Group %s deleted", group_id, extra={"space_id": space_id})


# ═════════════════════════════════════════════════════════════════════════════
# Dependency edges
# ═════════════════════════════════════════════════════════════════════════════


def _add_edge(group, depends_on_id, dependency_type):
    dependency_type = dependency_type or "sequential"
    if dependency_type not in DEPENDENCY_TYPES:
        raise ValidationError(
            f"Invalid dependency type {dependency_type!r}",
            details={"dependency_type": dependency_type},
        )
    if depends_on_id is None:
        raise ValidationError("depends_on_id is required", details={"field": "depends_on_id"})
    if depends_on_id == group.id:
        raise ConfigurationError("A group cannot depend on itself", details={"group_id": group.id})

    predecessor = get_scoped(Group, depends_on_id, space_id=group.space_id)

    duplicate = db.session.execute(
        select(GroupDependency).where(
            GroupDependency.group_id == group.id,
            GroupDependency.depends_on_id == predecessor.id,
        )
    ).scalar_one_or_none()
    if duplicate is not None:
        raise ConflictError("GroupDependency", "depends_on_id", str(predecessor.id))

    if dependency_type == "sequential" and current_app.config.get("DEPENDENCY_CYCLE_CHECK", True):
        graph = DependencyGraph.for_space(group.space_id)
        if graph.would_create_cycle(group.id, predecessor.id):
            raise ConfigurationError(
                f"Dependency '{predecessor.name}' → '{group.name}' would create a cycle",
                details={"group_id": group.id, "depends_on_id": predecessor.id},
            )

    edge = GroupDependency(
        group_id=group.id, depends_on_id=predecessor.id, dependency_type=dependency_type,
    )
    db.session.add(edge)
    group.dependencies.append(edge)
    db.session.flush()
    return edge


def add_dependency(group_id, depends_on_id, dependency_type, actor_id):
    group = _get_group(group_id)
    _get_actor(actor_id)
    permission.require_admin(group.space, actor_id)
    try:
        edge = _add_edge(group, depends_on_id, dependency_type)
    except Exception:
        db.session.rollback()
        raise
    _commit()
    logger.info(
        "Dependency %s → %s (%s) added", edge.depends_on_id, edge.group_id, edge.dependency_type,
        extra={"space_id": group.space_id},
    )
    return edge


def remove_dependency(group_id, depends_on_id, actor_id):
    group = _get_group(group_id)
    _get_actor(actor_id)
    permission.require_admin(group.space, actor_id)

    edge = db.session.execute(
        select(GroupDependency).where(
            GroupDependency.group_id == group.id,
            GroupDependency.depends_on_id == depends_on_id,
        )
    ).scalar_one_or_none()
    if edge is None:
        raise NotFoundError(resource="GroupDependency", resource_id=depends_on_id)
    group.dependencies.remove(edge)
    db.session.delete(edge)
    _commit()
