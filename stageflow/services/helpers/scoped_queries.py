"""
Space-scoped query helpers.

Every get-by-id in the engine goes through these helpers instead of
db.session.get(Model, pk). A group id that belongs to another space must be
indistinguishable from a missing group, otherwise a move or a dependency edge
could reach across the space boundary.

Usage:
    group = get_scoped(Group, group_id, space_id=task.space_id)
    space = get_scoped(Space, space_id, tenant_id=actor.tenant_id)
"""

import logging

from sqlalchemy import select

from stageflow.core.exceptions import NotFoundError
from stageflow.models import db

logger = logging.getLogger(__name__)

_SCOPE_KWARGS = ("space_id", "tenant_id", "task_id")


def _build_statement(model, pk, scopes):
    provided = {k: v for k, v in scopes.items() if v is not None}
    if not provided:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            f"({', '.join(_SCOPE_KWARGS)})."
        )

    missing = sorted(field for field in provided if not hasattr(model, field))
    if missing:
        raise ValueError(
            f"{model.__name__} has no scope column(s) {missing}; "
            "refusing to perform an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided.items():
        stmt = stmt.where(getattr(model, field) == value)
    return stmt, provided


def get_scoped(model, pk, *, space_id=None, tenant_id=None, task_id=None, for_update=False):
    """Fetch a single entity by PK with a mandatory scope filter.

    ``for_update=True`` adds SELECT ... FOR UPDATE so the row stays locked
    until the surrounding transaction ends (ignored by SQLite).

    Raises:
        ValueError: no scope supplied, or a scope column the model lacks.
        NotFoundError: missing, or present in a different scope.
    """
    stmt, provided = _build_statement(
        model, pk, {"space_id": space_id, "tenant_id": tenant_id, "task_id": task_id},
    )
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found in scope %s", model.__name__, pk, provided)
        raise NotFoundError(resource=model.__name__, resource_id=pk, space_id=space_id)
    return result

