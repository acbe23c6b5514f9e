"""
Dependency graph — may a task enter a group?

    can_enter(target_group, task) → DependencyCheck(allowed, reason, blocking_group_id)

Rules, evaluated in order:
    1. approval gate and task.approval_status != "approved"  → deny "approval required"
    2. every sequential predecessor P needs a sealed stage entry for P on the task
    3. parallel edges impose nothing (see describe_dependencies)
    4. allow

The check only asks "has this task closed out P", so it stays well defined
even when the edges contain a cycle: the groups on the cycle just become
unenterable. Edge insertion can reject cycles up front via
``would_create_cycle`` (see workflow_service.add_dependency).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select

from stageflow.models import db
from stageflow.models.workflow import Group, GroupDependency

logger = logging.getLogger(__name__)

APPROVAL_REQUIRED = "approval required"


@dataclass(frozen=True)
class DependencyCheck:
    allowed: bool
    reason: str | None = None
    blocking_group_id: int | None = None
    blocking_group_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "blocking_group_id": self.blocking_group_id,
            "blocking_group_name": self.blocking_group_name,
        }


def can_enter(target_group, task) -> DependencyCheck:
    """Decide whether ``task`` may move into ``target_group``."""
    if target_group.is_approval_gate and task.approval_status != "approved":
        return DependencyCheck(False, APPROVAL_REQUIRED)

    for edge in target_group.sequential_predecessors():
        if not task.has_exited(edge.depends_on_id):
            predecessor = edge.depends_on
            name = predecessor.name if predecessor else str(edge.depends_on_id)
            logger.debug(
                "Task %s blocked from group %s by predecessor %s",
                task.id, target_group.id, edge.depends_on_id,
                extra={"task_id": task.id, "space_id": task.space_id},
            )
            return DependencyCheck(
                False,
                f"Task must complete '{name}' before entering '{target_group.name}'",
                blocking_group_id=edge.depends_on_id,
                blocking_group_name=name,
            )

    return DependencyCheck(True)


def describe_dependencies(group) -> dict:
    """Display summary of a group's incoming edges, split by type."""
    summary = {"sequential": [], "parallel": []}
    for edge in group.dependencies:
        summary[edge.dependency_type].append({
            "group_id": edge.depends_on_id,
            "name": edge.depends_on.name if edge.depends_on else None,
        })
    summary["is_approval_gate"] = group.is_approval_gate
    return summary


class DependencyGraph:
    """Adjacency structure over one space's groups.

    ``predecessors[g]`` holds (depends_on_id, dependency_type) pairs for the
    edges pointing into group g.
    """

    def __init__(self, space_id, edges=()):
        self.space_id = space_id
        self.predecessors = defaultdict(list)
        for group_id, depends_on_id, dependency_type in edges:
            self.add_edge(group_id, depends_on_id, dependency_type)

    @classmethod
    def for_space(cls, space_id):
        stmt = (
            select(GroupDependency.group_id, GroupDependency.depends_on_id,
                   GroupDependency.dependency_type)
            .join(Group, Group.id == GroupDependency.group_id)
            .where(Group.space_id == space_id)
        )
        return cls(space_id, db.session.execute(stmt).all())

    def add_edge(self, group_id, depends_on_id, dependency_type="sequential"):
        self.predecessors[group_id].append((depends_on_id, dependency_type))

    def sequential_predecessors(self, group_id):
        return [p for p, kind in self.predecessors.get(group_id, []) if kind == "sequential"]

    def would_create_cycle(self, group_id, depends_on_id):
        """True if adding sequential edge depends_on_id → group_id closes a cycle.

        Iterative DFS from the new predecessor, walking backwards through the
        existing sequential predecessor chains; reaching ``group_id`` means
        the group would (transitively) depend on itself.
        """
        if group_id == depends_on_id:
            return True

        visited = set()
        stack = [depends_on_id]
        while stack:
            current = stack.pop()
            if current == group_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self.sequential_predecessors(current))
        return False

    def __repr__(self):
        edge_count = sum(len(v) for v in self.predecessors.values())
        return f"<DependencyGraph space={self.space_id} edges={edge_count}>"
