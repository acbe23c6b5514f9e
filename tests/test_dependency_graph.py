"""
Dependency graph tests.

Covers:
    1. Start-style group with no edges is always enterable
    2. Sequential predecessor must be exited (sealed stage entry) first
    3. An open entry for the predecessor does not count
    4. Parallel edges never block
    5. Approval gate is evaluated before sequential predecessors
    6. Cycles make groups unenterable instead of looping
    7. would_create_cycle on the in-memory graph
"""

from datetime import datetime, timezone

from conftest import make_edge, make_group
from stageflow.models import db
from stageflow.models.task import Task, TaskStageEntry
from stageflow.services.dependency_graph import (
    APPROVAL_REQUIRED,
    DependencyGraph,
    can_enter,
    describe_dependencies,
)

T0 = datetime(2024, 1, 8, 9, tzinfo=timezone.utc)


def _task(space, group, approval_status="pending"):
    task = Task(
        space_id=space.id, current_group_id=group.id, title="Edit footage",
        status="in_progress", approval_status=approval_status, started_at=T0,
    )
    db.session.add(task)
    db.session.flush()
    return task


def _visit(task, group, sealed=True):
    entry = TaskStageEntry(
        task_id=task.id, group_id=group.id, group_name=group.name, entered_at=T0,
        exited_at=T0 if sealed else None, hours_spent=0.0 if sealed else None,
    )
    db.session.add(entry)
    task.stage_history.append(entry)
    db.session.flush()
    return entry


def test_group_without_edges_is_enterable(space):
    start = make_group(space, "Intake", 1, is_start_stage=True)
    other = make_group(space, "Backlog", 2)
    task = _task(space, start)
    check = can_enter(other, task)
    assert check.allowed is True
    assert check.reason is None


def test_sequential_predecessor_blocks_until_exited(space):
    script = make_group(space, "Script", 1, is_start_stage=True)
    shoot = make_group(space, "Shoot", 2)
    edit = make_group(space, "Edit", 3)
    make_edge(edit, shoot)
    task = _task(space, script)
    _visit(task, script)

    check = can_enter(edit, task)
    assert check.allowed is False
    assert check.blocking_group_id == shoot.id
    assert check.blocking_group_name == "Shoot"
    assert check.reason == "Task must complete 'Shoot' before entering 'Edit'"

    _visit(task, shoot)
    assert can_enter(edit, task).allowed is True


def test_open_entry_does_not_satisfy_predecessor(space):
    shoot = make_group(space, "Shoot", 1, is_start_stage=True)
    edit = make_group(space, "Edit", 2)
    make_edge(edit, shoot)
    task = _task(space, shoot)
    _visit(task, shoot, sealed=False)
    assert can_enter(edit, task).allowed is False


def test_parallel_edge_never_blocks(space):
    audio = make_group(space, "Audio", 1, is_start_stage=True)
    color = make_group(space, "Color", 2)
    make_edge(color, audio, "parallel")
    task = _task(space, audio)
    assert can_enter(color, task).allowed is True

    summary = describe_dependencies(color)
    assert summary["parallel"] == [{"group_id": audio.id, "name": "Audio"}]
    assert summary["sequential"] == []


def test_approval_gate_checked_first(space):
    draft = make_group(space, "Draft", 1, is_start_stage=True)
    legal = make_group(space, "Legal", 2)
    publish = make_group(space, "Publish", 3, is_approval_gate=True)
    make_edge(publish, legal)
    task = _task(space, draft)

    check = can_enter(publish, task)
    assert check.allowed is False
    assert check.reason == APPROVAL_REQUIRED

    task.approval_status = "approved"
    check = can_enter(publish, task)
    assert check.allowed is False
    assert check.blocking_group_id == legal.id


def test_cycle_makes_groups_unenterable(space):
    start = make_group(space, "Start", 1, is_start_stage=True)
    a = make_group(space, "A", 2)
    b = make_group(space, "B", 3)
    make_edge(a, b)
    make_edge(b, a)
    task = _task(space, start)
    assert can_enter(a, task).allowed is False
    assert can_enter(b, task).allowed is False


class TestWouldCreateCycle:
    def test_chain(self):
        graph = DependencyGraph(1, [(2, 1, "sequential"), (3, 2, "sequential")])
        assert graph.would_create_cycle(1, 3) is True
        assert graph.would_create_cycle(4, 3) is False

    def test_diamond_is_not_a_cycle(self):
        graph = DependencyGraph(1, [
            (2, 1, "sequential"), (3, 1, "sequential"), (4, 2, "sequential"),
        ])
        assert graph.would_create_cycle(4, 3) is False

    def test_parallel_edges_ignored(self):
        graph = DependencyGraph(1, [(2, 1, "parallel")])
        assert graph.would_create_cycle(1, 2) is False

    def test_self_edge(self):
        assert DependencyGraph(1).would_create_cycle(5, 5) is True

    def test_for_space_loads_edges(self, space):
        a = make_group(space, "A", 1)
        b = make_group(space, "B", 2)
        make_edge(b, a)
        graph = DependencyGraph.for_space(space.id)
        assert graph.sequential_predecessors(b.id) == [a.id]
        assert graph.would_create_cycle(a.id, b.id) is True
