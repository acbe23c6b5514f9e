"""
Task Blueprint — thin HTTP layer over the task lifecycle state machine.

Endpoints:
  Task:       GET/POST /spaces/<id>/tasks, GET/PUT/DELETE /tasks/<id>
  Lifecycle:  PUT /tasks/<id>/status    {"status", "notes"}
              PUT /tasks/<id>/move      {"group_id", "new_owner_id"}
              PUT /tasks/<id>/approval  {"decision" | "action", "notes"}
  Comments:   POST /tasks/<id>/comments {"body"}
"""

from flask import Blueprint, jsonify, request

from stageflow.middleware.jwt_auth import current_actor_id
from stageflow.services import task_lifecycle
from stageflow.utils.errors import E, api_error

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1")

# Accept the "approve"/"reject" verbs as well as the stored decision values
_APPROVAL_ACTIONS = {"approve": "approved", "reject": "rejected"}


@task_bp.route("/spaces/<int:space_id>/tasks", methods=["GET"])
def list_tasks(space_id):
    """List tasks, optionally filtered by ?group_id= and ?status=."""
    items = task_lifecycle.list_tasks(
        space_id,
        current_actor_id(),
        group_id=request.args.get("group_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"items": items, "total": len(items)})


@task_bp.route("/spaces/<int:space_id>/tasks", methods=["POST"])
def create_task(space_id):
    data = request.get_json(silent=True) or {}
    task = task_lifecycle.create_task(space_id, data, current_actor_id())
    return jsonify(task_lifecycle.task_snapshot(task, include_history=True)), 201


@task_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    include_history = request.args.get("include_history", "true").lower() != "false"
    return jsonify(task_lifecycle.get_task(task_id, current_actor_id(), include_history))


@task_bp.route("/tasks/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    data = request.get_json(silent=True) or {}
    task = task_lifecycle.update_task_details(task_id, data, current_actor_id())
    return jsonify(task_lifecycle.task_snapshot(task))


@task_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
def delete_task(task_id):
    task_lifecycle.delete_task(task_id, current_actor_id())
    return jsonify({"message": "Task deleted"}), 200


@task_bp.route("/tasks/<int:task_id>/status", methods=["PUT"])
def set_status(task_id):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    task = task_lifecycle.set_status(task_id, data["status"], current_actor_id(), data.get("notes"))
    return jsonify(task_lifecycle.task_snapshot(task, include_history=True))


@task_bp.route("/tasks/<int:task_id>/move", methods=["PUT"])
def move_task(task_id):
    data = request.get_json(silent=True) or {}
    if not data.get("group_id"):
        return api_error(E.VALIDATION_REQUIRED, "group_id is required")
    task = task_lifecycle.move_to(
        task_id, data["group_id"], current_actor_id(), new_owner_id=data.get("new_owner_id"),
    )
    return jsonify(task_lifecycle.task_snapshot(task, include_history=True))


@task_bp.route("/tasks/<int:task_id>/approval", methods=["PUT"])
def record_approval(task_id):
    data = request.get_json(silent=True) or {}
    decision = data.get("decision") or data.get("action")
    decision = _APPROVAL_ACTIONS.get(decision, decision)
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")
    task = task_lifecycle.record_approval(task_id, decision, current_actor_id(), data.get("notes"))
    return jsonify(task_lifecycle.task_snapshot(task, include_history=True))


@task_bp.route("/tasks/<int:task_id>/comments", methods=["POST"])
def add_comment(task_id):
    data = request.get_json(silent=True) or {}
    comment = task_lifecycle.add_comment(task_id, data.get("body"), current_actor_id())
    return jsonify(comment.to_dict()), 201
