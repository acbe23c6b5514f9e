"""
Group Blueprint — workflow stages and their dependency edges.

Endpoints:
  Group:            GET/POST /spaces/<id>/groups
                    POST /spaces/<id>/groups/insert
                    PUT  /spaces/<id>/groups/reorder
                    GET/PUT/DELETE /groups/<id>
  GroupDependency:  POST /groups/<id>/dependencies
                    DELETE /groups/<id>/dependencies/<depends_on_id>
"""

from flask import Blueprint, jsonify, request

from stageflow.middleware.jwt_auth import current_actor_id
from stageflow.services import workflow_service
from stageflow.services.dependency_graph import describe_dependencies
from stageflow.utils.errors import E, api_error

group_bp = Blueprint("groups", __name__, url_prefix="/api/v1")


@group_bp.route("/spaces/<int:space_id>/groups", methods=["GET"])
def list_groups(space_id):
    groups = workflow_service.list_groups(space_id, current_actor_id())
    return jsonify({"items": [g.to_dict() for g in groups], "total": len(groups)})


@group_bp.route("/spaces/<int:space_id>/groups", methods=["POST"])
def create_group(space_id):
    data = request.get_json(silent=True) or {}
    group = workflow_service.create_group(space_id, data, current_actor_id())
    return jsonify(group.to_dict()), 201


@group_bp.route("/spaces/<int:space_id>/groups/insert", methods=["POST"])
def insert_group(space_id):
    """Insert after ``insert_after`` (group id) or at the beginning when omitted."""
    data = request.get_json(silent=True) or {}
    group = workflow_service.insert_group(space_id, data, current_actor_id())
    return jsonify(group.to_dict()), 201


@group_bp.route("/spaces/<int:space_id>/groups/reorder", methods=["PUT"])
def reorder_groups(space_id):
    data = request.get_json(silent=True) or {}
    group_ids = data.get("group_ids")
    if not isinstance(group_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "group_ids list is required")
    groups = workflow_service.reorder_groups(space_id, group_ids, current_actor_id())
    return jsonify({"items": [g.to_dict() for g in groups], "total": len(groups)})


@group_bp.route("/groups/<int:group_id>", methods=["GET"])
def get_group(group_id):
    group = workflow_service.get_group(group_id, current_actor_id())
    result = group.to_dict(include_tasks=True)
    result["dependency_summary"] = describe_dependencies(group)
    return jsonify(result)


@group_bp.route("/groups/<int:group_id>", methods=["PUT"])
def update_group(group_id):
    data = request.get_json(silent=True) or {}
    group = workflow_service.update_group(group_id, data, current_actor_id())
    return jsonify(group.to_dict())


@group_bp.route("/groups/<int:group_id>", methods=["DELETE"])
def delete_group(group_id):
    workflow_service.delete_group(group_id, current_actor_id())
    return jsonify({"message": "Group deleted"}), 200


@group_bp.route("/groups/<int:group_id>/dependencies", methods=["POST"])
def add_dependency(group_id):
    data = request.get_json(silent=True) or {}
    if not data.get("depends_on_id"):
        return api_error(E.VALIDATION_REQUIRED, "depends_on_id is required")
    edge = workflow_service.add_dependency(
        group_id, data["depends_on_id"], data.get("dependency_type", "sequential"),
        current_actor_id(),
    )
    return jsonify(edge.to_dict()), 201


@group_bp.route("/groups/<int:group_id>/dependencies/<int:depends_on_id>", methods=["DELETE"])
def remove_dependency(group_id, depends_on_id):
    workflow_service.remove_dependency(group_id, depends_on_id, current_actor_id())
    return jsonify({"message": "Dependency removed"}), 200
