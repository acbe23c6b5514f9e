"""
Space Blueprint — spaces and memberships.

Endpoints:
  Space:        GET/POST /spaces, GET/PUT/DELETE /spaces/<id>
  SpaceMember:  POST /spaces/<id>/members, DELETE /spaces/<id>/members/<user_id>
"""

from flask import Blueprint, jsonify, request

from stageflow.middleware.jwt_auth import current_actor_id
from stageflow.services import workflow_service
from stageflow.utils.errors import E, api_error

space_bp = Blueprint("spaces", __name__, url_prefix="/api/v1")


@space_bp.route("/spaces", methods=["GET"])
def list_spaces():
    spaces = workflow_service.list_spaces(current_actor_id())
    return jsonify({"items": [s.to_dict() for s in spaces], "total": len(spaces)})


@space_bp.route("/spaces", methods=["POST"])
def create_space():
    """Create a space; the caller becomes its admin."""
    data = request.get_json(silent=True) or {}
    space = workflow_service.create_space(data, current_actor_id())
    return jsonify(space.to_dict(include_children=True)), 201


@space_bp.route("/spaces/<int:space_id>", methods=["GET"])
def get_space(space_id):
    space = workflow_service.get_space(space_id, current_actor_id())
    return jsonify(space.to_dict(include_children=True))


@space_bp.route("/spaces/<int:space_id>", methods=["PUT"])
def update_space(space_id):
    data = request.get_json(silent=True) or {}
    space = workflow_service.update_space(space_id, data, current_actor_id())
    return jsonify(space.to_dict())


@space_bp.route("/spaces/<int:space_id>", methods=["DELETE"])
def delete_space(space_id):
    workflow_service.delete_space(space_id, current_actor_id())
    return jsonify({"message": "Space deleted"}), 200


@space_bp.route("/spaces/<int:space_id>/members", methods=["POST"])
def add_member(space_id):
    data = request.get_json(silent=True) or {}
    if not data.get("user_id"):
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    member = workflow_service.add_member(
        space_id, data["user_id"], data.get("role"), current_actor_id(),
    )
    return jsonify(member.to_dict()), 201


@space_bp.route("/spaces/<int:space_id>/members/<int:user_id>", methods=["DELETE"])
def remove_member(space_id, user_id):
    workflow_service.remove_member(space_id, user_id, current_actor_id())
    return jsonify({"message": "Member removed"}), 200
