"""
Realtime Blueprint — Server-Sent Events stream and presence signals.

Endpoints:
  GET  /spaces/<id>/events     SSE stream (auth via header or ?access_token=)
  GET  /spaces/<id>/presence   actors currently connected to the space
  POST /spaces/<id>/typing     {"task_id", "typing": true|false}

Each stream is its own hub connection. It subscribes on open and disconnects
when the client goes away; presence-leave reaches the rest of the space once
the actor's last stream in it has closed. The database session is released
before streaming starts.
"""

import logging
import queue

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from stageflow.core.exceptions import ForbiddenError
from stageflow.middleware.jwt_auth import current_actor_id
from stageflow.models import db
from stageflow.models.auth import User
from stageflow.models.task import Task
from stageflow.services import events, workflow_service
from stageflow.services.broadcast_hub import get_hub
from stageflow.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

realtime_bp = Blueprint("realtime", __name__, url_prefix="/api/v1")


@realtime_bp.route("/spaces/<int:space_id>/events", methods=["GET"])
def stream_events(space_id):
    actor_id = current_actor_id()
    hub = get_hub()
    user = db.session.get(User, actor_id)

    observer = hub.connect(actor_id, user.display_name if user else None)
    try:
        hub.subscribe(observer, space_id)
    except ForbiddenError:
        hub.disconnect(observer)
        raise
    db.session.remove()
    heartbeat = current_app.config.get("SSE_HEARTBEAT_SECONDS", 15)

    def generate():
        try:
            while True:
                try:
                    event = observer.get(timeout=heartbeat)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                if event is None:
                    break
                yield event.to_sse()
        finally:
            hub.disconnect(observer)
            logger.info(
                "SSE stream %s closed for actor %s", observer.id, actor_id, extra={"space_id": space_id},
            )

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@realtime_bp.route("/spaces/<int:space_id>/presence", methods=["GET"])
def list_presence(space_id):
    workflow_service.get_space(space_id, current_actor_id())
    users = get_hub().online_actors(space_id)
    return jsonify({"users": users, "total": len(users)})


@realtime_bp.route("/spaces/<int:space_id>/typing", methods=["POST"])
def typing(space_id):
    data = request.get_json(silent=True) or {}
    actor_id = current_actor_id()
    task_id = data.get("task_id")
    if task_id is not None:
        get_scoped(Task, task_id, space_id=space_id)

    event = events.typing(space_id, task_id, actor_id, started=bool(data.get("typing", True)))
    delivered = get_hub().publish(space_id, event, actor_id=actor_id, exclude_actor=actor_id)
    return jsonify({"delivered": delivered})
