"""
Realtime event envelopes and builders.

Every event travels as:

    {"type": "task-moved", "space_id": 7, "payload": {...}, "timestamp": "…Z"}

The hyphenated type names are the wire contract consumed by clients.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone

TASK_CREATED = "task-created"
TASK_UPDATED = "task-updated"
TASK_MOVED = "task-moved"
COMMENT_ADDED = "comment-added"
PRESENCE_JOIN = "presence-join"
PRESENCE_LEAVE = "presence-leave"
SPACE_USERS = "space-users"
TYPING_START = "typing-start"
TYPING_STOP = "typing-stop"

EVENT_TYPES = {
    TASK_CREATED, TASK_UPDATED, TASK_MOVED, COMMENT_ADDED,
    PRESENCE_JOIN, PRESENCE_LEAVE, SPACE_USERS, TYPING_START, TYPING_STOP,
}


@dataclass
class Event:
    type: str
    space_id: int
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {self.type!r}")

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "space_id": self.space_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_sse(self) -> str:
        """Server-Sent Events frame."""
        return f"event: {self.type}\ndata: {json.dumps(self.to_dict(), default=str)}\n\n"


def _actor(user):
    if user is None:
        return None
    return user.to_actor()


def task_created(task, actor) -> Event:
    return Event(TASK_CREATED, task.space_id, {"task": task.to_dict(), "actor": _actor(actor)})


def task_updated(task, changes, actor) -> Event:
    return Event(TASK_UPDATED, task.space_id, {
        "task_id": task.id,
        "changes": changes,
        "actor": _actor(actor),
    })


def task_moved(task, from_group_id, to_group_id, position, actor) -> Event:
    return Event(TASK_MOVED, task.space_id, {
        "task_id": task.id,
        "from_group_id": from_group_id,
        "to_group_id": to_group_id,
        "position": position,
        "actor": _actor(actor),
    })


def comment_added(task, comment) -> Event:
    data = comment.to_dict()
    return Event(COMMENT_ADDED, task.space_id, {
        "task_id": task.id,
        "comment": {
            "author": data["author"],
            "body": data["body"],
            "timestamp": data["timestamp"],
        },
    })


def presence(space_id, actor_id, name, joined=True) -> Event:
    return Event(
        PRESENCE_JOIN if joined else PRESENCE_LEAVE, space_id,
        {"actor_id": actor_id, "name": name},
    )


def space_users(space_id, actors) -> Event:
    return Event(SPACE_USERS, space_id, {"users": actors})


def typing(space_id, task_id, actor_id, started=True) -> Event:
    return Event(
        TYPING_START if started else TYPING_STOP, space_id,
        {"task_id": task_id, "actor_id": actor_id},
    )
