"""
Presence & broadcast hub — per-space fan-out of realtime events.

One hub per application (``app.extensions["broadcast_hub"]``). Every open
connection (one SSE stream, one browser tab) owns its own Observer: a
connection id, a bounded queue and the set of spaces it subscribed to. The
realtime blueprint drains that queue into a Server-Sent Events stream.

Presence is tracked per actor, not per connection: an actor is online in a
space while at least one of its connections is subscribed there. The join
event goes out when the first connection arrives and the leave event when
the last one goes away.

Thread safety:
    - registries (_observers, _spaces, Observer.spaces) are only touched
      under _lock
    - publish snapshots its targets under the lock and delivers outside it
    - a failing observer (closed, queue full) is logged and dropped like a
      disconnect; the publishing mutation never sees the failure

Access control:
    subscribe and every actor-originated publish go through the injected
    authorizer(actor_id, space_id) → bool; a False answer raises
    ForbiddenError and nothing is delivered.

Example:
    hub = BroadcastHub(authorizer=lambda actor, space: True)
    tab = hub.connect(1, "Ada")
    hub.subscribe(tab, space_id=7)
    hub.publish(7, events.typing(7, task_id=3, actor_id=2))
    hub.disconnect(tab)
"""

import atexit
import itertools
import logging
import queue
import threading

from flask import current_app

from stageflow.core.exceptions import ForbiddenError
from stageflow.services import events
from stageflow.services.permission import space_authorizer

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class ObserverClosed(Exception):
    """Delivery attempted to an observer whose stream has ended."""


class Observer:
    """One connection of an actor: a bounded queue of pending events."""

    def __init__(self, connection_id, actor_id, display_name, maxsize=DEFAULT_QUEUE_SIZE):
        self.id = connection_id
        self.actor_id = actor_id
        self.display_name = display_name
        self.spaces = set()
        self._queue = queue.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, event):
        if self.closed:
            raise ObserverClosed(f"Connection {self.id} of actor {self.actor_id} is closed")
        self._queue.put_nowait(event)

    def get(self, timeout=None):
        """Next event, or None once closed. Raises queue.Empty on timeout."""
        return self._queue.get(timeout=timeout)

    def drain(self):
        """All pending events, without blocking."""
        pending = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return pending
            if item is not None:
                pending.append(item)

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            logger.debug("Connection %s queue full on close", self.id)

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<Observer #{self.id} actor={self.actor_id} [{state}]>"


class BroadcastHub:
    """Space-scoped connection registry with lock-protected state."""

    def __init__(self, authorizer=None, queue_size=DEFAULT_QUEUE_SIZE, app=None):
        self._authorizer = authorizer or space_authorizer
        self._queue_size = queue_size
        self._observers: dict[int, Observer] = {}
        self._spaces: dict[int, set[int]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self._queue_size = app.config.get("HUB_QUEUE_SIZE", self._queue_size)
        app.extensions["broadcast_hub"] = self
        atexit.register(self.shutdown)
        logger.info("BroadcastHub initialized (queue_size=%d)", self._queue_size)

    # ── Access control ───────────────────────────────────────────────────

    def _authorize(self, actor_id, space_id):
        if not self._authorizer(actor_id, space_id):
            logger.warning(
                "Hub access denied: actor %s space %s", actor_id, space_id,
                extra={"space_id": space_id},
            )
            raise ForbiddenError("Access denied to this space")

    # ── Connection lifecycle ─────────────────────────────────────────────

    def connect(self, actor_id, display_name=None):
        """Register a new connection for the actor and return its observer."""
        with self._lock:
            observer = Observer(
                next(self._ids), actor_id, display_name or str(actor_id), self._queue_size,
            )
            self._observers[observer.id] = observer
        logger.debug("Actor %s opened connection %s", actor_id, observer.id)
        return observer

    def subscribe(self, observer, space_id):
        """Add the connection to the space.

        Returns False if this connection was already subscribed. The join
        event is only emitted for the actor's first connection in the space.
        """
        self._authorize(observer.actor_id, space_id)

        with self._lock:
            if observer.closed or self._observers.get(observer.id) is not observer:
                raise ObserverClosed(f"Connection {observer.id} is not open")
            members = self._spaces.setdefault(space_id, set())
            if observer.id in members:
                return False
            first = not self._actor_present_locked(observer.actor_id, space_id)
            members.add(observer.id)
            observer.spaces.add(space_id)
            roster = self._roster_locked(space_id)

        if first:
            logger.info(
                "Actor %s joined space %s", observer.actor_id, space_id,
                extra={"space_id": space_id, "event_type": events.PRESENCE_JOIN},
            )
            self._deliver(
                space_id, events.presence(space_id, observer.actor_id, observer.display_name),
                exclude_actor=observer.actor_id,
            )
        self._send(observer, events.space_users(space_id, roster))
        return True

    def unsubscribe(self, observer, space_id):
        """Remove the connection from one space. Returns False if it was not subscribed."""
        with self._lock:
            if not self._detach_locked(observer, space_id):
                return False
            gone = not self._actor_present_locked(observer.actor_id, space_id)
        if gone:
            self._deliver(
                space_id,
                events.presence(space_id, observer.actor_id, observer.display_name, joined=False),
            )
        return True

    def disconnect(self, observer):
        """Close one connection and drop it from every space it joined.

        Leave events go out only for spaces where the actor has no other
        connection left. Returns the ids of those spaces.
        """
        with self._lock:
            if self._observers.get(observer.id) is observer:
                del self._observers[observer.id]
            left = []
            for space_id in sorted(observer.spaces):
                self._detach_locked(observer, space_id)
                if not self._actor_present_locked(observer.actor_id, space_id):
                    left.append(space_id)

        observer.close()
        for space_id in left:
            self._deliver(
                space_id,
                events.presence(space_id, observer.actor_id, observer.display_name, joined=False),
            )
        if left:
            logger.info(
                "Actor %s left spaces %s (connection %s closed)",
                observer.actor_id, left, observer.id,
            )
        return left

    def _detach_locked(self, observer, space_id):
        members = self._spaces.get(space_id)
        if not members or observer.id not in members:
            return False
        members.discard(observer.id)
        observer.spaces.discard(space_id)
        if not members:
            del self._spaces[space_id]
        return True

    # ── Publishing ───────────────────────────────────────────────────────

    def publish(self, space_id, event, actor_id=None, exclude_actor=None):
        """Fan ``event`` out to every connection subscribed to the space.

        ``actor_id`` marks an actor-originated publish and is authorized
        first. ``exclude_actor`` skips all of that actor's connections.
        Returns the number of connections the event reached.
        """
        if event.space_id != space_id:
            raise ValueError(
                f"Event for space {event.space_id} published to space {space_id}"
            )
        if actor_id is not None:
            self._authorize(actor_id, space_id)
        return self._deliver(space_id, event, exclude_actor=exclude_actor)

    def _deliver(self, space_id, event, exclude_actor=None):
        with self._lock:
            targets = [
                self._observers[c] for c in self._spaces.get(space_id, ())
                if c in self._observers and self._observers[c].actor_id != exclude_actor
            ]

        delivered = 0
        for observer in targets:
            if self._send(observer, event):
                delivered += 1
        logger.debug(
            "Delivered %s to %d connection(s)", event.type, delivered,
            extra={"space_id": space_id, "event_type": event.type},
        )
        return delivered

    def _send(self, observer, event):
        try:
            observer.deliver(event)
            return True
        except (ObserverClosed, queue.Full) as exc:
            logger.warning(
                "Dropping connection %s of actor %s: %s",
                observer.id, observer.actor_id, str(exc) or type(exc).__name__,
                extra={"space_id": event.space_id, "event_type": event.type},
            )
            self.disconnect(observer)
            return False

    # ── Introspection ────────────────────────────────────────────────────

    def _actor_present_locked(self, actor_id, space_id):
        return any(
            self._observers[c].actor_id == actor_id
            for c in self._spaces.get(space_id, ()) if c in self._observers
        )

    def _roster_locked(self, space_id):
        names = {}
        for connection_id in self._spaces.get(space_id, ()):
            observer = self._observers.get(connection_id)
            if observer is not None:
                names.setdefault(observer.actor_id, observer.display_name)
        return [{"actor_id": a, "name": names[a]} for a in sorted(names)]

    def online_actors(self, space_id):
        with self._lock:
            return self._roster_locked(space_id)

    @property
    def observer_count(self):
        with self._lock:
            return len(self._observers)

    def is_subscribed(self, actor_id, space_id):
        """True while any connection of the actor is subscribed to the space."""
        with self._lock:
            return self._actor_present_locked(actor_id, space_id)

    def subscriptions(self, actor_id):
        with self._lock:
            return sorted(
                s for s in self._spaces if self._actor_present_locked(actor_id, s)
            )

    def shutdown(self):
        """Close every connection and clear the registries."""
        with self._lock:
            observers = list(self._observers.values())
            self._observers.clear()
            self._spaces.clear()
        for observer in observers:
            observer.spaces.clear()
            observer.close()
        if observers:
            logger.info("BroadcastHub shut down (%d connections closed)", len(observers))


def get_hub():
    """The hub registered on the current app."""
    return current_app.extensions["broadcast_hub"]
