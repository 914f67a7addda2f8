"""Real-time delivery channel.

The messaging core publishes events through a ``DeliveryChannel`` handed to
it at construction time. ``SocketIODeliveryChannel`` is the Flask-SocketIO
implementation; tests substitute an in-memory recorder.

Rooms:
- conversation:<id>  every connected participant of a conversation
- user:<id>          every connected socket of one user

Delivery is at-most-once and best effort: a disconnected recipient misses the
live event and catches up through the message list endpoints.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from locket_server.utils.time_utils import utc_now, isoformat

logger = logging.getLogger(__name__)


class Events:
    """Event name constants."""

    MESSAGE_SEND = 'message:send'
    MESSAGE_UPDATED = 'message:updated'
    MESSAGE_DELETED = 'message:deleted'
    MESSAGE_READ = 'message:read'

    CONVERSATION_UPDATED = 'conversation:updated'
    PARTICIPANT_ADDED = 'conversation:participant_added'
    PARTICIPANT_REMOVED = 'conversation:participant_removed'

    NOTIFICATION_NEW = 'notification:new'

    TYPING_UPDATE = 'typing:update'


def conversation_room(conversation_id) -> str:
    return f'conversation:{conversation_id}'


def user_room(user_id) -> str:
    return f'user:{user_id}'


class DeliveryChannel(ABC):
    """Room-based broadcast primitive consumed by the messaging core."""

    @abstractmethod
    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> bool:
        """Broadcast ``event`` to every socket in ``room``."""

    @abstractmethod
    def is_user_online(self, user_id: str) -> bool:
        """Whether the user has at least one live socket."""

    def subscribe(self, user_id: str, room: str) -> None:
        """Add every live socket of ``user_id`` to ``room``."""

    def unsubscribe(self, user_id: str, room: str) -> None:
        """Remove every live socket of ``user_id`` from ``room``."""


class SocketRegistry:
    """Thread-safe map of connected sockets, shared by the hub and the channel."""

    def __init__(self):
        self._lock = threading.Lock()
        self.connected_users: Dict[str, Dict[str, Any]] = {}
        self.user_sockets: Dict[str, List[str]] = {}

    def add(self, sid: str, user_id: str) -> None:
        with self._lock:
            self.connected_users[sid] = {'user_id': user_id, 'connected_at': isoformat(utc_now())}
            self.user_sockets.setdefault(user_id, []).append(sid)

    def remove(self, sid: str) -> Optional[str]:
        """Forget a socket. Returns the user id when it was their last socket."""
        with self._lock:
            info = self.connected_users.pop(sid, None)
            if not info:
                return None
            user_id = info['user_id']
            remaining = [s for s in self.user_sockets.get(user_id, []) if s != sid]
            if remaining:
                self.user_sockets[user_id] = remaining
                return None
            self.user_sockets.pop(user_id, None)
            return user_id

    def user_of(self, sid: str) -> Optional[str]:
        with self._lock:
            info = self.connected_users.get(sid)
            return info['user_id'] if info else None

    def sockets_of(self, user_id: str) -> List[str]:
        with self._lock:
            return list(self.user_sockets.get(user_id, []))


class SocketIODeliveryChannel(DeliveryChannel):
    """DeliveryChannel backed by a Flask-SocketIO server."""

    def __init__(self, socketio, registry: SocketRegistry, namespace: str = '/'):
        self.socketio = socketio
        self.registry = registry
        self.namespace = namespace

    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> bool:
        data = {**payload, '_event': event, '_timestamp': isoformat(utc_now())}
        try:
            self.socketio.emit(event, data, to=room, namespace=self.namespace)
            logger.debug("EVENT_EMITTER: emitted '%s' to %s", event, room)
            return True
        except Exception as e:
            logger.error("EVENT_EMITTER: error emitting %s to %s: %s", event, room, e)
            return False

    def is_user_online(self, user_id: str) -> bool:
        return bool(self.registry.sockets_of(user_id))

    def subscribe(self, user_id: str, room: str) -> None:
        for sid in self.registry.sockets_of(user_id):
            self.socketio.server.enter_room(sid, room, namespace=self.namespace)

    def unsubscribe(self, user_id: str, room: str) -> None:
        for sid in self.registry.sockets_of(user_id):
            self.socketio.server.leave_room(sid, room, namespace=self.namespace)
