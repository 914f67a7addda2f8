"""Side-effect outbox for messaging operations.

An operation records the events, notifications and background work it
causes while it runs. Nothing leaves the process until the primary write has
returned and the ``with`` block exits cleanly; an operation that raises
discards its outbox. Each entry is flushed in isolation, so a failing
publish can neither undo the write nor stop the entries after it.

    with self.outbox() as outbox:
        message = self.messages.insert(message)
        outbox.publish(conversation_room(cid), Events.MESSAGE_SEND, data)
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from locket_server.notification.service import NotificationService
from locket_server.websocket.event_emitter import DeliveryChannel

logger = logging.getLogger(__name__)

TaskRunner = Callable[..., Any]


class EventOutbox:

    def __init__(self, delivery: DeliveryChannel, notifications: Optional[NotificationService], runner: TaskRunner):
        self.delivery = delivery
        self.notifications = notifications
        self.runner = runner
        self._entries: List[Callable[[], Any]] = []
        self._labels: List[str] = []

    def __enter__(self) -> 'EventOutbox':
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.flush()
        else:
            self.discard()
        return False

    def __len__(self):
        return len(self._entries)

    def publish(self, room: str, event: str, payload: Dict[str, Any]):
        self._add(f'publish {event} -> {room}', lambda: self.delivery.publish(room, event, payload))

    def notify_offline(self, user_ids: Iterable[str], notification_type: str, payload: Dict[str, Any]):
        """Create a notification for each user that has no live socket at flush time."""
        if self.notifications is None:
            return
        for user_id in user_ids:
            self._add(f'notify {notification_type} -> {user_id}',
                      lambda uid=user_id: self._notify_if_offline(uid, notification_type, payload))

    def subscribe(self, user_id: str, room: str):
        self._add(f'subscribe {user_id} -> {room}', lambda: self.delivery.subscribe(user_id, room))

    def unsubscribe(self, user_id: str, room: str):
        self._add(f'unsubscribe {user_id} -> {room}', lambda: self.delivery.unsubscribe(user_id, room))

    def defer(self, fn: Callable[..., Any], *args, **kwargs):
        """Hand ``fn`` to the background runner after the write."""
        self._add(f'defer {getattr(fn, "__name__", fn)}', lambda: self.runner(fn, *args, **kwargs))

    def flush(self):
        entries, labels = self._entries, self._labels
        self._entries, self._labels = [], []
        for label, entry in zip(labels, entries):
            try:
                entry()
            except Exception:
                logger.exception("OUTBOX: %s failed", label)

    def discard(self):
        if self._entries:
            logger.debug("OUTBOX: discarding %d pending entries", len(self._entries))
        self._entries, self._labels = [], []

    def _add(self, label: str, entry: Callable[[], Any]):
        self._labels.append(label)
        self._entries.append(entry)

    def _notify_if_offline(self, user_id: str, notification_type: str, payload: Dict[str, Any]):
        if self.delivery.is_user_online(user_id):
            return
        self.notifications.create(user_id, notification_type, payload)
