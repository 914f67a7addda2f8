"""Notification fan-out.

The messaging core calls ``create(user_id, type, payload)`` for recipients
that are not reachable on the live channel. Push delivery is someone else's
job; this layer only persists the notification and pings the user room.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from bson import ObjectId

from locket_server.repository.mongo_helper import get_collection
from locket_server.utils.helpers import normalize_doc
from locket_server.utils.time_utils import utc_now
from locket_server.websocket.event_emitter import DeliveryChannel, Events, user_room

logger = logging.getLogger(__name__)


class NotificationService(ABC):

    @abstractmethod
    def create(self, user_id: str, notification_type: str, payload: Dict[str, Any]) -> Optional[str]:
        """Record a notification for ``user_id``. Returns its id."""


class MongoNotificationService(NotificationService):
    """Stores notifications in the ``notification`` collection and emits notification:new."""

    def __init__(self, db, delivery: DeliveryChannel, collection_name: str = 'notification'):
        self.collection = get_collection(db, collection_name)
        self.delivery = delivery

    def create(self, user_id: str, notification_type: str, payload: Dict[str, Any]) -> Optional[str]:
        now = utc_now()
        doc = {
            '_id': ObjectId(),
            'user_id': user_id,
            'type': notification_type,
            'data': payload or {},
            'read': False,
            'created_at': now,
        }
        self.collection.insert_one(doc)
        self.delivery.publish(user_room(user_id), Events.NOTIFICATION_NEW, normalize_doc({
            'notificationId': doc['_id'],
            'type': notification_type,
            'data': doc['data'],
            'createdAt': now,
        }))
        logger.info("Notification %s created for %s", doc['_id'], user_id)
        return str(doc['_id'])
