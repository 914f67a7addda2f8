from datetime import datetime, timedelta

import mongomock
import pytest

from locket_server.dto.conversation_dto import CreateConversationRequest
from locket_server.dto.message_dto import CreateMessageRequest
from locket_server.messaging.conversation_service import ConversationService
from locket_server.messaging.message_service import MessageService
from locket_server.notification.service import NotificationService
from locket_server.repository.conversation_repository import ConversationRepository
from locket_server.repository.message_repository import MessageRepository
from locket_server.repository.user_repository import UserRepository
from locket_server.websocket.event_emitter import DeliveryChannel

USERS = ('alice', 'bob', 'carol', 'dave', 'zed')


class RecordingDelivery(DeliveryChannel):
    """In-memory channel that keeps every published event."""

    def __init__(self):
        self.events = []
        self.online = set()
        self.room_changes = []
        self.fail_on = set()

    def publish(self, room, event, payload):
        if event in self.fail_on:
            raise RuntimeError(f'publish of {event} failed')
        self.events.append((room, event, payload))
        return True

    def is_user_online(self, user_id):
        return user_id in self.online

    def subscribe(self, user_id, room):
        self.room_changes.append(('join', user_id, room))

    def unsubscribe(self, user_id, room):
        self.room_changes.append(('leave', user_id, room))

    def named(self, event):
        return [payload for _, e, payload in self.events if e == event]

    def clear(self):
        self.events.clear()


class RecordingNotifications(NotificationService):

    def __init__(self):
        self.created = []

    def create(self, user_id, notification_type, payload):
        self.created.append((user_id, notification_type, payload))
        return str(len(self.created))


class FakeClock:
    """Advances one millisecond per reading so timestamps stay strictly ordered."""

    def __init__(self, start=datetime(2026, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def sync_runner(fn, *args, **kwargs):
    return fn(*args, **kwargs)


@pytest.fixture
def db():
    database = mongomock.MongoClient()['locket_test']
    database['users'].insert_many([{'_id': uid, 'username': uid.capitalize()} for uid in USERS])
    return database


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repos(db):
    return ConversationRepository(db), MessageRepository(db), UserRepository(db)


@pytest.fixture
def conversation_service(repos, delivery, notifications, clock):
    conversations, messages, users = repos
    return ConversationService(conversations, messages, users, delivery, notifications, sync_runner, clock=clock)


@pytest.fixture
def message_service(repos, delivery, notifications, clock):
    conversations, messages, users = repos
    return MessageService(conversations, messages, users, delivery, notifications, sync_runner,
                          edit_window_minutes=15, clock=clock)


@pytest.fixture
def direct(conversation_service):
    """A direct conversation between alice and bob."""
    return conversation_service.create_conversation('alice', CreateConversationRequest(['bob']))


@pytest.fixture
def group(conversation_service):
    """A group owned by alice with bob and carol."""
    return conversation_service.create_conversation(
        'alice', CreateConversationRequest(['bob', 'carol'], is_group=True, name='Weekend'))


@pytest.fixture
def send(message_service):
    """Send a text message: ``send(sender, conversation, text, **extra_body)``."""
    def _send(sender_id, conversation, text, **extra):
        body = {'conversationId': str(conversation.conversation_id), 'text': text, **extra}
        return message_service.send_message(sender_id, CreateMessageRequest.from_request(body))
    return _send
