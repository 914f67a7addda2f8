import pytest
from bson import ObjectId

from locket_server.exception.MessagingError import NotFoundError, ForbiddenError
from locket_server.messaging.models import MessageStatus
from locket_server.websocket.event_emitter import Events


def _cursor(repos, conversation, user_id):
    conversations, _, _ = repos
    return conversations.find_by_id(conversation.conversation_id).get_participant(user_id)


def test_cursor_never_moves_backward(send, direct, message_service, repos):
    older = send('alice', direct, 'one')
    newer = send('alice', direct, 'two')

    assert message_service.update_participant_last_read(direct.conversation_id, 'bob', newer.message_id)
    moved = message_service.update_participant_last_read(direct.conversation_id, 'bob', older.message_id)

    cursor = _cursor(repos, direct, 'bob')
    assert not moved
    assert cursor.last_read_message_id == newer.message_id
    assert cursor.last_read_at == newer.created_at


def test_cursor_update_is_idempotent(send, direct, message_service, repos):
    message = send('alice', direct, 'one')
    message_service.update_participant_last_read(direct.conversation_id, 'bob', message.message_id)
    message_service.update_participant_last_read(direct.conversation_id, 'bob', message.message_id)
    assert _cursor(repos, direct, 'bob').last_read_at == message.created_at


def test_cursor_rejects_message_from_other_conversation(send, direct, group, message_service):
    elsewhere = send('alice', group, 'other room')
    with pytest.raises(NotFoundError):
        message_service.update_participant_last_read(direct.conversation_id, 'bob', elsewhere.message_id)


def test_sender_cursor_follows_own_messages(send, direct, repos):
    message = send('alice', direct, 'mine')
    assert _cursor(repos, direct, 'alice').last_read_message_id == message.message_id


def test_mark_as_read_sets_status_and_publishes(send, direct, message_service, repos, delivery):
    _, messages, _ = repos
    first = send('alice', direct, 'one')
    second = send('alice', direct, 'two')
    delivery.clear()

    result = message_service.mark_conversation_as_read(direct.conversation_id, 'bob')

    assert result['lastReadMessage']['id'] == str(second.message_id)
    assert result['markedRead'] == 2
    assert messages.find_by_id(first.message_id).status == MessageStatus.READ
    read_event = delivery.named(Events.MESSAGE_READ)[0]
    assert read_event['userId'] == 'bob'
    assert read_event['conversationId'] == str(direct.conversation_id)
    assert message_service.get_message(second.message_id, 'alice')['readBy'] == ['bob']


def test_mark_as_read_on_empty_conversation(direct, message_service):
    result = message_service.mark_conversation_as_read(direct.conversation_id, 'bob')
    assert result['lastReadMessage'] is None


def test_group_status_waits_for_every_recipient(send, group, message_service, repos):
    _, messages, _ = repos
    message = send('alice', group, 'hello all')

    message_service.mark_conversation_as_read(group.conversation_id, 'bob')
    assert messages.find_by_id(message.message_id).status == MessageStatus.DELIVERED
    assert message_service.get_message(message.message_id, 'alice')['readBy'] == ['bob']

    message_service.mark_conversation_as_read(group.conversation_id, 'carol')
    assert messages.find_by_id(message.message_id).status == MessageStatus.READ


def test_status_never_regresses(send, direct, message_service):
    message = send('alice', direct, 'hi')
    read = message_service.update_message_status(message.message_id, 'bob', MessageStatus.READ)
    assert read.status == MessageStatus.READ

    again = message_service.update_message_status(message.message_id, 'bob', MessageStatus.DELIVERED)
    assert again.status == MessageStatus.READ
    again = message_service.update_message_status(message.message_id, 'bob', MessageStatus.SENT)
    assert again.status == MessageStatus.READ


def test_read_status_from_recipient_moves_their_cursor(send, direct, message_service, repos):
    message = send('alice', direct, 'hi')
    message_service.update_message_status(message.message_id, 'bob', MessageStatus.READ)
    assert _cursor(repos, direct, 'bob').last_read_message_id == message.message_id


def test_status_update_requires_participant(send, direct, message_service):
    message = send('alice', direct, 'hi')
    with pytest.raises(ForbiddenError):
        message_service.update_message_status(message.message_id, 'zed', MessageStatus.READ)


def test_status_of_missing_message(message_service):
    with pytest.raises(NotFoundError):
        message_service.update_message_status(ObjectId(), 'alice', MessageStatus.READ)
