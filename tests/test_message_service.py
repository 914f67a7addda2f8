import pytest
from bson import ObjectId

from locket_server.dto.message_dto import (
    CreateMessageRequest, MessagePayload, ForwardRequest, ListMessagesQuery, ThreadQuery, SearchQuery
)
from locket_server.exception.MessagingError import (
    NotFoundError, ForbiddenError, PolicyViolationError, ValidationError
)
from locket_server.messaging.models import LastMessage, MessageStatus, MessageType
from locket_server.websocket.event_emitter import Events, conversation_room


# =============================================================================
# Send
# =============================================================================

def test_send_updates_last_message(send, direct, repos):
    conversations, _, _ = repos
    message = send('alice', direct, 'hi')

    stored = conversations.find_by_id(direct.conversation_id)
    assert stored.last_message.text == 'hi'
    assert stored.last_message.sender_id == 'alice'
    assert stored.last_message.message_id == message.message_id


def test_older_summary_does_not_replace_newer(send, direct, repos, clock):
    conversations, _, _ = repos
    older = send('alice', direct, 'first')
    clock.advance(seconds=5)
    newer = send('bob', direct, 'second')

    assert not conversations.set_last_message(direct.conversation_id, LastMessage.of(older))
    stored = conversations.find_by_id(direct.conversation_id)
    assert stored.last_message.message_id == newer.message_id


def test_send_then_get_round_trips_and_becomes_delivered(send, direct, message_service):
    message = send('alice', direct, 'hello')

    fetched = message_service.get_message(message.message_id, 'bob')
    assert fetched['text'] == 'hello'
    assert fetched['status'] == MessageStatus.DELIVERED.value
    assert fetched['readBy'] == []


def test_send_publishes_events_to_conversation_room(send, direct, delivery):
    delivery.clear()
    message = send('alice', direct, 'hi')

    room = conversation_room(direct.conversation_id)
    sent = [(r, p) for r, e, p in delivery.events if e == Events.MESSAGE_SEND]
    assert len(sent) == 1
    assert sent[0][0] == room
    assert sent[0][1]['message']['id'] == str(message.message_id)
    assert delivery.named(Events.CONVERSATION_UPDATED)[0]['lastMessage']['text'] == 'hi'
    statuses = [p.get('status') for p in delivery.named(Events.MESSAGE_UPDATED)]
    assert MessageStatus.DELIVERED.value in statuses


def test_send_notifies_only_offline_recipients(send, group, delivery, notifications):
    delivery.online.add('bob')
    send('alice', group, 'anyone around?')

    assert [n[0] for n in notifications.created] == ['carol']
    assert notifications.created[0][1] == 'message'


def test_send_muted_conversation_creates_no_notifications(send, group, repos, notifications):
    conversations, _, _ = repos
    conversations.update_fields(group.conversation_id, {'settings.mute_notifications': True})
    send('alice', group, 'quiet')
    assert notifications.created == []


def test_publish_failure_does_not_fail_the_send(send, direct, delivery, message_service):
    delivery.fail_on.add(Events.MESSAGE_SEND)
    message = send('alice', direct, 'still stored')

    assert message_service.get_message(message.message_id, 'alice')['text'] == 'still stored'
    assert delivery.named(Events.CONVERSATION_UPDATED)


def test_non_participant_cannot_send(send, direct):
    with pytest.raises(ForbiddenError):
        send('zed', direct, 'let me in')


def test_send_to_missing_conversation_is_not_found(message_service):
    body = {'conversationId': str(ObjectId()), 'text': 'hello?'}
    with pytest.raises(NotFoundError):
        message_service.send_message('alice', CreateMessageRequest.from_request(body))


def test_send_with_unknown_reply_target_sends_without_reply_info(send, direct):
    message = send('alice', direct, 'orphan', replyTo=str(ObjectId()))
    assert message.reply_to is None
    assert message.reply_info is None


def test_send_with_thread_parent_counts_reply(send, direct, repos):
    _, messages, _ = repos
    root = send('alice', direct, 'root')
    send('bob', direct, 'in thread', threadInfo={'parentMessageId': str(root.message_id)})

    assert messages.find_by_id(root.message_id).thread_info.reply_count == 1


def test_sticker_message_summary_uses_type(message_service, direct, repos):
    conversations, _, _ = repos
    body = {'conversationId': str(direct.conversation_id), 'sticker': {'stickerId': 'cat-01'}}
    message = message_service.send_message('alice', CreateMessageRequest.from_request(body))

    assert message.message_type == MessageType.STICKER
    assert conversations.find_by_id(direct.conversation_id).last_message.text == 'sticker'


# =============================================================================
# Reply / thread
# =============================================================================

def test_reply_snapshots_parent_and_counts_thread(send, direct, message_service, repos):
    _, messages, _ = repos
    parent = send('alice', direct, 'hi')

    reply = message_service.reply_to_message(parent.message_id, 'bob', MessagePayload.from_request({'text': 'hey'}))

    assert reply.reply_info.text == 'hi'
    assert reply.reply_info.sender_name == 'Alice'
    assert reply.parent_message_id == parent.message_id
    assert messages.find_by_id(parent.message_id).thread_info.reply_count == 1


def test_reply_snapshot_survives_parent_edit(send, direct, message_service):
    parent = send('alice', direct, 'original')
    reply = message_service.reply_to_message(parent.message_id, 'bob', MessagePayload.from_request({'text': 're'}))
    message_service.edit_message(parent.message_id, 'alice', 'changed')

    fetched = message_service.get_message(reply.message_id, 'bob')
    assert fetched['replyInfo']['text'] == 'original'


def test_reply_to_deleted_parent_is_not_found(send, direct, message_service):
    parent = send('alice', direct, 'gone soon')
    message_service.delete_message(parent.message_id, 'alice')
    with pytest.raises(NotFoundError):
        message_service.reply_to_message(parent.message_id, 'bob', MessagePayload.from_request({'text': 'x'}))


def test_thread_counter_tracks_deleted_replies(send, direct, message_service, repos):
    _, messages, _ = repos
    parent = send('alice', direct, 'root')
    first = message_service.reply_to_message(parent.message_id, 'bob', MessagePayload.from_request({'text': '1'}))
    message_service.reply_to_message(parent.message_id, 'alice', MessagePayload.from_request({'text': '2'}))

    message_service.delete_message(first.message_id, 'bob')

    thread_info = messages.find_by_id(parent.message_id).thread_info
    live = [m for m in messages.list_thread(parent.message_id, 0, 50)[0] if not m.is_deleted]
    assert thread_info.reply_count == len(live) == 1
    assert set(thread_info.participants) == {'alice', 'bob'}


def test_get_thread_is_ascending_with_offset_pagination(send, direct, message_service):
    parent = send('alice', direct, 'root')
    for i in range(3):
        message_service.reply_to_message(parent.message_id, 'bob', MessagePayload.from_request({'text': f'r{i}'}))

    page = message_service.get_thread(parent.message_id, 'alice', ThreadQuery(page=1, limit=2))
    assert [m['text'] for m in page['messages']] == ['r0', 'r1']
    assert page['pagination'] == {'page': 1, 'limit': 2, 'total': 3, 'pages': 2}
    assert page['parentMessage']['threadInfo']['replyCount'] == 3


# =============================================================================
# Edit / delete
# =============================================================================

def test_edit_within_window_then_after_window(send, direct, message_service, clock):
    message = send('alice', direct, 'tpyo')
    clock.advance(minutes=1)

    edited = message_service.edit_message(message.message_id, 'alice', 'typo')
    assert edited.text == 'typo'
    assert edited.is_edited
    assert len(edited.edit_history) == 1
    assert edited.edit_history[0].text == 'tpyo'

    clock.advance(minutes=16)
    with pytest.raises(PolicyViolationError) as exc:
        message_service.edit_message(message.message_id, 'alice', 'too late')
    assert exc.value.status == 400
    assert exc.value.message_key == 'message.edit_window_expired'


def test_only_sender_can_edit(send, direct, message_service):
    message = send('alice', direct, 'mine')
    with pytest.raises(ForbiddenError):
        message_service.edit_message(message.message_id, 'bob', 'yours now')


def test_edit_of_last_message_refreshes_summary(send, direct, message_service, repos):
    conversations, _, _ = repos
    message = send('alice', direct, 'before')
    message_service.edit_message(message.message_id, 'alice', 'after')
    assert conversations.find_by_id(direct.conversation_id).last_message.text == 'after'


def test_delete_leaves_tombstone_and_recomputes_summary(send, direct, message_service, repos, delivery):
    conversations, _, _ = repos
    send('alice', direct, 'first')
    second = send('bob', direct, 'second')
    delivery.clear()

    tombstone = message_service.delete_message(second.message_id, 'bob')

    assert tombstone.is_deleted
    assert tombstone.content is None
    assert tombstone.deleted_at is not None
    assert conversations.find_by_id(direct.conversation_id).last_message.text == 'first'
    assert delivery.named(Events.MESSAGE_DELETED)[0]['messageId'] == str(second.message_id)
    fetched = message_service.get_message(second.message_id, 'alice')
    assert fetched['isDeleted'] and fetched['text'] is None


def test_only_sender_can_delete(send, direct, message_service):
    message = send('alice', direct, 'mine')
    with pytest.raises(ForbiddenError):
        message_service.delete_message(message.message_id, 'bob')


def test_delete_twice_is_not_found(send, direct, message_service):
    message = send('alice', direct, 'once')
    message_service.delete_message(message.message_id, 'alice')
    with pytest.raises(NotFoundError):
        message_service.delete_message(message.message_id, 'alice')


# =============================================================================
# Reactions
# =============================================================================

def test_reactions_hold_one_entry_per_user(send, direct, message_service):
    message = send('alice', direct, 'react to me')
    for reaction in ('👍', '❤️', '❤️', '😂'):
        message_service.add_reaction(message.message_id, 'bob', reaction)
    message_service.add_reaction(message.message_id, 'alice', '👍')

    updated = message_service.get_message(message.message_id, 'alice')
    by_user = [r['userId'] for r in updated['reactions']]
    assert sorted(by_user) == ['alice', 'bob']
    assert {r['userId']: r['type'] for r in updated['reactions']}['bob'] == '😂'


def test_remove_reaction_is_idempotent(send, direct, message_service, delivery):
    message = send('alice', direct, 'hi')
    message_service.add_reaction(message.message_id, 'bob', '👍')

    message_service.remove_reaction(message.message_id, 'bob')
    delivery.clear()
    again = message_service.remove_reaction(message.message_id, 'bob')

    assert again.reactions == []
    assert delivery.events == []


def test_non_participant_cannot_react(send, direct, message_service):
    message = send('alice', direct, 'hi')
    with pytest.raises(ForbiddenError):
        message_service.add_reaction(message.message_id, 'zed', '👍')


# =============================================================================
# Forward
# =============================================================================

def test_forward_skips_invalid_ids(send, direct, group, message_service):
    message = send('alice', direct, 'pass it on')

    request = ForwardRequest([str(group.conversation_id)], [str(message.message_id), 'not-an-id'])
    forwarded = message_service.forward_messages('alice', request)

    assert len(forwarded) == 1
    copy = forwarded[0]
    assert copy.conversation_id == group.conversation_id
    assert copy.text == 'pass it on'
    assert copy.forwarded_from == 'alice'
    assert copy.forward_info.original_message_id == message.message_id
    assert copy.forward_info.original_conversation_id == direct.conversation_id


def test_forward_skips_inaccessible_sources_and_targets(send, direct, message_service, conversation_service):
    from locket_server.dto.conversation_dto import CreateConversationRequest
    private = conversation_service.create_conversation('carol', CreateConversationRequest(['dave']))
    secret = send('carol', private, 'secret')
    mine = send('alice', direct, 'mine')

    request = ForwardRequest([str(direct.conversation_id), str(private.conversation_id)],
                             [str(secret.message_id), str(mine.message_id)])
    forwarded = message_service.forward_messages('alice', request)

    assert [(m.conversation_id, m.text) for m in forwarded] == [(direct.conversation_id, 'mine')]


def test_forward_info_survives_original_deletion(send, direct, group, message_service):
    message = send('alice', direct, 'keep me')
    copy = message_service.forward_messages('alice', ForwardRequest([str(group.conversation_id)],
                                                                    [str(message.message_id)]))[0]
    message_service.delete_message(message.message_id, 'alice')

    fetched = message_service.get_message(copy.message_id, 'carol')
    assert fetched['text'] == 'keep me'
    assert fetched['forwardInfo']['originalMessageId'] == str(message.message_id)


# =============================================================================
# Pins
# =============================================================================

def test_group_pin_is_admin_only_by_default(send, group, message_service, repos):
    conversations, _, _ = repos
    message = send('bob', group, 'pin-worthy')

    with pytest.raises(ForbiddenError):
        message_service.pin_message(message.message_id, 'bob')

    pinned = message_service.pin_message(message.message_id, 'alice')
    assert pinned.is_pinned
    assert message.message_id in conversations.find_by_id(group.conversation_id).pinned_messages

    message_service.unpin_message(message.message_id, 'alice')
    assert conversations.find_by_id(group.conversation_id).pinned_messages == []


def test_group_members_can_pin_when_allowed(send, group, message_service, repos):
    conversations, _, _ = repos
    conversations.update_fields(group.conversation_id, {'group_settings.allow_member_pin': True})
    message = send('bob', group, 'pin-worthy')
    assert message_service.pin_message(message.message_id, 'carol').is_pinned


def test_direct_participants_can_pin(send, direct, message_service):
    message = send('alice', direct, 'pin me')
    assert message_service.pin_message(message.message_id, 'bob').is_pinned


# =============================================================================
# Access / listing / search
# =============================================================================

def test_non_participant_get_message_is_forbidden(send, direct, message_service):
    message = send('alice', direct, 'private')
    with pytest.raises(ForbiddenError):
        message_service.get_message(message.message_id, 'zed')


def test_list_messages_pages_newest_first(send, direct, message_service):
    sent = [send('alice', direct, f'm{i}') for i in range(5)]

    first = message_service.list_messages(direct.conversation_id, 'bob', ListMessagesQuery(limit=2))
    assert [m['text'] for m in first['messages']] == ['m4', 'm3']
    assert first['pagination']['hasNextPage']

    cursor = ListMessagesQuery.from_request({
        'limit': '2',
        'lastCreatedAt': first['pagination']['nextCursor'],
        'lastId': first['pagination']['nextCursorId'],
    })
    second = message_service.list_messages(direct.conversation_id, 'bob', cursor)
    assert [m['text'] for m in second['messages']] == ['m2', 'm1']
    assert len(sent) == 5


def test_list_messages_breaks_timestamp_ties_by_id(direct, message_service, repos):
    from locket_server.messaging.models import Message, TextContent
    _, messages, _ = repos
    moment = direct.created_at
    same_time = [messages.insert(Message(direct.conversation_id, 'alice', TextContent(f't{i}'), created_at=moment))
                 for i in range(3)]

    first = message_service.list_messages(direct.conversation_id, 'alice', ListMessagesQuery(limit=2))
    rest = message_service.list_messages(direct.conversation_id, 'alice', ListMessagesQuery(
        limit=2, last_created_at=moment, last_id=ObjectId(first['pagination']['nextCursorId'])))

    seen = [m['id'] for m in first['messages'] + rest['messages']]
    assert sorted(seen) == sorted(str(m.message_id) for m in same_time)
    assert len(set(seen)) == 3


def test_search_is_scoped_to_callers_conversations(send, direct, group, message_service, conversation_service):
    from locket_server.dto.conversation_dto import CreateConversationRequest
    other = conversation_service.create_conversation('carol', CreateConversationRequest(['dave']))
    send('alice', direct, 'lunch at noon?')
    send('bob', group, 'Lunch plans')
    send('carol', other, 'lunch is secret')

    result = message_service.search_messages('alice', SearchQuery.from_request({'query': 'lunch'}))
    assert sorted(m['text'] for m in result['messages']) == ['Lunch plans', 'lunch at noon?']
    assert result['pagination']['total'] == 2

    with pytest.raises(ForbiddenError):
        message_service.search_messages('alice', SearchQuery(conversation_id=other.conversation_id))


def test_search_treats_query_as_literal_text(send, direct, message_service):
    send('alice', direct, 'price is $5 (approx)')
    send('alice', direct, 'nothing here')
    result = message_service.search_messages('bob', SearchQuery.from_request({'query': '$5 (approx'}))
    assert [m['text'] for m in result['messages']] == ['price is $5 (approx)']


def test_search_rejects_inverted_date_range():
    with pytest.raises(ValidationError) as exc:
        SearchQuery.from_request({'dateFrom': '2026-02-01T00:00:00Z', 'dateTo': '2026-01-01T00:00:00Z'})
    assert 'dateTo' in exc.value.errors
