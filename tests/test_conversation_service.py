import pytest

from locket_server.dto.conversation_dto import (
    CreateConversationRequest, UpdateConversationRequest, ListConversationsQuery
)
from locket_server.exception.MessagingError import (
    ForbiddenError, ValidationError, PolicyViolationError, NotFoundError
)
from locket_server.websocket.event_emitter import Events, conversation_room


def test_direct_conversation_adds_creator(conversation_service, delivery):
    conversation = conversation_service.create_conversation('alice', CreateConversationRequest(['bob']))

    assert sorted(conversation.participant_ids) == ['alice', 'bob']
    assert conversation.is_group is False
    assert conversation.admin is None
    room = conversation_room(conversation.conversation_id)
    assert ('join', 'alice', room) in delivery.room_changes
    assert ('join', 'bob', room) in delivery.room_changes


def test_direct_conversation_is_reused(conversation_service, direct):
    again = conversation_service.get_or_create_direct('bob', 'alice')
    assert again.conversation_id == direct.conversation_id


def test_direct_with_self_is_rejected(conversation_service):
    with pytest.raises(ValidationError):
        conversation_service.get_or_create_direct('alice', 'alice')


def test_direct_needs_exactly_two_participants(conversation_service):
    with pytest.raises(ValidationError) as exc:
        conversation_service.create_conversation('alice', CreateConversationRequest(['bob', 'carol']))
    assert 'participants' in exc.value.errors


def test_unknown_participant_is_rejected(conversation_service):
    with pytest.raises(ValidationError) as exc:
        conversation_service.create_conversation('alice', CreateConversationRequest(['ghost'], is_group=True))
    assert exc.value.message_key == 'conversation.user_not_found'


def test_group_defaults_admin_to_creator(group):
    assert group.is_group
    assert group.admin == 'alice'
    assert group.group_settings.allow_member_invite is True
    assert group.group_settings.allow_member_pin is False


def test_group_admin_must_be_participant(conversation_service):
    with pytest.raises(ValidationError):
        conversation_service.create_conversation(
            'alice', CreateConversationRequest(['bob'], is_group=True, admin='dave'))


def test_list_includes_display_name_and_unread(conversation_service, direct, group, send):
    send('alice', direct, 'one')
    send('alice', direct, 'two')
    send('bob', group, 'hi group')

    result = conversation_service.list_conversations('bob', ListConversationsQuery())
    by_id = {c['id']: c for c in result['conversations']}

    assert by_id[str(direct.conversation_id)]['displayName'] == 'Alice'
    assert by_id[str(direct.conversation_id)]['unreadCount'] == 2
    assert by_id[str(group.conversation_id)]['displayName'] == 'Weekend'
    assert by_id[str(group.conversation_id)]['unreadCount'] == 0
    assert result['pagination']['hasNextPage'] is False


def test_unread_count_drops_after_read(conversation_service, message_service, direct, send):
    send('alice', direct, 'one')
    assert conversation_service.unread_count('bob')['total'] == 1

    message_service.mark_conversation_as_read(direct.conversation_id, 'bob')
    assert conversation_service.unread_count('bob') == {'total': 0, 'conversations': {}}


def test_get_requires_participant(conversation_service, direct):
    assert conversation_service.get_conversation(direct.conversation_id, 'bob')['isGroup'] is False
    with pytest.raises(ForbiddenError):
        conversation_service.get_conversation(direct.conversation_id, 'zed')


def test_update_group_settings_is_admin_only(conversation_service, group, delivery):
    request = UpdateConversationRequest.from_request({'groupSettings': {'allowMemberPin': True}})
    with pytest.raises(ForbiddenError):
        conversation_service.update_conversation(group.conversation_id, 'bob', request)

    updated = conversation_service.update_conversation(group.conversation_id, 'alice', request)
    assert updated.group_settings.allow_member_pin is True
    assert delivery.named(Events.CONVERSATION_UPDATED)[-1]['conversation']['groupSettings']['allowMemberPin']


def test_member_rename_follows_allow_member_edit(conversation_service, group):
    rename = UpdateConversationRequest.from_request({'name': 'Trip'})
    with pytest.raises(ForbiddenError):
        conversation_service.update_conversation(group.conversation_id, 'bob', rename)

    conversation_service.update_conversation(
        group.conversation_id, 'alice',
        UpdateConversationRequest.from_request({'groupSettings': {'allowMemberEdit': True}}))
    assert conversation_service.update_conversation(group.conversation_id, 'bob', rename).name == 'Trip'


def test_group_settings_rejected_on_direct(conversation_service, direct):
    request = UpdateConversationRequest.from_request({'groupSettings': {'allowMemberPin': True}})
    with pytest.raises(ValidationError):
        conversation_service.update_conversation(direct.conversation_id, 'alice', request)


def test_direct_settings_update(conversation_service, direct):
    request = UpdateConversationRequest.from_request({'settings': {'muteNotifications': True, 'theme': 'dark'}})
    updated = conversation_service.update_conversation(direct.conversation_id, 'bob', request)
    assert updated.settings['mute_notifications'] is True
    assert updated.settings['theme'] == 'dark'


def test_add_participants_to_group(conversation_service, group, delivery):
    updated = conversation_service.add_participants(group.conversation_id, 'bob', ['dave', 'carol'])

    assert sorted(updated.participant_ids) == ['alice', 'bob', 'carol', 'dave']
    assert delivery.named(Events.PARTICIPANT_ADDED)[0]['userIds'] == ['dave']
    assert ('join', 'dave', conversation_room(group.conversation_id)) in delivery.room_changes


def test_add_participants_to_direct_is_refused(conversation_service, direct):
    with pytest.raises(PolicyViolationError):
        conversation_service.add_participants(direct.conversation_id, 'alice', ['carol'])


def test_invite_respects_group_setting(conversation_service, group):
    conversation_service.update_conversation(
        group.conversation_id, 'alice',
        UpdateConversationRequest.from_request({'groupSettings': {'allowMemberInvite': False}}))
    with pytest.raises(ForbiddenError):
        conversation_service.add_participants(group.conversation_id, 'bob', ['dave'])


def test_remove_participant_rules(conversation_service, group, delivery):
    with pytest.raises(ForbiddenError):
        conversation_service.remove_participant(group.conversation_id, 'bob', 'carol')
    with pytest.raises(PolicyViolationError):
        conversation_service.remove_participant(group.conversation_id, 'alice', 'alice')

    updated = conversation_service.remove_participant(group.conversation_id, 'alice', 'carol')
    assert sorted(updated.participant_ids) == ['alice', 'bob']
    assert delivery.named(Events.PARTICIPANT_REMOVED)[0]['userId'] == 'carol'
    assert ('leave', 'carol', conversation_room(group.conversation_id)) in delivery.room_changes


def test_admin_leaving_hands_over_role(conversation_service, group):
    result = conversation_service.leave_conversation(group.conversation_id, 'alice')

    assert result['deactivated'] is False
    assert result['admin'] == 'bob'
    with pytest.raises(ForbiddenError):
        conversation_service.get_conversation(group.conversation_id, 'alice')


def test_last_member_leaving_deactivates(conversation_service):
    pair = conversation_service.create_conversation('alice', CreateConversationRequest(['bob'], is_group=True))
    conversation_service.leave_conversation(pair.conversation_id, 'alice')
    result = conversation_service.leave_conversation(pair.conversation_id, 'bob')

    assert result['deactivated'] is True
    with pytest.raises(NotFoundError):
        conversation_service.get_conversation(pair.conversation_id, 'bob')


def test_leaving_direct_deactivates_it(conversation_service, direct):
    result = conversation_service.leave_conversation(direct.conversation_id, 'bob')
    assert result['deactivated'] is True
    with pytest.raises(NotFoundError):
        conversation_service.get_conversation(direct.conversation_id, 'alice')


def test_delete_group_is_admin_only(conversation_service, group):
    with pytest.raises(ForbiddenError):
        conversation_service.delete_conversation(group.conversation_id, 'bob')
    conversation_service.delete_conversation(group.conversation_id, 'alice')
    with pytest.raises(NotFoundError):
        conversation_service.get_conversation(group.conversation_id, 'alice')
