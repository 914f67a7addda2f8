import pytest
from bson import ObjectId

from locket_server.dto.conversation_dto import CreateConversationRequest, UpdateConversationRequest
from locket_server.dto.message_dto import (
    CreateMessageRequest, EditMessageRequest, ForwardRequest, ListMessagesQuery, PinRequest,
    ReactionRequest, SearchQuery, StatusRequest, parse_message_id
)
from locket_server.exception.MessagingError import ValidationError
from locket_server.messaging.models import (
    AttachmentContent, EmoteContent, MessageStatus, MessageType, StickerContent, TextContent
)

CID = str(ObjectId())


def _create(**body):
    return CreateMessageRequest.from_request({'conversationId': CID, **body})


def test_text_message_is_default():
    request = _create(text='  hello  ')
    assert request.payload.message_type == MessageType.TEXT
    assert request.payload.content == TextContent('hello')


def test_type_inferred_from_first_attachment():
    request = _create(attachments=[{'url': 'https://cdn/x.jpg', 'type': 'image'},
                                   {'url': 'https://cdn/y.mp4', 'type': 'video'}])
    assert request.payload.message_type == MessageType.IMAGE
    assert isinstance(request.payload.content, AttachmentContent)
    assert len(request.payload.content.attachments) == 2


def test_sticker_and_emote_variants():
    sticker = _create(sticker={'stickerId': 's1', 'emoji': '🐱'})
    emote = _create(emote={'emoteId': 'e1'})
    assert isinstance(sticker.payload.content, StickerContent)
    assert isinstance(emote.payload.content, EmoteContent)
    assert emote.payload.message_type == MessageType.EMOTE


def test_every_field_problem_is_reported():
    with pytest.raises(ValidationError) as exc:
        CreateMessageRequest.from_request({'conversationId': 'nope', 'text': 'x' * 5001, 'replyTo': 'bad'})
    assert set(exc.value.errors) >= {'conversationId', 'text', 'replyTo'}


def test_text_message_needs_text():
    with pytest.raises(ValidationError) as exc:
        _create(type='text')
    assert 'text' in exc.value.errors


def test_media_type_needs_attachment():
    with pytest.raises(ValidationError) as exc:
        _create(type='image', text='caption')
    assert 'attachments' in exc.value.errors


def test_attachment_fields_are_checked():
    with pytest.raises(ValidationError) as exc:
        _create(attachments=[{'url': 'https://cdn/x', 'type': 'hologram', 'fileSize': -1}])
    assert 'attachments[0].type' in exc.value.errors
    assert 'attachments[0].fileSize' in exc.value.errors


def test_thread_and_reply_ids_are_parsed():
    parent = ObjectId()
    request = _create(text='hi', replyTo=str(parent), threadInfo={'parentMessageId': str(parent)})
    assert request.reply_to == parent
    assert request.thread_parent_id == parent


def test_edit_requires_non_blank_text():
    with pytest.raises(ValidationError):
        EditMessageRequest.from_request({'text': '   '})
    assert EditMessageRequest.from_request({'text': 'fixed'}).text == 'fixed'


def test_reaction_length_limit():
    with pytest.raises(ValidationError):
        ReactionRequest.from_request({'reactionType': 'x' * 11})
    assert ReactionRequest.from_request({'reactionType': '❤️'}).reaction_type == '❤️'


def test_pin_action():
    assert PinRequest.from_request({'action': 'pin'}).pin is True
    assert PinRequest.from_request({'action': 'unpin'}).pin is False
    with pytest.raises(ValidationError):
        PinRequest.from_request({'action': 'toggle'})


def test_forward_keeps_raw_ids():
    request = ForwardRequest.from_request({'targetConversationIds': [CID, 'junk'], 'messageIds': ['also-junk']})
    assert request.target_conversation_ids == [CID, 'junk']
    with pytest.raises(ValidationError) as exc:
        ForwardRequest.from_request({'targetConversationIds': [], 'messageIds': 'x'})
    assert set(exc.value.errors) == {'targetConversationIds', 'messageIds'}


def test_list_query_bounds():
    assert ListMessagesQuery.from_request({}).limit == 50
    with pytest.raises(ValidationError):
        ListMessagesQuery.from_request({'limit': '500'})


def test_search_rejects_inverted_range():
    with pytest.raises(ValidationError) as exc:
        SearchQuery.from_request({'dateFrom': '2026-03-02T00:00:00Z', 'dateTo': '2026-03-01T00:00:00Z'})
    assert 'dateTo' in exc.value.errors


def test_search_paging():
    query = SearchQuery.from_request({'query': 'hi', 'page': '3', 'limit': '10', 'hasReactions': 'true'})
    assert query.skip == 20
    assert query.has_reactions is True


def test_status_request():
    assert StatusRequest.from_request({'status': 'read'}).status == MessageStatus.READ
    with pytest.raises(ValidationError):
        StatusRequest.from_request({'status': 'seen'})


def test_path_id_must_be_valid():
    with pytest.raises(ValidationError):
        parse_message_id('123')


def test_create_conversation_request():
    request = CreateConversationRequest.from_request({
        'participants': ['bob', 'bob', 'carol'],
        'isGroup': True,
        'groupSettings': {'allowMemberPin': True},
    })
    assert request.participants == ['bob', 'carol']
    assert request.group_settings.allow_member_pin is True
    assert request.group_settings.allow_member_invite is True


def test_update_conversation_needs_a_field():
    with pytest.raises(ValidationError):
        UpdateConversationRequest.from_request({})
    with pytest.raises(ValidationError) as exc:
        UpdateConversationRequest.from_request({'settings': {'theme': 'neon'}})
    assert 'settings.theme' in exc.value.errors
    cleared = UpdateConversationRequest.from_request({'name': None})
    assert cleared.name_set and cleared.name is None
