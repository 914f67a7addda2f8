"""Typed request objects for message operations.

``from_request`` is the only place raw JSON/query data is inspected. It
raises ValidationError with every field problem found; services receive the
resulting objects and never re-check shapes.
"""
from typing import Optional, Dict, Any, List, Tuple

from bson import ObjectId

from locket_server.exception.MessagingError import ValidationError
from locket_server.messaging.models import (
    MessageType, MessageStatus, AttachmentType, Platform, Attachment, Sticker, Emote,
    TextContent, AttachmentContent, StickerContent, EmoteContent, MessageContent, MessageMetadata
)
from locket_server.utils import validation as v

MAX_TEXT_LENGTH = 5000
MAX_REACTION_LENGTH = 10
MAX_METADATA_LENGTH = 100
MAX_ATTACHMENTS = 10

LIST_DEFAULT_LIMIT = 50
LIST_MAX_LIMIT = 100
THREAD_DEFAULT_LIMIT = 50
THREAD_MAX_LIMIT = 100
SEARCH_DEFAULT_LIMIT = 20
SEARCH_MAX_LIMIT = 50

_ATTACHMENT_TYPES = {t.value for t in AttachmentType}


def _raise_if(errors: Dict[str, str]):
    if errors:
        raise ValidationError(errors)


def _parse_attachment(raw: Any, field: str, errors: Dict[str, str]) -> Optional[Attachment]:
    data = v.require_object(raw, field, errors, required=True)
    if data is None:
        return None
    url = v.parse_string(data.get('url'), f'{field}.url', errors, required=True, max_length=2048)
    kind = v.parse_enum(data.get('type'), AttachmentType, f'{field}.type', errors, required=True)
    file_name = v.parse_string(data.get('fileName'), f'{field}.fileName', errors, max_length=255)
    file_size = v.parse_number(data.get('fileSize'), f'{field}.fileSize', errors)
    duration = v.parse_number(data.get('duration'), f'{field}.duration', errors)
    thumbnail = v.parse_string(data.get('thumbnail'), f'{field}.thumbnail', errors, max_length=2048)
    mime_type = v.parse_string(data.get('mimeType'), f'{field}.mimeType', errors, max_length=100)
    width = v.parse_number(data.get('width'), f'{field}.width', errors)
    height = v.parse_number(data.get('height'), f'{field}.height', errors)
    if url is None or kind is None:
        return None
    return Attachment(url, kind, file_name, file_size, duration, thumbnail, mime_type, width, height)


def _parse_sticker(raw: Any, errors: Dict[str, str]) -> Optional[Sticker]:
    data = v.require_object(raw, 'sticker', errors, required=True)
    if data is None:
        return None
    sticker_id = v.parse_string(data.get('stickerId'), 'sticker.stickerId', errors, required=True, max_length=100)
    pack_id = v.parse_string(data.get('stickerPackId'), 'sticker.stickerPackId', errors, max_length=100)
    emoji = v.parse_string(data.get('emoji'), 'sticker.emoji', errors, max_length=20)
    url = v.parse_string(data.get('url'), 'sticker.url', errors, max_length=2048)
    return Sticker(sticker_id, pack_id, emoji, url) if sticker_id else None


def _parse_emote(raw: Any, errors: Dict[str, str]) -> Optional[Emote]:
    data = v.require_object(raw, 'emote', errors, required=True)
    if data is None:
        return None
    emote_id = v.parse_string(data.get('emoteId'), 'emote.emoteId', errors, required=True, max_length=100)
    emote_type = v.parse_string(data.get('emoteType'), 'emote.emoteType', errors, max_length=50)
    emoji = v.parse_string(data.get('emoji'), 'emote.emoji', errors, max_length=20)
    return Emote(emote_id, emote_type, emoji) if emote_id else None


def parse_content(data: Dict[str, Any], errors: Dict[str, str]) -> Tuple[Optional[MessageType], Optional[MessageContent]]:
    """Build exactly one content variant from the loose request fields."""
    message_type = v.parse_enum(data.get('type'), MessageType, 'type', errors)
    text = v.parse_string(data.get('text'), 'text', errors, max_length=MAX_TEXT_LENGTH)
    raw_attachments = data.get('attachments') or []
    if not isinstance(raw_attachments, list):
        errors['attachments'] = 'attachments must be an array'
        raw_attachments = []
    elif len(raw_attachments) > MAX_ATTACHMENTS:
        errors['attachments'] = f'attachments must contain at most {MAX_ATTACHMENTS} items'
        raw_attachments = []

    if message_type is None and 'type' not in errors:
        if data.get('sticker') is not None:
            message_type = MessageType.STICKER
        elif data.get('emote') is not None:
            message_type = MessageType.EMOTE
        elif raw_attachments:
            first = raw_attachments[0].get('type') if isinstance(raw_attachments[0], dict) else None
            # every attachment type is also a message type
            message_type = MessageType(first) if first in _ATTACHMENT_TYPES else MessageType.FILE
        else:
            message_type = MessageType.TEXT
    if message_type is None:
        return None, None

    if message_type == MessageType.TEXT:
        if raw_attachments:
            errors['attachments'] = 'attachments are not allowed on text messages'
        if not text:
            errors.setdefault('text', 'text is required for text messages')
            return message_type, None
        return message_type, TextContent(text)

    if message_type == MessageType.EMOTE:
        emote = _parse_emote(data.get('emote'), errors)
        return message_type, EmoteContent(emote) if emote else None

    if message_type == MessageType.STICKER and data.get('sticker') is not None:
        sticker = _parse_sticker(data.get('sticker'), errors)
        return message_type, StickerContent(sticker) if sticker else None

    if not raw_attachments:
        errors['attachments'] = f'at least one attachment is required for {message_type.value} messages'
        return message_type, None
    attachments = []
    for i, raw in enumerate(raw_attachments):
        attachment = _parse_attachment(raw, f'attachments[{i}]', errors)
        if attachment is not None:
            attachments.append(attachment)
    if len(attachments) != len(raw_attachments):
        return message_type, None
    return message_type, AttachmentContent(tuple(attachments), text or None)


def parse_metadata(raw: Any, errors: Dict[str, str]) -> MessageMetadata:
    data = v.require_object(raw, 'metadata', errors) or {}
    return MessageMetadata(
        client_message_id=v.parse_string(data.get('clientMessageId'), 'metadata.clientMessageId', errors, max_length=MAX_METADATA_LENGTH),
        device_id=v.parse_string(data.get('deviceId'), 'metadata.deviceId', errors, max_length=MAX_METADATA_LENGTH),
        platform=v.parse_enum(data.get('platform'), Platform, 'metadata.platform', errors),
    )


class ForwardSnapshotInput:
    """Client-supplied origin details for a message sent with ``forwardedFrom``."""

    def __init__(self, original_message_id: Optional[ObjectId] = None, original_sender_name: Optional[str] = None,
                 original_conversation_id: Optional[ObjectId] = None, original_conversation_name: Optional[str] = None):
        self.original_message_id = original_message_id
        self.original_sender_name = original_sender_name
        self.original_conversation_id = original_conversation_id
        self.original_conversation_name = original_conversation_name


class MessagePayload:
    """Content shared by create and reply requests."""

    def __init__(self, message_type: MessageType, content: MessageContent, metadata: MessageMetadata):
        self.message_type = message_type
        self.content = content
        self.metadata = metadata

    @classmethod
    def parse(cls, data: Dict[str, Any], errors: Dict[str, str]) -> Optional['MessagePayload']:
        message_type, content = parse_content(data, errors)
        metadata = parse_metadata(data.get('metadata'), errors)
        if content is None:
            return None
        return cls(message_type, content, metadata)

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'MessagePayload':
        errors: Dict[str, str] = {}
        payload = cls.parse(data or {}, errors)
        _raise_if(errors)
        return payload


class CreateMessageRequest:
    def __init__(
        self,
        conversation_id: ObjectId,
        payload: MessagePayload,
        reply_to: Optional[ObjectId] = None,
        forwarded_from: Optional[str] = None,
        forward_snapshot: Optional[ForwardSnapshotInput] = None,
        thread_parent_id: Optional[ObjectId] = None
    ):
        self.conversation_id = conversation_id
        self.payload = payload
        self.reply_to = reply_to
        self.forwarded_from = forwarded_from
        self.forward_snapshot = forward_snapshot
        self.thread_parent_id = thread_parent_id

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'CreateMessageRequest':
        data = data or {}
        errors: Dict[str, str] = {}
        conversation_id = v.parse_object_id(data.get('conversationId'), 'conversationId', errors)
        payload = MessagePayload.parse(data, errors)
        reply_to = v.parse_object_id(data.get('replyTo'), 'replyTo', errors, required=False)
        forwarded_from = v.parse_user_id(data.get('forwardedFrom'), 'forwardedFrom', errors, required=False)

        snapshot = None
        raw_forward = v.require_object(data.get('forwardInfo'), 'forwardInfo', errors)
        if forwarded_from and raw_forward is not None:
            snapshot = ForwardSnapshotInput(
                original_message_id=v.parse_object_id(raw_forward.get('originalMessageId'), 'forwardInfo.originalMessageId', errors, required=False),
                original_sender_name=v.parse_string(raw_forward.get('originalSenderName'), 'forwardInfo.originalSenderName', errors, max_length=100),
                original_conversation_id=v.parse_object_id(raw_forward.get('originalConversationId'), 'forwardInfo.originalConversationId', errors, required=False),
                original_conversation_name=v.parse_string(raw_forward.get('originalConversationName'), 'forwardInfo.originalConversationName', errors, max_length=100),
            )

        thread_parent_id = None
        raw_thread = v.require_object(data.get('threadInfo'), 'threadInfo', errors)
        if raw_thread is not None:
            thread_parent_id = v.parse_object_id(raw_thread.get('parentMessageId'), 'threadInfo.parentMessageId', errors, required=False)

        _raise_if(errors)
        return cls(conversation_id, payload, reply_to, forwarded_from, snapshot, thread_parent_id)


class ListMessagesQuery:
    def __init__(self, limit: int = LIST_DEFAULT_LIMIT, last_created_at=None, last_id: Optional[ObjectId] = None):
        self.limit = limit
        self.last_created_at = last_created_at
        self.last_id = last_id

    @classmethod
    def from_request(cls, args) -> 'ListMessagesQuery':
        errors: Dict[str, str] = {}
        limit = v.parse_int(args.get('limit'), 'limit', errors, default=LIST_DEFAULT_LIMIT, minimum=1, maximum=LIST_MAX_LIMIT)
        last_created_at = v.parse_datetime(args.get('lastCreatedAt'), 'lastCreatedAt', errors)
        last_id = v.parse_object_id(args.get('lastId'), 'lastId', errors, required=False)
        _raise_if(errors)
        return cls(limit, last_created_at, last_id)


def parse_message_id(value: Any, field: str = 'messageId') -> ObjectId:
    """Validate a single id taken from the URL path."""
    errors: Dict[str, str] = {}
    oid = v.parse_object_id(value, field, errors)
    _raise_if(errors)
    return oid


class EditMessageRequest:
    def __init__(self, text: str):
        self.text = text

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'EditMessageRequest':
        errors: Dict[str, str] = {}
        text = v.parse_string((data or {}).get('text'), 'text', errors, required=True,
                              min_length=1, max_length=MAX_TEXT_LENGTH)
        _raise_if(errors)
        return cls(text)


class ReactionRequest:
    def __init__(self, reaction_type: str):
        self.reaction_type = reaction_type

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'ReactionRequest':
        errors: Dict[str, str] = {}
        reaction = v.parse_string((data or {}).get('reactionType'), 'reactionType', errors, required=True,
                                  min_length=1, max_length=MAX_REACTION_LENGTH)
        _raise_if(errors)
        return cls(reaction)


class ForwardRequest:
    """Ids are kept as raw strings; malformed ones are skipped by the service, not rejected."""

    def __init__(self, target_conversation_ids: List[str], message_ids: List[str]):
        self.target_conversation_ids = target_conversation_ids
        self.message_ids = message_ids

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'ForwardRequest':
        data = data or {}
        errors: Dict[str, str] = {}
        targets = data.get('targetConversationIds')
        messages = data.get('messageIds')
        for field, value in (('targetConversationIds', targets), ('messageIds', messages)):
            if not isinstance(value, list) or not value:
                errors[field] = f'{field} must be a non-empty array'
            elif len(value) > 100:
                errors[field] = f'{field} must contain at most 100 items'
        _raise_if(errors)
        return cls([str(t) for t in targets], [str(m) for m in messages])


class ThreadQuery:
    def __init__(self, page: int = 1, limit: int = THREAD_DEFAULT_LIMIT):
        self.page = page
        self.limit = limit

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_request(cls, args) -> 'ThreadQuery':
        errors: Dict[str, str] = {}
        page = v.parse_int(args.get('page'), 'page', errors, default=1, minimum=1, maximum=100000)
        limit = v.parse_int(args.get('limit'), 'limit', errors, default=THREAD_DEFAULT_LIMIT, minimum=1, maximum=THREAD_MAX_LIMIT)
        _raise_if(errors)
        return cls(page, limit)


class PinRequest:
    def __init__(self, pin: bool):
        self.pin = pin

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'PinRequest':
        action = (data or {}).get('action')
        if action not in ('pin', 'unpin'):
            raise ValidationError({'action': 'action must be one of: pin, unpin'})
        return cls(action == 'pin')


class SearchQuery:
    def __init__(self, query=None, conversation_id=None, sender_id=None, message_type=None,
                 date_from=None, date_to=None, has_attachments=None, has_reactions=None,
                 page: int = 1, limit: int = SEARCH_DEFAULT_LIMIT):
        self.query = query
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.message_type = message_type
        self.date_from = date_from
        self.date_to = date_to
        self.has_attachments = has_attachments
        self.has_reactions = has_reactions
        self.page = page
        self.limit = limit

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_request(cls, args) -> 'SearchQuery':
        errors: Dict[str, str] = {}
        query = v.parse_string(args.get('query') or None, 'query', errors, min_length=1, max_length=100)
        conversation_id = v.parse_object_id(args.get('conversationId'), 'conversationId', errors, required=False)
        sender_id = v.parse_user_id(args.get('senderId') or None, 'senderId', errors, required=False)
        message_type = v.parse_enum(args.get('type'), MessageType, 'type', errors)
        date_from = v.parse_datetime(args.get('dateFrom'), 'dateFrom', errors)
        date_to = v.parse_datetime(args.get('dateTo'), 'dateTo', errors)
        if date_from and date_to and date_from > date_to:
            errors['dateTo'] = 'dateTo must not be earlier than dateFrom'
        has_attachments = v.parse_bool(args.get('hasAttachments'), 'hasAttachments', errors)
        has_reactions = v.parse_bool(args.get('hasReactions'), 'hasReactions', errors)
        page = v.parse_int(args.get('page'), 'page', errors, default=1, minimum=1, maximum=100000)
        limit = v.parse_int(args.get('limit'), 'limit', errors, default=SEARCH_DEFAULT_LIMIT, minimum=1, maximum=SEARCH_MAX_LIMIT)
        _raise_if(errors)
        return cls(query, conversation_id, sender_id, message_type, date_from, date_to,
                   has_attachments, has_reactions, page, limit)


class StatusRequest:
    def __init__(self, status: MessageStatus):
        self.status = status

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'StatusRequest':
        errors: Dict[str, str] = {}
        status = v.parse_enum((data or {}).get('status'), MessageStatus, 'status', errors, required=True)
        _raise_if(errors)
        return cls(status)
