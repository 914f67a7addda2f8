"""Messaging data models for direct and group conversations.

Collections:
- conversations: Chat conversations (1-1 or group) with participant read cursors
- messages: Individual messages, soft-deleted as tombstones

Every model exposes to_dict() (camelCase API shape), to_db_doc() (snake_case
storage shape) and from_doc().
"""
from typing import Optional, Dict, Any, List, NamedTuple, Tuple, Union
from datetime import datetime
from enum import Enum

from bson import ObjectId

from locket_server.utils.time_utils import utc_now, isoformat


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    STICKER = "sticker"
    FILE = "file"
    AUDIO = "audio"
    EMOTE = "emote"


class AttachmentType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    AUDIO = "audio"
    STICKER = "sticker"


class MessageStatus(str, Enum):
    SENT = "sent"            # Persisted by the server
    DELIVERED = "delivered"  # Acknowledged shortly after creation
    READ = "read"            # Every other participant's cursor has passed it

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {MessageStatus.SENT: 0, MessageStatus.DELIVERED: 1, MessageStatus.READ: 2}


class Platform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


def _oid_str(value) -> Optional[str]:
    return str(value) if value is not None else None


# =============================================================================
# Content variants
# =============================================================================

class Attachment(NamedTuple):
    url: str
    type: AttachmentType
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[float] = None
    thumbnail: Optional[str] = None
    mime_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'type': self.type.value,
            'fileName': self.file_name,
            'fileSize': self.file_size,
            'duration': self.duration,
            'thumbnail': self.thumbnail,
            'mimeType': self.mime_type,
            'width': self.width,
            'height': self.height,
        }

    def to_db_doc(self) -> Dict[str, Any]:
        doc = self._asdict()
        doc['type'] = self.type.value
        return doc

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Attachment':
        return cls(
            url=doc.get('url'),
            type=AttachmentType(doc.get('type', AttachmentType.FILE.value)),
            file_name=doc.get('file_name'),
            file_size=doc.get('file_size'),
            duration=doc.get('duration'),
            thumbnail=doc.get('thumbnail'),
            mime_type=doc.get('mime_type'),
            width=doc.get('width'),
            height=doc.get('height'),
        )


class Sticker(NamedTuple):
    sticker_id: str
    sticker_pack_id: Optional[str] = None
    emoji: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'stickerId': self.sticker_id, 'stickerPackId': self.sticker_pack_id,
                'emoji': self.emoji, 'url': self.url}


class Emote(NamedTuple):
    emote_id: str
    emote_type: Optional[str] = None
    emoji: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'emoteId': self.emote_id, 'emoteType': self.emote_type, 'emoji': self.emoji}


class TextContent(NamedTuple):
    text: str


class AttachmentContent(NamedTuple):
    attachments: Tuple[Attachment, ...]
    caption: Optional[str] = None


class StickerContent(NamedTuple):
    sticker: Sticker


class EmoteContent(NamedTuple):
    emote: Emote


MessageContent = Union[TextContent, AttachmentContent, StickerContent, EmoteContent]


def content_type(content: MessageContent) -> MessageType:
    """Message type implied by a content variant."""
    if isinstance(content, TextContent):
        return MessageType.TEXT
    if isinstance(content, StickerContent):
        return MessageType.STICKER
    if isinstance(content, EmoteContent):
        return MessageType.EMOTE
    first = content.attachments[0].type
    if first == AttachmentType.STICKER:
        return MessageType.STICKER
    return MessageType(first.value)


def content_to_db(content: Optional[MessageContent]) -> Dict[str, Any]:
    """Flatten a content variant into the stored sibling fields."""
    doc = {'text': None, 'attachments': [], 'sticker': None, 'emote': None}
    if isinstance(content, TextContent):
        doc['text'] = content.text
    elif isinstance(content, AttachmentContent):
        doc['text'] = content.caption
        doc['attachments'] = [a.to_db_doc() for a in content.attachments]
    elif isinstance(content, StickerContent):
        doc['sticker'] = content.sticker._asdict()
    elif isinstance(content, EmoteContent):
        doc['emote'] = content.emote._asdict()
    return doc


def content_from_doc(doc: Dict[str, Any]) -> Optional[MessageContent]:
    if doc.get('is_deleted'):
        return None
    if doc.get('sticker'):
        return StickerContent(Sticker(**doc['sticker']))
    if doc.get('emote'):
        return EmoteContent(Emote(**doc['emote']))
    if doc.get('attachments'):
        return AttachmentContent(tuple(Attachment.from_doc(a) for a in doc['attachments']), doc.get('text'))
    if doc.get('text') is not None:
        return TextContent(doc['text'])
    return None


# =============================================================================
# Snapshots and embedded records
# =============================================================================

class ReplyInfo(NamedTuple):
    """Snapshot of the replied-to message taken when the reply is created.

    Never re-synced: later edits or deletion of the original do not change it.
    """
    message_id: ObjectId
    text: str
    sender_id: str
    sender_name: Optional[str]
    attachment_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'messageId': str(self.message_id), 'text': self.text, 'senderId': self.sender_id,
                'senderName': self.sender_name, 'attachmentType': self.attachment_type}

    def to_db_doc(self) -> Dict[str, Any]:
        return self._asdict()

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> Optional['ReplyInfo']:
        if not doc:
            return None
        return cls(**{k: doc.get(k) for k in cls._fields})


class ForwardInfo(NamedTuple):
    """Snapshot of a forwarded message's origin. Survives deletion of the original."""
    original_message_id: Optional[ObjectId]
    original_sender_id: str
    original_sender_name: Optional[str]
    original_conversation_id: Optional[ObjectId]
    original_conversation_name: Optional[str]
    forwarded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'originalMessageId': _oid_str(self.original_message_id),
            'originalSenderId': self.original_sender_id,
            'originalSenderName': self.original_sender_name,
            'originalConversationId': _oid_str(self.original_conversation_id),
            'originalConversationName': self.original_conversation_name,
            'forwardedAt': isoformat(self.forwarded_at),
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return self._asdict()

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> Optional['ForwardInfo']:
        if not doc:
            return None
        return cls(**{k: doc.get(k) for k in cls._fields})


class ThreadInfo:
    """Thread linkage. Replies carry parent_message_id; roots carry the counters."""

    def __init__(
        self,
        parent_message_id: Optional[ObjectId] = None,
        reply_count: int = 0,
        last_reply_at: Optional[datetime] = None,
        participants: Optional[List[str]] = None
    ):
        self.parent_message_id = parent_message_id
        self.reply_count = reply_count
        self.last_reply_at = last_reply_at
        self.participants = participants or []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'parentMessageId': _oid_str(self.parent_message_id),
            'replyCount': self.reply_count,
            'lastReplyAt': isoformat(self.last_reply_at),
            'participants': list(self.participants),
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'parent_message_id': self.parent_message_id,
            'reply_count': self.reply_count,
            'last_reply_at': self.last_reply_at,
            'participants': list(self.participants),
        }

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> Optional['ThreadInfo']:
        if not doc:
            return None
        return cls(
            parent_message_id=doc.get('parent_message_id'),
            reply_count=doc.get('reply_count', 0),
            last_reply_at=doc.get('last_reply_at'),
            participants=doc.get('participants', []),
        )


class Reaction(NamedTuple):
    user_id: str
    type: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {'userId': self.user_id, 'type': self.type, 'createdAt': isoformat(self.created_at)}


class EditRecord(NamedTuple):
    text: Optional[str]
    edited_at: datetime


class MessageMetadata(NamedTuple):
    client_message_id: Optional[str] = None
    device_id: Optional[str] = None
    platform: Optional[Platform] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'clientMessageId': self.client_message_id, 'deviceId': self.device_id,
                'platform': self.platform.value if self.platform else None}

    def to_db_doc(self) -> Dict[str, Any]:
        return {'client_message_id': self.client_message_id, 'device_id': self.device_id,
                'platform': self.platform.value if self.platform else None}

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> 'MessageMetadata':
        doc = doc or {}
        platform = doc.get('platform')
        return cls(doc.get('client_message_id'), doc.get('device_id'),
                   Platform(platform) if platform else None)


# =============================================================================
# Message
# =============================================================================

class Message:
    """Message document structure."""

    def __init__(
        self,
        conversation_id: ObjectId,
        sender_id: str,
        content: Optional[MessageContent],
        message_type: Optional[MessageType] = None,
        message_id: Optional[ObjectId] = None,
        reply_to: Optional[ObjectId] = None,
        reply_info: Optional[ReplyInfo] = None,
        forwarded_from: Optional[str] = None,
        forward_info: Optional[ForwardInfo] = None,
        thread_info: Optional[ThreadInfo] = None,
        reactions: Optional[List[Reaction]] = None,
        status: MessageStatus = MessageStatus.SENT,
        is_edited: bool = False,
        edit_history: Optional[List[EditRecord]] = None,
        is_deleted: bool = False,
        deleted_at: Optional[datetime] = None,
        is_pinned: bool = False,
        pinned_by: Optional[List[str]] = None,
        metadata: Optional[MessageMetadata] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.message_id = message_id or ObjectId()
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.content = content
        if message_type is None:
            message_type = content_type(content) if content is not None else MessageType.TEXT
        self.message_type = message_type
        self.reply_to = reply_to
        self.reply_info = reply_info
        self.forwarded_from = forwarded_from
        self.forward_info = forward_info
        self.thread_info = thread_info
        self.reactions = reactions or []
        self.status = status
        self.is_edited = is_edited
        self.edit_history = edit_history or []
        self.is_deleted = is_deleted
        self.deleted_at = deleted_at
        self.is_pinned = is_pinned
        self.pinned_by = pinned_by or []
        self.metadata = metadata or MessageMetadata()
        self.created_at = created_at or utc_now()
        self.updated_at = updated_at or self.created_at

    @property
    def text(self) -> Optional[str]:
        if isinstance(self.content, TextContent):
            return self.content.text
        if isinstance(self.content, AttachmentContent):
            return self.content.caption
        return None

    @property
    def attachments(self) -> Tuple[Attachment, ...]:
        if isinstance(self.content, AttachmentContent):
            return self.content.attachments
        return ()

    @property
    def parent_message_id(self) -> Optional[ObjectId]:
        return self.thread_info.parent_message_id if self.thread_info else None

    def summary_text(self) -> str:
        """Text shown in a conversation's last-message summary."""
        if self.text:
            return self.text
        if self.attachments:
            return self.attachments[0].type.value
        if isinstance(self.content, (StickerContent, EmoteContent)):
            return self.message_type.value
        return 'Media'

    def reaction_of(self, user_id: str) -> Optional[Reaction]:
        for reaction in self.reactions:
            if reaction.user_id == user_id:
                return reaction
        return None

    def to_dict(self, read_by: Optional[List[str]] = None) -> Dict[str, Any]:
        content = self.content
        out = {
            'id': str(self.message_id),
            'conversationId': str(self.conversation_id),
            'senderId': self.sender_id,
            'type': self.message_type.value,
            'text': None if self.is_deleted else self.text,
            'attachments': [a.to_dict() for a in self.attachments],
            'sticker': content.sticker.to_dict() if isinstance(content, StickerContent) else None,
            'emote': content.emote.to_dict() if isinstance(content, EmoteContent) else None,
            'replyTo': _oid_str(self.reply_to),
            'replyInfo': self.reply_info.to_dict() if self.reply_info else None,
            'forwardedFrom': self.forwarded_from,
            'forwardInfo': self.forward_info.to_dict() if self.forward_info else None,
            'threadInfo': self.thread_info.to_dict() if self.thread_info else None,
            'reactions': [r.to_dict() for r in self.reactions],
            'status': self.status.value,
            'isEdited': self.is_edited,
            'editHistory': [{'text': e.text, 'editedAt': isoformat(e.edited_at)} for e in self.edit_history],
            'isDeleted': self.is_deleted,
            'deletedAt': isoformat(self.deleted_at),
            'isPinned': self.is_pinned,
            'pinnedBy': list(self.pinned_by),
            'metadata': self.metadata.to_dict(),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
        if read_by is not None:
            out['readBy'] = read_by
        return out

    def to_db_doc(self) -> Dict[str, Any]:
        doc = {
            '_id': self.message_id,
            'conversation_id': self.conversation_id,
            'sender_id': self.sender_id,
            'type': self.message_type.value,
            'reply_to': self.reply_to,
            'reply_info': self.reply_info.to_db_doc() if self.reply_info else None,
            'forwarded_from': self.forwarded_from,
            'forward_info': self.forward_info.to_db_doc() if self.forward_info else None,
            'thread_info': self.thread_info.to_db_doc() if self.thread_info else None,
            'reactions': [r._asdict() for r in self.reactions],
            'status': self.status.value,
            'is_edited': self.is_edited,
            'edit_history': [e._asdict() for e in self.edit_history],
            'is_deleted': self.is_deleted,
            'deleted_at': self.deleted_at,
            'is_pinned': self.is_pinned,
            'pinned_by': list(self.pinned_by),
            'metadata': self.metadata.to_db_doc(),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        doc.update(content_to_db(self.content))
        return doc

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Message':
        return cls(
            message_id=doc.get('_id'),
            conversation_id=doc.get('conversation_id'),
            sender_id=doc.get('sender_id'),
            content=content_from_doc(doc),
            message_type=MessageType(doc.get('type', MessageType.TEXT.value)),
            reply_to=doc.get('reply_to'),
            reply_info=ReplyInfo.from_doc(doc.get('reply_info')),
            forwarded_from=doc.get('forwarded_from'),
            forward_info=ForwardInfo.from_doc(doc.get('forward_info')),
            thread_info=ThreadInfo.from_doc(doc.get('thread_info')),
            reactions=[Reaction(r['user_id'], r['type'], r.get('created_at')) for r in doc.get('reactions', [])],
            status=MessageStatus(doc.get('status', MessageStatus.SENT.value)),
            is_edited=doc.get('is_edited', False),
            edit_history=[EditRecord(e.get('text'), e.get('edited_at')) for e in doc.get('edit_history', [])],
            is_deleted=doc.get('is_deleted', False),
            deleted_at=doc.get('deleted_at'),
            is_pinned=doc.get('is_pinned', False),
            pinned_by=doc.get('pinned_by', []),
            metadata=MessageMetadata.from_doc(doc.get('metadata')),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at'),
        )


# =============================================================================
# Conversation
# =============================================================================

class Participant:
    """A conversation member and their read cursor."""

    def __init__(
        self,
        user_id: str,
        last_read_message_id: Optional[ObjectId] = None,
        last_read_at: Optional[datetime] = None,
        joined_at: Optional[datetime] = None
    ):
        self.user_id = user_id
        self.last_read_message_id = last_read_message_id
        self.last_read_at = last_read_at
        self.joined_at = joined_at or utc_now()

    def has_read(self, message: Message) -> bool:
        return self.last_read_at is not None and self.last_read_at >= message.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'lastReadMessageId': _oid_str(self.last_read_message_id),
            'lastReadAt': isoformat(self.last_read_at),
            'joinedAt': isoformat(self.joined_at),
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'last_read_message_id': self.last_read_message_id,
            'last_read_at': self.last_read_at,
            'joined_at': self.joined_at,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Participant':
        return cls(doc.get('user_id'), doc.get('last_read_message_id'),
                   doc.get('last_read_at'), doc.get('joined_at'))


class GroupSettings:
    """Member permissions in a group. Invite is open by default; edit, delete and pin are admin-only."""

    FIELDS = ('allow_member_invite', 'allow_member_edit', 'allow_member_delete', 'allow_member_pin')

    def __init__(self, allow_member_invite: bool = True, allow_member_edit: bool = False,
                 allow_member_delete: bool = False, allow_member_pin: bool = False):
        self.allow_member_invite = allow_member_invite
        self.allow_member_edit = allow_member_edit
        self.allow_member_delete = allow_member_delete
        self.allow_member_pin = allow_member_pin

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowMemberInvite': self.allow_member_invite,
            'allowMemberEdit': self.allow_member_edit,
            'allowMemberDelete': self.allow_member_delete,
            'allowMemberPin': self.allow_member_pin,
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {f: getattr(self, f) for f in self.FIELDS}

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> 'GroupSettings':
        doc = doc or {}
        return cls(**{f: doc[f] for f in cls.FIELDS if f in doc})


class LastMessage(NamedTuple):
    message_id: ObjectId
    text: str
    sender_id: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {'messageId': str(self.message_id), 'text': self.text,
                'senderId': self.sender_id, 'timestamp': isoformat(self.timestamp)}

    @classmethod
    def of(cls, message: Message) -> 'LastMessage':
        return cls(message.message_id, message.summary_text(), message.sender_id, message.created_at)


DEFAULT_CONVERSATION_SETTINGS = {
    'mute_notifications': False,
    'custom_emoji': None,
    'theme': None,
    'wallpaper': None,
}


class Conversation:
    """Conversation document structure."""

    def __init__(
        self,
        participants: List[Participant],
        is_group: bool = False,
        conversation_id: Optional[ObjectId] = None,
        name: Optional[str] = None,
        admin: Optional[str] = None,
        group_settings: Optional[GroupSettings] = None,
        last_message: Optional[LastMessage] = None,
        pinned_messages: Optional[List[ObjectId]] = None,
        parent_conversation: Optional[ObjectId] = None,
        thread_info: Optional[Dict[str, Any]] = None,
        settings: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
        started_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.conversation_id = conversation_id or ObjectId()
        self.name = name
        self.participants = participants
        self.is_group = is_group
        self.admin = admin
        self.group_settings = group_settings or GroupSettings()
        self.last_message = last_message
        self.pinned_messages = pinned_messages or []
        self.parent_conversation = parent_conversation
        self.thread_info = thread_info
        self.settings = {**DEFAULT_CONVERSATION_SETTINGS, **(settings or {})}
        self.is_active = is_active
        self.created_at = created_at or utc_now()
        self.started_at = started_at or self.created_at
        self.updated_at = updated_at or self.created_at

    @property
    def participant_ids(self) -> List[str]:
        return [p.user_id for p in self.participants]

    def get_participant(self, user_id: str) -> Optional[Participant]:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    def is_participant(self, user_id: str) -> bool:
        return self.get_participant(user_id) is not None

    def is_admin(self, user_id: str) -> bool:
        return self.is_group and self.admin == user_id

    def can_member(self, user_id: str, permission: str) -> bool:
        """Whether user may perform a group action gated by ``allow_member_<permission>``.

        Direct conversations grant every action to both participants.
        """
        if not self.is_group:
            return self.is_participant(user_id)
        if self.is_admin(user_id):
            return True
        return self.is_participant(user_id) and bool(getattr(self.group_settings, f'allow_member_{permission}'))

    def read_by(self, message: Message) -> List[str]:
        """Participants other than the sender whose cursor has reached the message."""
        return [p.user_id for p in self.participants
                if p.user_id != message.sender_id and p.has_read(message)]

    def display_name(self, usernames: Dict[str, str], viewer_id: Optional[str] = None) -> str:
        """Stored name, or a fallback built from participant usernames."""
        if self.name:
            return self.name
        others = [uid for uid in self.participant_ids if uid != viewer_id] or self.participant_ids
        return ', '.join(usernames.get(uid, uid) for uid in others)

    def to_dict(self, viewer_id: Optional[str] = None, usernames: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        out = {
            'id': str(self.conversation_id),
            'name': self.name,
            'participants': [p.to_dict() for p in self.participants],
            'isGroup': self.is_group,
            'admin': self.admin,
            'groupSettings': self.group_settings.to_dict(),
            'lastMessage': self.last_message.to_dict() if self.last_message else None,
            'pinnedMessages': [str(m) for m in self.pinned_messages],
            'parentConversation': _oid_str(self.parent_conversation),
            'settings': {
                'muteNotifications': self.settings.get('mute_notifications'),
                'customEmoji': self.settings.get('custom_emoji'),
                'theme': self.settings.get('theme'),
                'wallpaper': self.settings.get('wallpaper'),
            },
            'isActive': self.is_active,
            'startedAt': isoformat(self.started_at),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
        if usernames is not None:
            out['displayName'] = self.display_name(usernames, viewer_id)
        return out

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            '_id': self.conversation_id,
            'name': self.name,
            'participants': [p.to_db_doc() for p in self.participants],
            'is_group': self.is_group,
            'admin': self.admin,
            'group_settings': self.group_settings.to_db_doc(),
            'last_message': self.last_message._asdict() if self.last_message else None,
            'pinned_messages': list(self.pinned_messages),
            'parent_conversation': self.parent_conversation,
            'thread_info': self.thread_info,
            'settings': dict(self.settings),
            'is_active': self.is_active,
            'started_at': self.started_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Conversation':
        last = doc.get('last_message')
        return cls(
            conversation_id=doc.get('_id'),
            name=doc.get('name'),
            participants=[Participant.from_doc(p) for p in doc.get('participants', [])],
            is_group=doc.get('is_group', False),
            admin=doc.get('admin'),
            group_settings=GroupSettings.from_doc(doc.get('group_settings')),
            last_message=LastMessage(**last) if last else None,
            pinned_messages=doc.get('pinned_messages', []),
            parent_conversation=doc.get('parent_conversation'),
            thread_info=doc.get('thread_info'),
            settings=doc.get('settings'),
            is_active=doc.get('is_active', True),
            started_at=doc.get('started_at'),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at'),
        )
