"""Message operations: send, reply, forward, edit, delete, reactions, pins,
read tracking, status, listing and search.

Every state-changing operation writes first and then flushes its outbox;
a failed publish or notification is logged and never changes the result.
"""
import logging
import math
from datetime import timedelta
from typing import Optional, Dict, Any, List

from bson import ObjectId

from locket_server.dto.message_dto import (
    CreateMessageRequest, MessagePayload, ForwardRequest, ListMessagesQuery, ThreadQuery, SearchQuery
)
from locket_server.exception.MessagingError import NotFoundError, ForbiddenError, PolicyViolationError
from locket_server.messaging.base_service import MessagingServiceBase
from locket_server.messaging.models import (
    Message, Conversation, MessageStatus, ReplyInfo, ForwardInfo, ThreadInfo, LastMessage,
    MessageMetadata, EditRecord, TextContent, AttachmentContent
)
from locket_server.messaging.read_tracking import ReadTracker
from locket_server.repository.message_repository import MessageRepository
from locket_server.repository.user_repository import UserRepository
from locket_server.utils.time_utils import isoformat
from locket_server.websocket.event_emitter import Events, conversation_room

logger = logging.getLogger(__name__)

DEFAULT_EDIT_WINDOW_MINUTES = 15


class MessageService(MessagingServiceBase):

    def __init__(
        self,
        conversations,
        messages: MessageRepository,
        users: UserRepository,
        delivery,
        notifications=None,
        runner=None,
        edit_window_minutes: int = DEFAULT_EDIT_WINDOW_MINUTES,
        **kwargs
    ):
        super().__init__(conversations, delivery, notifications, runner, **kwargs)
        self.messages = messages
        self.users = users
        self.read_tracker = ReadTracker(conversations, messages)
        self.edit_window = timedelta(minutes=edit_window_minutes)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _require_message(self, message_id: ObjectId, allow_deleted: bool = False) -> Message:
        message = self.messages.find_by_id(message_id)
        if message is None or (message.is_deleted and not allow_deleted):
            raise NotFoundError(f'message {message_id} not found', 'message.not_found')
        return message

    def _sender_name(self, user_id: str) -> Optional[str]:
        profile = self.users.get(user_id)
        return profile.get('username') if profile else None

    def _reply_snapshot(self, target: Message) -> ReplyInfo:
        attachments = target.attachments
        return ReplyInfo(
            message_id=target.message_id,
            text=target.text or 'Media',
            sender_id=target.sender_id,
            sender_name=self._sender_name(target.sender_id),
            attachment_type=attachments[0].type.value if attachments else None,
        )

    def _with_read_by(self, conversation: Conversation, message: Message) -> Dict[str, Any]:
        return message.to_dict(read_by=conversation.read_by(message))

    # =========================================================================
    # Send / reply / forward
    # =========================================================================

    def send_message(self, sender_id: str, request: CreateMessageRequest) -> Message:
        conversation = self._require_conversation(request.conversation_id, sender_id)

        reply_to, reply_info = None, None
        if request.reply_to is not None:
            target = self.messages.find_by_id(request.reply_to)
            if target and not target.is_deleted and target.conversation_id == conversation.conversation_id:
                reply_to, reply_info = target.message_id, self._reply_snapshot(target)
            else:
                logger.info("Reply target %s unavailable; sending without reply info", request.reply_to)

        forward_info = None
        if request.forwarded_from:
            snap = request.forward_snapshot
            forward_info = ForwardInfo(
                original_message_id=snap.original_message_id if snap else None,
                original_sender_id=request.forwarded_from,
                original_sender_name=(snap.original_sender_name if snap else None) or self._sender_name(request.forwarded_from),
                original_conversation_id=snap.original_conversation_id if snap else None,
                original_conversation_name=snap.original_conversation_name if snap else None,
                forwarded_at=self.clock(),
            )

        thread_parent = None
        if request.thread_parent_id is not None:
            parent = self.messages.find_by_id(request.thread_parent_id)
            if parent and not parent.is_deleted and parent.conversation_id == conversation.conversation_id:
                thread_parent = parent
            else:
                logger.info("Thread parent %s unavailable; sending outside the thread", request.thread_parent_id)

        message = Message(
            conversation_id=conversation.conversation_id,
            sender_id=sender_id,
            content=request.payload.content,
            message_type=request.payload.message_type,
            reply_to=reply_to,
            reply_info=reply_info,
            forwarded_from=request.forwarded_from,
            forward_info=forward_info,
            thread_info=ThreadInfo(parent_message_id=thread_parent.message_id) if thread_parent else None,
            metadata=request.payload.metadata,
            created_at=self.clock(),
        )
        return self._store_new_message(conversation, message, thread_parent)

    def reply_to_message(self, parent_message_id: ObjectId, sender_id: str, payload: MessagePayload) -> Message:
        """Reply to a message. Every reply joins the parent's thread."""
        parent = self._require_message(parent_message_id)
        conversation = self._require_conversation(parent.conversation_id, sender_id)
        message = Message(
            conversation_id=conversation.conversation_id,
            sender_id=sender_id,
            content=payload.content,
            message_type=payload.message_type,
            reply_to=parent.message_id,
            reply_info=self._reply_snapshot(parent),
            thread_info=ThreadInfo(parent_message_id=parent.message_id),
            metadata=payload.metadata,
            created_at=self.clock(),
        )
        return self._store_new_message(conversation, message, parent)

    def forward_messages(self, forwarder_id: str, request: ForwardRequest) -> List[Message]:
        """Forward every (message, target) pair the forwarder may access.

        Pairs that fail a check are skipped; only created messages are returned.
        """
        message_ids = list(dict.fromkeys(ObjectId(m) for m in request.message_ids if ObjectId.is_valid(m)))
        target_ids = list(dict.fromkeys(ObjectId(t) for t in request.target_conversation_ids if ObjectId.is_valid(t)))

        targets = []
        for target_id in target_ids:
            target = self.conversations.find_by_id(target_id)
            if target is None or not target.is_active or not target.is_participant(forwarder_id):
                logger.info("Forward target %s skipped for %s", target_id, forwarder_id)
                continue
            targets.append(target)

        originals = self.messages.find_many(message_ids) if message_ids else {}
        origins: Dict[ObjectId, Optional[Conversation]] = {}
        forwarded = []
        for message_id in message_ids:
            original = originals.get(message_id)
            if original is None or original.is_deleted:
                logger.info("Forward source %s skipped: missing or deleted", message_id)
                continue
            if original.conversation_id not in origins:
                origins[original.conversation_id] = self.conversations.find_by_id(original.conversation_id)
            origin = origins[original.conversation_id]
            if origin is None or not origin.is_participant(forwarder_id):
                logger.info("Forward source %s skipped: not accessible to %s", message_id, forwarder_id)
                continue
            now = self.clock()
            snapshot = ForwardInfo(
                original_message_id=original.message_id,
                original_sender_id=original.sender_id,
                original_sender_name=self._sender_name(original.sender_id),
                original_conversation_id=origin.conversation_id,
                original_conversation_name=origin.name,
                forwarded_at=now,
            )
            for target in targets:
                copy = Message(
                    conversation_id=target.conversation_id,
                    sender_id=forwarder_id,
                    content=original.content,
                    message_type=original.message_type,
                    forwarded_from=original.sender_id,
                    forward_info=snapshot,
                    metadata=MessageMetadata(),
                    created_at=self.clock(),
                )
                forwarded.append(self._store_new_message(target, copy, None))
        logger.info("User %s forwarded %d message(s)", forwarder_id, len(forwarded))
        return forwarded

    def _store_new_message(self, conversation: Conversation, message: Message,
                           thread_parent: Optional[Message]) -> Message:
        cid = conversation.conversation_id
        room = conversation_room(cid)
        last_message = LastMessage.of(message)
        with self.outbox() as outbox:
            self.messages.insert(message)
            self.conversations.set_last_message(cid, last_message)
            self.read_tracker.advance(cid, message.sender_id, message)
            if thread_parent is not None:
                self.messages.record_thread_reply(thread_parent.message_id, message.sender_id, message.created_at)

            outbox.publish(room, Events.MESSAGE_SEND, {
                'conversationId': str(cid),
                'message': message.to_dict(),
            })
            outbox.publish(room, Events.CONVERSATION_UPDATED, {
                'conversationId': str(cid),
                'lastMessage': last_message.to_dict(),
                'updatedAt': isoformat(message.created_at),
            })
            outbox.defer(self._mark_delivered, message.message_id, cid)
            if thread_parent is not None:
                outbox.publish(room, Events.MESSAGE_UPDATED, {
                    'conversationId': str(cid),
                    'messageId': str(thread_parent.message_id),
                    'threadReply': str(message.message_id),
                })
            if not conversation.settings.get('mute_notifications'):
                recipients = [uid for uid in conversation.participant_ids if uid != message.sender_id]
                outbox.notify_offline(recipients, 'message', {
                    'conversationId': str(cid),
                    'messageId': str(message.message_id),
                    'senderId': message.sender_id,
                    'text': last_message.text,
                })
        logger.info("Message %s stored in %s by %s", message.message_id, cid, message.sender_id)
        return message

    def _mark_delivered(self, message_id: ObjectId, conversation_id: ObjectId):
        """Background sent -> delivered transition."""
        try:
            with self.outbox() as outbox:
                if self.messages.advance_status(message_id, MessageStatus.DELIVERED):
                    outbox.publish(conversation_room(conversation_id), Events.MESSAGE_UPDATED, {
                        'conversationId': str(conversation_id),
                        'messageId': str(message_id),
                        'status': MessageStatus.DELIVERED.value,
                    })
        except Exception:
            logger.exception("Delivery transition failed for %s", message_id)

    # =========================================================================
    # Edit / delete
    # =========================================================================

    def edit_message(self, message_id: ObjectId, requester_id: str, new_text: str) -> Message:
        message = self._require_message(message_id)
        if message.sender_id != requester_id:
            raise ForbiddenError(f'{requester_id} did not send {message_id}', 'message.not_sender')
        now = self.clock()
        if now - message.created_at > self.edit_window:
            raise PolicyViolationError(f'edit window expired for {message_id}', 'message.edit_window_expired')
        if not isinstance(message.content, (TextContent, AttachmentContent)):
            raise PolicyViolationError(f'{message.message_type.value} messages carry no text', 'message.not_editable')

        cid = message.conversation_id
        with self.outbox() as outbox:
            if not self.messages.apply_edit(message_id, new_text, EditRecord(message.text, now)):
                raise NotFoundError(f'message {message_id} not found', 'message.not_found')
            updated = self.messages.find_by_id(message_id)
            if self.conversations.replace_last_message_if(cid, message_id, LastMessage.of(updated)):
                outbox.publish(conversation_room(cid), Events.CONVERSATION_UPDATED, {
                    'conversationId': str(cid),
                    'lastMessage': LastMessage.of(updated).to_dict(),
                })
            outbox.publish(conversation_room(cid), Events.MESSAGE_UPDATED, {
                'conversationId': str(cid),
                'messageId': str(message_id),
                'message': updated.to_dict(),
            })
        logger.info("Message %s edited by %s", message_id, requester_id)
        return updated

    def delete_message(self, message_id: ObjectId, requester_id: str) -> Message:
        """Soft delete. The tombstone stays so replies and forwards still resolve."""
        message = self._require_message(message_id)
        if message.sender_id != requester_id:
            raise ForbiddenError(f'{requester_id} did not send {message_id}', 'message.not_sender')

        cid = message.conversation_id
        room = conversation_room(cid)
        now = self.clock()
        with self.outbox() as outbox:
            if not self.messages.soft_delete(message_id, now):
                raise NotFoundError(f'message {message_id} not found', 'message.not_found')
            if message.parent_message_id is not None:
                self.messages.discount_thread_reply(message.parent_message_id)

            conversation = self.conversations.find_by_id(cid)
            if conversation is not None:
                if message_id in conversation.pinned_messages:
                    self.conversations.remove_pinned(cid, message_id)
                last = conversation.last_message
                if last is not None and last.message_id == message_id:
                    latest = self.messages.latest_visible(cid)
                    summary = LastMessage.of(latest) if latest else None
                    if self.conversations.replace_last_message_if(cid, message_id, summary):
                        outbox.publish(room, Events.CONVERSATION_UPDATED, {
                            'conversationId': str(cid),
                            'lastMessage': summary.to_dict() if summary else None,
                        })
            outbox.publish(room, Events.MESSAGE_DELETED, {
                'conversationId': str(cid),
                'messageId': str(message_id),
                'deletedAt': isoformat(now),
            })
        logger.info("Message %s deleted by %s", message_id, requester_id)
        return self.messages.find_by_id(message_id)

    # =========================================================================
    # Reactions
    # =========================================================================

    def add_reaction(self, message_id: ObjectId, user_id: str, reaction_type: str) -> Message:
        """Set the user's reaction, replacing any previous one."""
        message = self._require_message(message_id)
        self._require_conversation(message.conversation_id, user_id, allow_inactive=True)
        existing = message.reaction_of(user_id)
        if existing is not None and existing.type == reaction_type:
            return message

        with self.outbox() as outbox:
            if not self.messages.replace_reaction(message_id, user_id, reaction_type):
                if not self.messages.push_reaction(message_id, user_id, reaction_type):
                    # a concurrent add from the same user won the push
                    self.messages.replace_reaction(message_id, user_id, reaction_type)
            updated = self.messages.find_by_id(message_id)
            outbox.publish(conversation_room(message.conversation_id), Events.MESSAGE_UPDATED, {
                'conversationId': str(message.conversation_id),
                'messageId': str(message_id),
                'reactions': [r.to_dict() for r in updated.reactions],
            })
        return updated

    def remove_reaction(self, message_id: ObjectId, user_id: str) -> Message:
        """Remove the user's reaction. A no-op when there is none."""
        message = self._require_message(message_id, allow_deleted=True)
        self._require_conversation(message.conversation_id, user_id, allow_inactive=True)
        with self.outbox() as outbox:
            if self.messages.pull_reaction(message_id, user_id):
                updated = self.messages.find_by_id(message_id)
                outbox.publish(conversation_room(message.conversation_id), Events.MESSAGE_UPDATED, {
                    'conversationId': str(message.conversation_id),
                    'messageId': str(message_id),
                    'reactions': [r.to_dict() for r in updated.reactions],
                })
                return updated
        return message

    # =========================================================================
    # Pins
    # =========================================================================

    def set_pinned(self, message_id: ObjectId, user_id: str, pin: bool) -> Message:
        message = self._require_message(message_id)
        conversation = self._require_conversation(message.conversation_id, user_id)
        if not conversation.can_member(user_id, 'pin'):
            raise ForbiddenError(f'{user_id} may not pin in {conversation.conversation_id}', 'message.pin_admin_only')

        cid = conversation.conversation_id
        with self.outbox() as outbox:
            if pin:
                self.messages.mark_pinned(message_id, user_id)
                self.conversations.add_pinned(cid, message_id)
            else:
                self.messages.mark_unpinned(message_id)
                self.conversations.remove_pinned(cid, message_id)
            updated = self.messages.find_by_id(message_id)
            pinned = self.conversations.find_by_id(cid).pinned_messages
            outbox.publish(conversation_room(cid), Events.MESSAGE_UPDATED, {
                'conversationId': str(cid),
                'messageId': str(message_id),
                'isPinned': updated.is_pinned,
                'pinnedBy': list(updated.pinned_by),
            })
            outbox.publish(conversation_room(cid), Events.CONVERSATION_UPDATED, {
                'conversationId': str(cid),
                'pinnedMessages': [str(m) for m in pinned],
            })
        logger.info("Message %s %s by %s", message_id, 'pinned' if pin else 'unpinned', user_id)
        return updated

    def pin_message(self, message_id: ObjectId, user_id: str) -> Message:
        return self.set_pinned(message_id, user_id, True)

    def unpin_message(self, message_id: ObjectId, user_id: str) -> Message:
        return self.set_pinned(message_id, user_id, False)

    # =========================================================================
    # Read tracking / status
    # =========================================================================

    def update_participant_last_read(self, conversation_id: ObjectId, user_id: str, message_id: ObjectId) -> bool:
        """Move the user's cursor to ``message_id``; never moves it backward."""
        self._require_conversation(conversation_id, user_id, allow_inactive=True)
        message = self._require_message(message_id, allow_deleted=True)
        if message.conversation_id != conversation_id:
            raise NotFoundError(f'message {message_id} not in {conversation_id}', 'message.not_found')
        return self.read_tracker.advance(conversation_id, user_id, message)

    def mark_conversation_as_read(self, conversation_id: ObjectId, user_id: str) -> Dict[str, Any]:
        self._require_conversation(conversation_id, user_id)
        latest = self.messages.latest_visible(conversation_id)
        if latest is None:
            return {'conversationId': str(conversation_id), 'lastReadMessage': None, 'markedRead': 0}

        last_read = {
            'id': str(latest.message_id),
            'senderId': latest.sender_id,
            'createdAt': isoformat(latest.created_at),
        }
        with self.outbox() as outbox:
            self.read_tracker.advance(conversation_id, user_id, latest)
            changed = self.read_tracker.apply_watermarks(self.conversations.find_by_id(conversation_id))
            outbox.publish(conversation_room(conversation_id), Events.MESSAGE_READ, {
                'conversationId': str(conversation_id),
                'lastReadMessage': last_read,
                'userId': user_id,
                'timestamp': isoformat(self.clock()),
            })
        return {'conversationId': str(conversation_id), 'lastReadMessage': last_read, 'markedRead': changed}

    def update_message_status(self, message_id: ObjectId, user_id: str, status: MessageStatus) -> Message:
        """Advance a message's status. Requests that would move it backward are no-ops.

        ``read`` from a recipient also moves that recipient's cursor; the stored
        status then follows the watermark rule.
        """
        message = self._require_message(message_id)
        conversation = self._require_conversation(message.conversation_id, user_id)
        cid = conversation.conversation_id

        with self.outbox() as outbox:
            if status != MessageStatus.SENT:
                self.messages.advance_status(message_id, MessageStatus.DELIVERED)
            if status == MessageStatus.READ:
                if user_id != message.sender_id:
                    self.read_tracker.advance(cid, user_id, message)
                self.read_tracker.apply_watermarks(self.conversations.find_by_id(cid))
            updated = self.messages.find_by_id(message_id)
            if updated.status != message.status:
                outbox.publish(conversation_room(cid), Events.MESSAGE_UPDATED, {
                    'conversationId': str(cid),
                    'messageId': str(message_id),
                    'status': updated.status.value,
                })
        return updated

    # =========================================================================
    # Reads
    # =========================================================================

    def get_message(self, message_id: ObjectId, user_id: str) -> Dict[str, Any]:
        """Fetch one message. Tombstones are returned with their content cleared."""
        message = self._require_message(message_id, allow_deleted=True)
        conversation = self.conversations.find_by_id(message.conversation_id)
        if conversation is None or not conversation.is_participant(user_id):
            raise ForbiddenError(f'{user_id} may not read {message_id}', 'conversation.not_participant')
        return self._with_read_by(conversation, message)

    def list_messages(self, conversation_id: ObjectId, user_id: str, query: ListMessagesQuery) -> Dict[str, Any]:
        """Newest-first page. ``nextCursor``/``nextCursorId`` feed ``lastCreatedAt``/``lastId``."""
        conversation = self._require_conversation(conversation_id, user_id, allow_inactive=True)
        page = self.messages.list_conversation(conversation_id, query.limit, query.last_created_at, query.last_id)
        has_next = len(page) == query.limit
        last = page[-1] if page else None
        return {
            'messages': [self._with_read_by(conversation, m) for m in page],
            'pagination': {
                'limit': query.limit,
                'hasNextPage': has_next,
                'nextCursor': isoformat(last.created_at) if has_next else None,
                'nextCursorId': str(last.message_id) if has_next else None,
            },
        }

    def get_thread(self, parent_message_id: ObjectId, user_id: str, query: ThreadQuery) -> Dict[str, Any]:
        """Oldest-first replies to a message, offset paginated."""
        parent = self._require_message(parent_message_id, allow_deleted=True)
        conversation = self._require_conversation(parent.conversation_id, user_id, allow_inactive=True)
        replies, total = self.messages.list_thread(parent_message_id, query.skip, query.limit)
        return {
            'parentMessage': self._with_read_by(conversation, parent),
            'messages': [self._with_read_by(conversation, m) for m in replies],
            'pagination': {
                'page': query.page,
                'limit': query.limit,
                'total': total,
                'pages': math.ceil(total / query.limit) if total else 0,
            },
        }

    def search_messages(self, user_id: str, query: SearchQuery) -> Dict[str, Any]:
        """Search non-deleted messages in the caller's own conversations."""
        if query.conversation_id is not None:
            self._require_conversation(query.conversation_id, user_id, allow_inactive=True)
            scope = [query.conversation_id]
        else:
            scope = self.conversations.ids_for_user(user_id)
        results, total = self.messages.search(
            scope,
            query_text=query.query,
            sender_id=query.sender_id,
            message_type=query.message_type.value if query.message_type else None,
            date_from=query.date_from,
            date_to=query.date_to,
            has_attachments=query.has_attachments,
            has_reactions=query.has_reactions,
            skip=query.skip,
            limit=query.limit,
        ) if scope else ([], 0)
        return {
            'messages': [m.to_dict() for m in results],
            'pagination': {
                'page': query.page,
                'limit': query.limit,
                'total': total,
                'pages': math.ceil(total / query.limit) if total else 0,
            },
        }
