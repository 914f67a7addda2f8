"""Conversation lifecycle: create, direct lookup, listing, settings,
membership, leave and deactivation.
"""
import logging
from typing import Dict, Any, List

from bson import ObjectId

from locket_server.dto.conversation_dto import (
    CreateConversationRequest, UpdateConversationRequest, ListConversationsQuery
)
from locket_server.exception.MessagingError import (
    ForbiddenError, ValidationError, PolicyViolationError
)
from locket_server.messaging.base_service import MessagingServiceBase
from locket_server.messaging.models import Conversation, Participant
from locket_server.repository.message_repository import MessageRepository
from locket_server.repository.user_repository import UserRepository
from locket_server.utils.time_utils import isoformat
from locket_server.websocket.event_emitter import Events, conversation_room, user_room

logger = logging.getLogger(__name__)


class ConversationService(MessagingServiceBase):

    def __init__(self, conversations, messages: MessageRepository, users: UserRepository, delivery,
                 notifications=None, runner=None, **kwargs):
        super().__init__(conversations, delivery, notifications, runner, **kwargs)
        self.messages = messages
        self.users = users

    def _usernames(self, conversation: Conversation) -> Dict[str, str]:
        return self.users.usernames(conversation.participant_ids)

    def _view(self, conversation: Conversation, viewer_id: str) -> Dict[str, Any]:
        return conversation.to_dict(viewer_id, self._usernames(conversation))

    def _require_users(self, user_ids: List[str], field: str):
        missing = self.users.missing(user_ids)
        if missing:
            raise ValidationError({field: f'unknown users: {", ".join(missing)}'},
                                  message_key='conversation.user_not_found')

    # =========================================================================
    # Create
    # =========================================================================

    def create_conversation(self, creator_id: str, request: CreateConversationRequest) -> Conversation:
        """Create a direct or group conversation. The creator is always a participant.

        A direct request between two users that already share an active 1:1
        returns that conversation instead of creating a second one.
        """
        user_ids = list(dict.fromkeys([creator_id] + list(request.participants)))
        if not request.is_group:
            if len(user_ids) != 2:
                raise ValidationError({'participants': 'a direct conversation needs exactly one other participant'})
            existing = self.conversations.find_direct(user_ids[0], user_ids[1])
            if existing is not None:
                logger.info("Direct conversation %s reused for %s", existing.conversation_id, creator_id)
                return existing
        elif len(user_ids) < 2:
            raise ValidationError({'participants': 'a group needs at least one other participant'})

        self._require_users([u for u in user_ids if u != creator_id], 'participants')

        admin = None
        if request.is_group:
            admin = request.admin or creator_id
            if admin not in user_ids:
                raise ValidationError({'admin': 'admin must be a participant'})

        now = self.clock()
        conversation = Conversation(
            participants=[Participant(uid, joined_at=now) for uid in user_ids],
            is_group=request.is_group,
            name=request.name,
            admin=admin,
            group_settings=request.group_settings if request.is_group else None,
            created_at=now,
        )
        with self.outbox() as outbox:
            self.conversations.create(conversation)
            payload = {'conversationId': str(conversation.conversation_id), 'conversation': conversation.to_dict()}
            for uid in user_ids:
                outbox.subscribe(uid, conversation_room(conversation.conversation_id))
                outbox.publish(user_room(uid), Events.CONVERSATION_UPDATED, payload)
        logger.info("Conversation %s created by %s (%s)", conversation.conversation_id, creator_id,
                    'group' if conversation.is_group else 'direct')
        return conversation

    def get_or_create_direct(self, user_id: str, other_id: str) -> Conversation:
        if other_id == user_id:
            raise ValidationError({'userId': 'cannot start a conversation with yourself'})
        return self.create_conversation(user_id, CreateConversationRequest([other_id]))

    # =========================================================================
    # Reads
    # =========================================================================

    def list_conversations(self, user_id: str, query: ListConversationsQuery) -> Dict[str, Any]:
        """Active conversations, most recently updated first, with per-viewer unread counts."""
        page = self.conversations.list_for_user(user_id, query.limit, query.last_updated_at)
        items = []
        for conversation in page:
            item = self._view(conversation, user_id)
            cursor = conversation.get_participant(user_id).last_read_at
            item['unreadCount'] = self.messages.count_unread(conversation.conversation_id, user_id, cursor)
            items.append(item)
        has_next = len(page) == query.limit
        return {
            'conversations': items,
            'pagination': {
                'limit': query.limit,
                'hasNextPage': has_next,
                'nextCursor': isoformat(page[-1].updated_at) if has_next else None,
            },
        }

    def get_conversation(self, conversation_id: ObjectId, user_id: str) -> Dict[str, Any]:
        conversation = self._require_conversation(conversation_id, user_id)
        return self._view(conversation, user_id)

    def unread_count(self, user_id: str) -> Dict[str, Any]:
        counts = {}
        for conversation_id in self.conversations.ids_for_user(user_id):
            conversation = self.conversations.find_by_id(conversation_id)
            participant = conversation.get_participant(user_id) if conversation else None
            if participant is None:
                continue
            count = self.messages.count_unread(conversation_id, user_id, participant.last_read_at)
            if count:
                counts[str(conversation_id)] = count
        return {'total': sum(counts.values()), 'conversations': counts}

    # =========================================================================
    # Update
    # =========================================================================

    def update_conversation(self, conversation_id: ObjectId, user_id: str,
                            request: UpdateConversationRequest) -> Conversation:
        conversation = self._require_conversation(conversation_id, user_id)
        fields: Dict[str, Any] = {}
        if request.name_set or request.settings:
            if not conversation.can_member(user_id, 'edit'):
                raise ForbiddenError(f'{user_id} may not edit {conversation_id}', 'conversation.admin_only')
            if request.name_set:
                fields['name'] = request.name
            for key, value in request.settings.items():
                fields[f'settings.{key}'] = value
        if request.group_settings:
            if not conversation.is_group:
                raise ValidationError({'groupSettings': 'groupSettings only apply to groups'})
            if not conversation.is_admin(user_id):
                raise ForbiddenError(f'{user_id} is not admin of {conversation_id}', 'conversation.admin_only')
            for key, value in request.group_settings.items():
                fields[f'group_settings.{key}'] = value

        with self.outbox() as outbox:
            self.conversations.update_fields(conversation_id, fields)
            updated = self.conversations.find_by_id(conversation_id)
            outbox.publish(conversation_room(conversation_id), Events.CONVERSATION_UPDATED, {
                'conversationId': str(conversation_id),
                'conversation': updated.to_dict(),
            })
        logger.info("Conversation %s updated by %s: %s", conversation_id, user_id, sorted(fields))
        return updated

    # =========================================================================
    # Membership
    # =========================================================================

    def add_participants(self, conversation_id: ObjectId, user_id: str, user_ids: List[str]) -> Conversation:
        conversation = self._require_conversation(conversation_id, user_id)
        if not conversation.is_group:
            raise PolicyViolationError(f'{conversation_id} is direct', 'conversation.direct_immutable')
        if not conversation.can_member(user_id, 'invite'):
            raise ForbiddenError(f'{user_id} may not invite to {conversation_id}', 'conversation.admin_only')

        new_ids = [uid for uid in dict.fromkeys(user_ids) if not conversation.is_participant(uid)]
        if not new_ids:
            return conversation
        self._require_users(new_ids, 'userIds')

        now = self.clock()
        room = conversation_room(conversation_id)
        with self.outbox() as outbox:
            self.conversations.add_participants(conversation_id, [Participant(uid, joined_at=now) for uid in new_ids])
            updated = self.conversations.find_by_id(conversation_id)
            for uid in new_ids:
                outbox.subscribe(uid, room)
            outbox.publish(room, Events.PARTICIPANT_ADDED, {
                'conversationId': str(conversation_id),
                'userIds': new_ids,
                'addedBy': user_id,
            })
        logger.info("Added %s to %s by %s", new_ids, conversation_id, user_id)
        return updated

    def remove_participant(self, conversation_id: ObjectId, user_id: str, target_id: str) -> Conversation:
        conversation = self._require_conversation(conversation_id, user_id)
        if not conversation.is_group:
            raise PolicyViolationError(f'{conversation_id} is direct', 'conversation.direct_immutable')
        if target_id == user_id:
            raise PolicyViolationError('use leave to remove yourself', 'conversation.cannot_remove_self')
        if not conversation.can_member(user_id, 'delete') or conversation.is_admin(target_id):
            raise ForbiddenError(f'{user_id} may not remove {target_id}', 'conversation.admin_only')
        if not conversation.is_participant(target_id):
            return conversation
        return self._drop_member(conversation, target_id, removed_by=user_id)

    def leave_conversation(self, conversation_id: ObjectId, user_id: str) -> Dict[str, Any]:
        """Leave a conversation.

        The last member leaving deactivates it; an admin leaving hands the role
        to the earliest-joined remaining member. Leaving a direct conversation
        deactivates it for both sides.
        """
        conversation = self._require_conversation(conversation_id, user_id)
        remaining = [p for p in conversation.participants if p.user_id != user_id]

        if not conversation.is_group or not remaining:
            self._drop_member(conversation, user_id, removed_by=user_id)
            self._deactivate(conversation, user_id)
            return {'conversationId': str(conversation_id), 'deactivated': True, 'admin': None}

        if conversation.is_admin(user_id):
            successor = min(remaining, key=lambda p: p.joined_at).user_id
            self.conversations.update_fields(conversation_id, {'admin': successor})
            logger.info("Admin of %s passed from %s to %s", conversation_id, user_id, successor)
        updated = self._drop_member(conversation, user_id, removed_by=user_id)
        return {'conversationId': str(conversation_id), 'deactivated': False, 'admin': updated.admin}

    def _drop_member(self, conversation: Conversation, target_id: str, removed_by: str) -> Conversation:
        cid = conversation.conversation_id
        room = conversation_room(cid)
        with self.outbox() as outbox:
            self.conversations.remove_participant(cid, target_id)
            outbox.publish(room, Events.PARTICIPANT_REMOVED, {
                'conversationId': str(cid),
                'userId': target_id,
                'removedBy': removed_by,
            })
            outbox.publish(user_room(target_id), Events.PARTICIPANT_REMOVED, {
                'conversationId': str(cid),
                'userId': target_id,
                'removedBy': removed_by,
            })
            outbox.unsubscribe(target_id, room)
        logger.info("User %s removed from %s by %s", target_id, cid, removed_by)
        return self.conversations.find_by_id(cid)

    # =========================================================================
    # Deactivate
    # =========================================================================

    def delete_conversation(self, conversation_id: ObjectId, user_id: str) -> None:
        """Deactivate a conversation. Messages are kept."""
        conversation = self._require_conversation(conversation_id, user_id)
        if conversation.is_group and not conversation.is_admin(user_id):
            raise ForbiddenError(f'{user_id} is not admin of {conversation_id}', 'conversation.admin_only')
        self._deactivate(conversation, user_id)

    def _deactivate(self, conversation: Conversation, user_id: str):
        cid = conversation.conversation_id
        with self.outbox() as outbox:
            self.conversations.deactivate(cid)
            outbox.publish(conversation_room(cid), Events.CONVERSATION_UPDATED, {
                'conversationId': str(cid),
                'isActive': False,
            })
        logger.info("Conversation %s deactivated by %s", cid, user_id)
