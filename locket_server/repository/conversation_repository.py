"""Conversation repository.

Handles persistence for conversations: participant list with read cursors,
group settings, last-message summary and pinned messages. All mutations are
single-document updates; no cross-document transactions are used.
"""
import logging
from typing import Optional, Dict, Any, List
from datetime import datetime

from bson import ObjectId

from locket_server.messaging.models import Conversation, LastMessage, Participant
from locket_server.repository.mongo_helper import get_collection
from locket_server.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class ConversationRepository:
    """Repository for chat conversations."""

    def __init__(self, db, collection_name="conversations"):
        self.collection_name = collection_name
        self.collection = get_collection(db, collection_name)
        logger.info("Initializing %s collection", self.collection_name)

    def create(self, conversation: Conversation) -> Conversation:
        self.collection.insert_one(conversation.to_db_doc())
        return conversation

    def find_by_id(self, conversation_id: ObjectId) -> Optional[Conversation]:
        doc = self.collection.find_one({'_id': conversation_id})
        return Conversation.from_doc(doc) if doc else None

    def find_direct(self, user_a: str, user_b: str) -> Optional[Conversation]:
        """Find the active 1:1 conversation between two users."""
        doc = self.collection.find_one({
            'is_group': False,
            'is_active': True,
            '$and': [{'participants.user_id': user_a}, {'participants.user_id': user_b}],
        })
        return Conversation.from_doc(doc) if doc else None

    def list_for_user(
        self,
        user_id: str,
        limit: int = 20,
        before_updated_at: Optional[datetime] = None
    ) -> List[Conversation]:
        query: Dict[str, Any] = {'participants.user_id': user_id, 'is_active': True}
        if before_updated_at is not None:
            query['updated_at'] = {'$lt': before_updated_at}
        cursor = self.collection.find(query).sort([('updated_at', -1), ('_id', -1)]).limit(limit)
        return [Conversation.from_doc(d) for d in cursor]

    def ids_for_user(self, user_id: str) -> List[ObjectId]:
        cursor = self.collection.find({'participants.user_id': user_id, 'is_active': True}, {'_id': 1})
        return [d['_id'] for d in cursor]

    # =========================================================================
    # Summary / pins
    # =========================================================================

    def set_last_message(self, conversation_id: ObjectId, last_message: LastMessage) -> bool:
        """Store ``last_message`` unless the stored summary is newer."""
        result = self.collection.update_one(
            {
                '_id': conversation_id,
                '$or': [{'last_message': None}, {'last_message.timestamp': {'$lte': last_message.timestamp}}],
            },
            {'$set': {
                'last_message': last_message._asdict(),
                'updated_at': utc_now(),
            }}
        )
        return result.modified_count > 0

    def replace_last_message_if(
        self,
        conversation_id: ObjectId,
        expected_message_id: ObjectId,
        last_message: Optional[LastMessage]
    ) -> bool:
        """Swap the summary only while it still points at ``expected_message_id``."""
        result = self.collection.update_one(
            {'_id': conversation_id, 'last_message.message_id': expected_message_id},
            {'$set': {
                'last_message': last_message._asdict() if last_message else None,
                'updated_at': utc_now(),
            }}
        )
        return result.modified_count > 0

    def add_pinned(self, conversation_id: ObjectId, message_id: ObjectId) -> bool:
        result = self.collection.update_one(
            {'_id': conversation_id},
            {'$addToSet': {'pinned_messages': message_id}, '$set': {'updated_at': utc_now()}}
        )
        return result.modified_count > 0

    def remove_pinned(self, conversation_id: ObjectId, message_id: ObjectId) -> bool:
        result = self.collection.update_one(
            {'_id': conversation_id},
            {'$pull': {'pinned_messages': message_id}, '$set': {'updated_at': utc_now()}}
        )
        return result.modified_count > 0

    # =========================================================================
    # Participants and read cursors
    # =========================================================================

    def advance_cursor(
        self,
        conversation_id: ObjectId,
        user_id: str,
        message_id: ObjectId,
        read_at: datetime
    ) -> bool:
        """Move a participant's read cursor forward.

        The update only matches while the stored ``last_read_at`` is empty or
        not later than ``read_at``, so a cursor never moves backward even when
        two requests race.
        """
        result = self.collection.update_one(
            {
                '_id': conversation_id,
                'participants': {'$elemMatch': {
                    'user_id': user_id,
                    '$or': [{'last_read_at': None}, {'last_read_at': {'$lte': read_at}}],
                }},
            },
            {'$set': {
                'participants.$.last_read_message_id': message_id,
                'participants.$.last_read_at': read_at,
            }}
        )
        return result.matched_count > 0

    def add_participants(self, conversation_id: ObjectId, participants: List[Participant]) -> bool:
        if not participants:
            return False
        new_ids = [p.user_id for p in participants]
        result = self.collection.update_one(
            {'_id': conversation_id, 'participants.user_id': {'$nin': new_ids}},
            {
                '$push': {'participants': {'$each': [p.to_db_doc() for p in participants]}},
                '$set': {'updated_at': utc_now()},
            }
        )
        return result.modified_count > 0

    def remove_participant(self, conversation_id: ObjectId, user_id: str) -> bool:
        result = self.collection.update_one(
            {'_id': conversation_id},
            {'$pull': {'participants': {'user_id': user_id}}, '$set': {'updated_at': utc_now()}}
        )
        return result.modified_count > 0

    # =========================================================================
    # Settings / lifecycle
    # =========================================================================

    def update_fields(self, conversation_id: ObjectId, fields: Dict[str, Any]) -> bool:
        if not fields:
            return False
        fields = dict(fields)
        fields['updated_at'] = utc_now()
        result = self.collection.update_one({'_id': conversation_id}, {'$set': fields})
        return result.modified_count > 0

    def deactivate(self, conversation_id: ObjectId) -> bool:
        return self.update_fields(conversation_id, {'is_active': False})
