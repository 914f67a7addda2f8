"""Message repository.

Messages are never physically removed. Deletion clears content and marks the
document as a tombstone so replies, threads and forwards keep resolving.
"""
import logging
import re
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime

from bson import ObjectId

from locket_server.messaging.models import Message, MessageStatus, EditRecord
from locket_server.repository.mongo_helper import get_collection
from locket_server.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class MessageRepository:
    """Repository for chat messages."""

    def __init__(self, db, collection_name="messages"):
        self.collection_name = collection_name
        self.collection = get_collection(db, collection_name)
        logger.info("Initializing %s collection", self.collection_name)

    def insert(self, message: Message) -> Message:
        self.collection.insert_one(message.to_db_doc())
        return message

    def find_by_id(self, message_id: ObjectId) -> Optional[Message]:
        doc = self.collection.find_one({'_id': message_id})
        return Message.from_doc(doc) if doc else None

    def find_many(self, message_ids: List[ObjectId]) -> Dict[ObjectId, Message]:
        cursor = self.collection.find({'_id': {'$in': list(message_ids)}})
        return {d['_id']: Message.from_doc(d) for d in cursor}

    # =========================================================================
    # Listing
    # =========================================================================

    def list_conversation(
        self,
        conversation_id: ObjectId,
        limit: int,
        before_created_at: Optional[datetime] = None,
        before_id: Optional[ObjectId] = None
    ) -> List[Message]:
        """Newest-first page. Ties on ``created_at`` are broken by ``_id``."""
        query: Dict[str, Any] = {'conversation_id': conversation_id}
        if before_created_at is not None:
            if before_id is not None:
                query['$or'] = [
                    {'created_at': {'$lt': before_created_at}},
                    {'created_at': before_created_at, '_id': {'$lt': before_id}},
                ]
            else:
                query['created_at'] = {'$lt': before_created_at}
        cursor = self.collection.find(query).sort([('created_at', -1), ('_id', -1)]).limit(limit)
        return [Message.from_doc(d) for d in cursor]

    def latest_visible(self, conversation_id: ObjectId) -> Optional[Message]:
        """Most recent non-deleted message of a conversation."""
        cursor = self.collection.find(
            {'conversation_id': conversation_id, 'is_deleted': False}
        ).sort([('created_at', -1), ('_id', -1)]).limit(1)
        for doc in cursor:
            return Message.from_doc(doc)
        return None

    def list_thread(self, parent_id: ObjectId, skip: int, limit: int) -> Tuple[List[Message], int]:
        """Oldest-first replies of a thread, with the total reply count."""
        query = {'thread_info.parent_message_id': parent_id}
        total = self.collection.count_documents(query)
        cursor = self.collection.find(query).sort([('created_at', 1), ('_id', 1)]).skip(skip).limit(limit)
        return [Message.from_doc(d) for d in cursor], total

    def count_unread(self, conversation_id: ObjectId, user_id: str, since: Optional[datetime]) -> int:
        query: Dict[str, Any] = {
            'conversation_id': conversation_id,
            'sender_id': {'$ne': user_id},
            'is_deleted': False,
        }
        if since is not None:
            query['created_at'] = {'$gt': since}
        return self.collection.count_documents(query)

    def search(
        self,
        conversation_ids: List[ObjectId],
        query_text: Optional[str] = None,
        sender_id: Optional[str] = None,
        message_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        has_attachments: Optional[bool] = None,
        has_reactions: Optional[bool] = None,
        skip: int = 0,
        limit: int = 20
    ) -> Tuple[List[Message], int]:
        query: Dict[str, Any] = {'conversation_id': {'$in': list(conversation_ids)}, 'is_deleted': False}
        if query_text:
            query['text'] = {'$regex': re.escape(query_text), '$options': 'i'}
        if sender_id:
            query['sender_id'] = sender_id
        if message_type:
            query['type'] = message_type
        if date_from is not None or date_to is not None:
            created: Dict[str, Any] = {}
            if date_from is not None:
                created['$gte'] = date_from
            if date_to is not None:
                created['$lte'] = date_to
            query['created_at'] = created
        if has_attachments is not None:
            query['attachments.0'] = {'$exists': has_attachments}
        if has_reactions is not None:
            query['reactions.0'] = {'$exists': has_reactions}
        total = self.collection.count_documents(query)
        cursor = self.collection.find(query).sort([('created_at', -1), ('_id', -1)]).skip(skip).limit(limit)
        return [Message.from_doc(d) for d in cursor], total

    # =========================================================================
    # Content mutations
    # =========================================================================

    def apply_edit(self, message_id: ObjectId, new_text: str, previous: EditRecord) -> bool:
        result = self.collection.update_one(
            {'_id': message_id, 'is_deleted': False},
            {
                '$set': {'text': new_text, 'is_edited': True, 'updated_at': previous.edited_at},
                '$push': {'edit_history': previous._asdict()},
            }
        )
        return result.modified_count > 0

    def soft_delete(self, message_id: ObjectId, deleted_at: datetime) -> bool:
        """Turn a message into a tombstone. Returns False if it already was one."""
        result = self.collection.update_one(
            {'_id': message_id, 'is_deleted': False},
            {'$set': {
                'text': None,
                'attachments': [],
                'sticker': None,
                'emote': None,
                'reactions': [],
                'is_deleted': True,
                'deleted_at': deleted_at,
                'is_pinned': False,
                'pinned_by': [],
                'updated_at': deleted_at,
            }}
        )
        return result.modified_count > 0

    # =========================================================================
    # Reactions
    # =========================================================================

    def replace_reaction(self, message_id: ObjectId, user_id: str, reaction_type: str) -> bool:
        """Overwrite the user's existing reaction in place. False when they have none."""
        now = utc_now()
        result = self.collection.update_one(
            {'_id': message_id, 'is_deleted': False, 'reactions': {'$elemMatch': {'user_id': user_id}}},
            {'$set': {
                'reactions.$.type': reaction_type,
                'reactions.$.created_at': now,
                'updated_at': now,
            }}
        )
        return result.matched_count > 0

    def push_reaction(self, message_id: ObjectId, user_id: str, reaction_type: str) -> bool:
        """Append a reaction unless the user already has one on this message."""
        now = utc_now()
        result = self.collection.update_one(
            {'_id': message_id, 'is_deleted': False, 'reactions.user_id': {'$ne': user_id}},
            {
                '$push': {'reactions': {'user_id': user_id, 'type': reaction_type, 'created_at': now}},
                '$set': {'updated_at': now},
            }
        )
        return result.modified_count > 0

    def pull_reaction(self, message_id: ObjectId, user_id: str) -> bool:
        result = self.collection.update_one(
            {'_id': message_id},
            {'$pull': {'reactions': {'user_id': user_id}}}
        )
        return result.modified_count > 0

    # =========================================================================
    # Pins
    # =========================================================================

    def mark_pinned(self, message_id: ObjectId, user_id: str) -> bool:
        result = self.collection.update_one(
            {'_id': message_id, 'is_deleted': False},
            {'$set': {'is_pinned': True, 'updated_at': utc_now()}, '$addToSet': {'pinned_by': user_id}}
        )
        return result.matched_count > 0

    def mark_unpinned(self, message_id: ObjectId) -> bool:
        result = self.collection.update_one(
            {'_id': message_id},
            {'$set': {'is_pinned': False, 'pinned_by': [], 'updated_at': utc_now()}}
        )
        return result.matched_count > 0

    # =========================================================================
    # Status
    # =========================================================================

    def advance_status(self, message_id: ObjectId, target: MessageStatus) -> bool:
        """Set ``target`` only if the stored status ranks below it."""
        lower = [s.value for s in MessageStatus if s.rank < target.rank]
        result = self.collection.update_one(
            {'_id': message_id, 'status': {'$in': lower}},
            {'$set': {'status': target.value, 'updated_at': utc_now()}}
        )
        return result.modified_count > 0

    def mark_read_up_to(self, conversation_id: ObjectId, sender_id: str, watermark: datetime) -> int:
        """Mark every message from ``sender_id`` created at or before ``watermark`` as read."""
        result = self.collection.update_many(
            {
                'conversation_id': conversation_id,
                'sender_id': sender_id,
                'created_at': {'$lte': watermark},
                'status': {'$ne': MessageStatus.READ.value},
            },
            {'$set': {'status': MessageStatus.READ.value}}
        )
        return result.modified_count

    # =========================================================================
    # Threads
    # =========================================================================

    def record_thread_reply(self, parent_id: ObjectId, replier_id: str, replied_at: datetime) -> bool:
        """Atomically count a reply on its parent.

        The first call seeds an empty thread_info on a parent that has none;
        the counter itself only ever moves through ``$inc``.
        """
        self.collection.update_one(
            {'_id': parent_id, 'thread_info': None},
            {'$set': {'thread_info': {
                'parent_message_id': None,
                'reply_count': 0,
                'last_reply_at': None,
                'participants': [],
            }}}
        )
        result = self.collection.update_one(
            {'_id': parent_id},
            {
                '$inc': {'thread_info.reply_count': 1},
                '$set': {'thread_info.last_reply_at': replied_at},
                '$addToSet': {'thread_info.participants': replier_id},
            }
        )
        return result.modified_count > 0

    def discount_thread_reply(self, parent_id: ObjectId) -> bool:
        result = self.collection.update_one(
            {'_id': parent_id, 'thread_info.reply_count': {'$gt': 0}},
            {'$inc': {'thread_info.reply_count': -1}}
        )
        return result.modified_count > 0
