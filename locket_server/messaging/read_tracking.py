"""Participant read cursors and the read-status watermark.

Each participant carries ``last_read_message_id`` / ``last_read_at`` on the
conversation document. A message counts as read by a participant once their
cursor timestamp is at or after the message's ``created_at``.

The stored ``status`` field of a message becomes ``read`` only when every
participant other than its sender has read it. For a 1:1 conversation that
is exactly "the recipient read it"; for groups it avoids reporting a message
as read when a single member has opened it. Per-member detail is computed at
query time as ``readBy``.
"""
import logging

from bson import ObjectId

from locket_server.messaging.models import Conversation, Message
from locket_server.repository.conversation_repository import ConversationRepository
from locket_server.repository.message_repository import MessageRepository

logger = logging.getLogger(__name__)


class ReadTracker:

    def __init__(self, conversations: ConversationRepository, messages: MessageRepository):
        self.conversations = conversations
        self.messages = messages

    def advance(self, conversation_id: ObjectId, user_id: str, message: Message) -> bool:
        """Point the user's cursor at ``message`` unless it already points later.

        Idempotent; returns False when the cursor was already past the message
        or the user is not a participant.
        """
        moved = self.conversations.advance_cursor(conversation_id, user_id, message.message_id, message.created_at)
        if not moved:
            logger.debug("Cursor of %s in %s not moved back to %s", user_id, conversation_id, message.message_id)
        return moved

    def apply_watermarks(self, conversation: Conversation) -> int:
        """Mark messages read up to each sender's watermark.

        The watermark for a sender is the earliest cursor among the other
        participants; nothing is marked while any of them has never read.
        Returns the number of messages whose status changed.
        """
        changed = 0
        for sender in conversation.participants:
            others = [p for p in conversation.participants if p.user_id != sender.user_id]
            if not others or any(p.last_read_at is None for p in others):
                continue
            watermark = min(p.last_read_at for p in others)
            changed += self.messages.mark_read_up_to(conversation.conversation_id, sender.user_id, watermark)
        if changed:
            logger.info("Marked %d message(s) read in %s", changed, conversation.conversation_id)
        return changed
