import logging
from typing import Callable, Optional

from bson import ObjectId

from locket_server.exception.MessagingError import NotFoundError, ForbiddenError
from locket_server.messaging.models import Conversation
from locket_server.messaging.outbox import EventOutbox, TaskRunner
from locket_server.notification.service import NotificationService
from locket_server.repository.conversation_repository import ConversationRepository
from locket_server.utils.threading_util.pool import submit_task
from locket_server.utils.time_utils import utc_now
from locket_server.websocket.event_emitter import DeliveryChannel

logger = logging.getLogger(__name__)


class MessagingServiceBase:
    """Collaborators and access checks shared by the messaging services."""

    def __init__(
        self,
        conversations: ConversationRepository,
        delivery: DeliveryChannel,
        notifications: Optional[NotificationService] = None,
        runner: Optional[TaskRunner] = None,
        clock: Callable = utc_now
    ):
        self.conversations = conversations
        self.delivery = delivery
        self.notifications = notifications
        self.runner = runner or submit_task
        self.clock = clock

    def outbox(self) -> EventOutbox:
        return EventOutbox(self.delivery, self.notifications, self.runner)

    def _require_conversation(
        self,
        conversation_id: ObjectId,
        user_id: str,
        allow_inactive: bool = False
    ) -> Conversation:
        """Load a conversation the user participates in.

        Raises NotFoundError when it is missing (or deactivated, unless
        ``allow_inactive``) and ForbiddenError when the user is not a
        participant.
        """
        conversation = self.conversations.find_by_id(conversation_id)
        if conversation is None or (not conversation.is_active and not allow_inactive):
            raise NotFoundError(f'conversation {conversation_id} not found', 'conversation.not_found')
        if not conversation.is_participant(user_id):
            logger.warning("User %s is not a participant of %s", user_id, conversation_id)
            raise ForbiddenError(f'{user_id} is not a participant of {conversation_id}',
                                 'conversation.not_participant')
        return conversation
