from typing import Any, Dict, NamedTuple

from flask import current_app, request

from locket_server.exception.MessagingError import ValidationError
from locket_server.messaging.conversation_service import ConversationService
from locket_server.messaging.message_service import MessageService


class Services(NamedTuple):
    """Service objects wired by ``create_app`` and stored in ``app.extensions['locket']``."""
    messages: MessageService
    conversations: ConversationService


def services() -> Services:
    return current_app.extensions['locket']


def json_body() -> Dict[str, Any]:
    """Request JSON as a dict. A missing body is empty; any non-object JSON is rejected."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError({'body': 'request body must be a JSON object'})
    return data
