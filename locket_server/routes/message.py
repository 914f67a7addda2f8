"""Message REST API routes.

- POST   /api/messages                                create
- GET    /api/messages/conversation/<conversationId>  list (newest first)
- GET    /api/messages/search                         search
- POST   /api/messages/forward                        forward
- GET    /api/messages/<messageId>                    fetch
- PUT    /api/messages/<messageId>                    edit
- DELETE /api/messages/<messageId>                    delete
- POST   /api/messages/<messageId>/reactions          add reaction
- DELETE /api/messages/<messageId>/reactions          remove reaction
- POST   /api/messages/<messageId>/reply              reply
- GET    /api/messages/<messageId>/thread             thread replies
- POST   /api/messages/<messageId>/pin                pin / unpin
- PUT    /api/messages/<messageId>/status             status update
"""
import logging

from flask import Blueprint, request

from locket_server.dto.message_dto import (
    CreateMessageRequest, ListMessagesQuery, SearchQuery, ForwardRequest, EditMessageRequest,
    ReactionRequest, MessagePayload, ThreadQuery, PinRequest, StatusRequest, parse_message_id
)
from locket_server.routes import services, json_body
from locket_server.utils.decorators import handle_errors, require_auth
from locket_server.utils.helpers import respond_success

logger = logging.getLogger(__name__)

message_bp = Blueprint('message', __name__, url_prefix='/api/messages')


# =============================================================================
# Collection Endpoints
# =============================================================================

@message_bp.route('', methods=['POST'])
@handle_errors
@require_auth
def create_message(auth_payload):
    req = CreateMessageRequest.from_request(json_body())
    message = services().messages.send_message(auth_payload['user_id'], req)
    return respond_success({'data': message.to_dict()}, status=201, message_key='message.sent')


@message_bp.route('/conversation/<conversation_id>', methods=['GET'])
@handle_errors
@require_auth
def list_messages(conversation_id, auth_payload):
    cid = parse_message_id(conversation_id, 'conversationId')
    query = ListMessagesQuery.from_request(request.args)
    result = services().messages.list_messages(cid, auth_payload['user_id'], query)
    return respond_success(result, message_key='message.list')


@message_bp.route('/search', methods=['GET'])
@handle_errors
@require_auth
def search_messages(auth_payload):
    query = SearchQuery.from_request(request.args)
    result = services().messages.search_messages(auth_payload['user_id'], query)
    return respond_success(result, message_key='message.search')


@message_bp.route('/forward', methods=['POST'])
@handle_errors
@require_auth
def forward_messages(auth_payload):
    req = ForwardRequest.from_request(json_body())
    forwarded = services().messages.forward_messages(auth_payload['user_id'], req)
    return respond_success({
        'data': [m.to_dict() for m in forwarded],
        'count': len(forwarded),
    }, message_key='message.forwarded')


# =============================================================================
# Single Message Endpoints
# =============================================================================

@message_bp.route('/<message_id>', methods=['GET'])
@handle_errors
@require_auth
def get_message(message_id, auth_payload):
    mid = parse_message_id(message_id)
    data = services().messages.get_message(mid, auth_payload['user_id'])
    return respond_success({'data': data}, message_key='message.fetched')


@message_bp.route('/<message_id>', methods=['PUT'])
@handle_errors
@require_auth
def edit_message(message_id, auth_payload):
    mid = parse_message_id(message_id)
    req = EditMessageRequest.from_request(json_body())
    message = services().messages.edit_message(mid, auth_payload['user_id'], req.text)
    return respond_success({'data': message.to_dict()}, message_key='message.updated')


@message_bp.route('/<message_id>', methods=['DELETE'])
@handle_errors
@require_auth
def delete_message(message_id, auth_payload):
    mid = parse_message_id(message_id)
    message = services().messages.delete_message(mid, auth_payload['user_id'])
    return respond_success({'data': message.to_dict()}, message_key='message.deleted')


@message_bp.route('/<message_id>/reactions', methods=['POST'])
@handle_errors
@require_auth
def add_reaction(message_id, auth_payload):
    mid = parse_message_id(message_id)
    req = ReactionRequest.from_request(json_body())
    message = services().messages.add_reaction(mid, auth_payload['user_id'], req.reaction_type)
    return respond_success({'data': message.to_dict()}, message_key='message.reaction_added')


@message_bp.route('/<message_id>/reactions', methods=['DELETE'])
@handle_errors
@require_auth
def remove_reaction(message_id, auth_payload):
    mid = parse_message_id(message_id)
    message = services().messages.remove_reaction(mid, auth_payload['user_id'])
    return respond_success({'data': message.to_dict()}, message_key='message.reaction_removed')


@message_bp.route('/<message_id>/reply', methods=['POST'])
@handle_errors
@require_auth
def reply_to_message(message_id, auth_payload):
    mid = parse_message_id(message_id)
    payload = MessagePayload.from_request(json_body())
    message = services().messages.reply_to_message(mid, auth_payload['user_id'], payload)
    return respond_success({'data': message.to_dict()}, status=201, message_key='message.replied')


@message_bp.route('/<message_id>/thread', methods=['GET'])
@handle_errors
@require_auth
def get_thread(message_id, auth_payload):
    mid = parse_message_id(message_id)
    query = ThreadQuery.from_request(request.args)
    result = services().messages.get_thread(mid, auth_payload['user_id'], query)
    return respond_success(result, message_key='message.thread')


@message_bp.route('/<message_id>/pin', methods=['POST'])
@handle_errors
@require_auth
def pin_message(message_id, auth_payload):
    mid = parse_message_id(message_id)
    req = PinRequest.from_request(json_body())
    message = services().messages.set_pinned(mid, auth_payload['user_id'], req.pin)
    key = 'message.pinned' if req.pin else 'message.unpinned'
    return respond_success({'data': message.to_dict()}, message_key=key)


@message_bp.route('/<message_id>/status', methods=['PUT'])
@handle_errors
@require_auth
def update_status(message_id, auth_payload):
    mid = parse_message_id(message_id)
    req = StatusRequest.from_request(json_body())
    message = services().messages.update_message_status(mid, auth_payload['user_id'], req.status)
    return respond_success({'data': message.to_dict()}, message_key='message.status_updated')
