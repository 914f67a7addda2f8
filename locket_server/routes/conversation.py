"""Conversation REST API routes (prefix /api/conversations)."""
import logging

from flask import Blueprint, request

from locket_server.dto.conversation_dto import (
    CreateConversationRequest, DirectConversationRequest, UpdateConversationRequest,
    AddParticipantsRequest, ListConversationsQuery
)
from locket_server.dto.message_dto import parse_message_id
from locket_server.routes import services, json_body
from locket_server.utils.decorators import handle_errors, require_auth
from locket_server.utils.helpers import respond_success

logger = logging.getLogger(__name__)

conversation_bp = Blueprint('conversation', __name__, url_prefix='/api/conversations')


def _conversation_id(value):
    return parse_message_id(value, 'conversationId')


# =============================================================================
# Collection Endpoints
# =============================================================================

@conversation_bp.route('', methods=['POST'])
@handle_errors
@require_auth
def create_conversation(auth_payload):
    req = CreateConversationRequest.from_request(json_body())
    conversation = services().conversations.create_conversation(auth_payload['user_id'], req)
    return respond_success({'data': conversation.to_dict(auth_payload['user_id'])},
                           status=201, message_key='conversation.created')


@conversation_bp.route('/direct', methods=['POST'])
@handle_errors
@require_auth
def get_or_create_direct(auth_payload):
    req = DirectConversationRequest.from_request(json_body())
    conversation = services().conversations.get_or_create_direct(auth_payload['user_id'], req.user_id)
    return respond_success({'data': conversation.to_dict(auth_payload['user_id'])},
                           message_key='conversation.fetched')


@conversation_bp.route('', methods=['GET'])
@handle_errors
@require_auth
def list_conversations(auth_payload):
    query = ListConversationsQuery.from_request(request.args)
    result = services().conversations.list_conversations(auth_payload['user_id'], query)
    return respond_success(result, message_key='conversation.list')


@conversation_bp.route('/unread-count', methods=['GET'])
@handle_errors
@require_auth
def unread_count(auth_payload):
    result = services().conversations.unread_count(auth_payload['user_id'])
    return respond_success(result, message_key='conversation.unread_count')


# =============================================================================
# Single Conversation Endpoints
# =============================================================================

@conversation_bp.route('/<conversation_id>', methods=['GET'])
@handle_errors
@require_auth
def get_conversation(conversation_id, auth_payload):
    data = services().conversations.get_conversation(_conversation_id(conversation_id), auth_payload['user_id'])
    return respond_success({'data': data}, message_key='conversation.fetched')


@conversation_bp.route('/<conversation_id>', methods=['PUT'])
@handle_errors
@require_auth
def update_conversation(conversation_id, auth_payload):
    req = UpdateConversationRequest.from_request(json_body())
    conversation = services().conversations.update_conversation(
        _conversation_id(conversation_id), auth_payload['user_id'], req)
    return respond_success({'data': conversation.to_dict(auth_payload['user_id'])},
                           message_key='conversation.updated')


@conversation_bp.route('/<conversation_id>', methods=['DELETE'])
@handle_errors
@require_auth
def delete_conversation(conversation_id, auth_payload):
    cid = _conversation_id(conversation_id)
    services().conversations.delete_conversation(cid, auth_payload['user_id'])
    return respond_success({'conversationId': str(cid)}, message_key='conversation.deleted')


@conversation_bp.route('/<conversation_id>/participants', methods=['POST'])
@handle_errors
@require_auth
def add_participants(conversation_id, auth_payload):
    req = AddParticipantsRequest.from_request(json_body())
    conversation = services().conversations.add_participants(
        _conversation_id(conversation_id), auth_payload['user_id'], req.user_ids)
    return respond_success({'data': conversation.to_dict(auth_payload['user_id'])},
                           message_key='conversation.participants_added')


@conversation_bp.route('/<conversation_id>/participants/<user_id>', methods=['DELETE'])
@handle_errors
@require_auth
def remove_participant(conversation_id, user_id, auth_payload):
    conversation = services().conversations.remove_participant(
        _conversation_id(conversation_id), auth_payload['user_id'], user_id)
    return respond_success({'data': conversation.to_dict(auth_payload['user_id'])},
                           message_key='conversation.participant_removed')


@conversation_bp.route('/<conversation_id>/leave', methods=['POST'])
@handle_errors
@require_auth
def leave_conversation(conversation_id, auth_payload):
    result = services().conversations.leave_conversation(_conversation_id(conversation_id), auth_payload['user_id'])
    return respond_success(result, message_key='conversation.left')


@conversation_bp.route('/<conversation_id>/read', methods=['PUT'])
@handle_errors
@require_auth
def mark_as_read(conversation_id, auth_payload):
    result = services().messages.mark_conversation_as_read(
        _conversation_id(conversation_id), auth_payload['user_id'])
    return respond_success(result, message_key='message.read')
