"""Socket.IO connection hub.

Authenticates sockets with the same JWT as the HTTP API, tracks sockets per
user in the shared ``SocketRegistry`` and places each socket in its user room
and the rooms of its active conversations. Typing indicators are relayed here
directly; every other event originates in the messaging services.
"""
import logging
from typing import Optional

from bson import ObjectId
from flask import Flask, request
from flask_socketio import SocketIO, emit, join_room, leave_room, ConnectionRefusedError

from locket_server.exception.UnauthorizedError import UnauthorizedError
from locket_server.repository.conversation_repository import ConversationRepository
from locket_server.security.authentication import AuthSecurity
from locket_server.utils.time_utils import utc_now, isoformat
from locket_server.websocket.event_emitter import SocketRegistry, Events, conversation_room, user_room

logger = logging.getLogger(__name__)


class WebSocketHub:
    """Registers the Socket.IO handlers of the messaging server."""

    def __init__(self, registry: SocketRegistry, conversations: ConversationRepository):
        self.registry = registry
        self.conversations = conversations
        self.socketio: Optional[SocketIO] = None

    def init_app(self, app: Flask, socketio: SocketIO):
        logger.debug("WS_HUB: init app=%s, mode=%s", app.name, getattr(socketio, 'async_mode', '?'))
        self.socketio = socketio
        self._register_handlers()

    def _authenticate(self, token: str) -> Optional[str]:
        try:
            return AuthSecurity.decode_token(token)['user_id']
        except UnauthorizedError as e:
            logger.warning("WS auth failed: %s", e)
            return None

    def _current_user(self) -> Optional[str]:
        return self.registry.user_of(request.sid)

    def _member_conversation(self, user_id: str, data) -> Optional[ObjectId]:
        """Conversation id from an event payload, if the user belongs to it."""
        raw = (data or {}).get('conversationId') if isinstance(data, dict) else None
        if not raw or not ObjectId.is_valid(str(raw)):
            emit('error', {'code': 'INVALID_DATA', 'message': 'conversationId required'})
            return None
        conversation = self.conversations.find_by_id(ObjectId(str(raw)))
        if conversation is None or not conversation.is_active or not conversation.is_participant(user_id):
            emit('error', {'code': 'FORBIDDEN', 'message': 'Not a participant'})
            return None
        return conversation.conversation_id

    def _register_handlers(self):

        @self.socketio.on_error_default
        def default_error_handler(e):
            logger.exception("WS error: %s", e)

        # =====================================================================
        # Connection Events
        # =====================================================================

        @self.socketio.on('connect')
        def handle_connect(auth=None):
            sid = request.sid
            token = None
            if isinstance(auth, dict):
                token = auth.get('token')
            if not token:
                token = request.headers.get('Authorization', '').replace('Bearer ', '')
            if not token:
                token = request.args.get('token', '')

            user_id = self._authenticate(token)
            if not user_id:
                raise ConnectionRefusedError('unauthorized')

            self.registry.add(sid, user_id)
            join_room(user_room(user_id))
            conversation_ids = self.conversations.ids_for_user(user_id)
            for cid in conversation_ids:
                join_room(conversation_room(cid))

            logger.info("WS connected: user=%s, sid=%s, rooms=%d", user_id, sid, len(conversation_ids) + 1)
            emit('connected', {'message': 'Connected', 'userId': user_id, 'socketId': sid})
            return True

        @self.socketio.on('disconnect')
        def handle_disconnect(*args):
            user_id = self.registry.remove(request.sid)
            if user_id:
                logger.debug("WS offline: user=%s", user_id)

        # =====================================================================
        # Rooms
        # =====================================================================

        @self.socketio.on('conversation:join')
        def handle_join(data):
            user_id = self._current_user()
            if not user_id:
                emit('error', {'code': 'UNAUTHORIZED'})
                return {'success': False}
            cid = self._member_conversation(user_id, data)
            if cid is None:
                return {'success': False}
            join_room(conversation_room(cid))
            return {'success': True, 'conversationId': str(cid)}

        @self.socketio.on('conversation:leave')
        def handle_leave(data):
            user_id = self._current_user()
            if not user_id:
                emit('error', {'code': 'UNAUTHORIZED'})
                return {'success': False}
            cid = self._member_conversation(user_id, data)
            if cid is None:
                return {'success': False}
            leave_room(conversation_room(cid))
            return {'success': True, 'conversationId': str(cid)}

        # =====================================================================
        # Typing
        # =====================================================================

        def relay_typing(data, is_typing: bool):
            user_id = self._current_user()
            if not user_id:
                emit('error', {'code': 'UNAUTHORIZED'})
                return
            cid = self._member_conversation(user_id, data)
            if cid is None:
                return
            emit(Events.TYPING_UPDATE, {
                'conversationId': str(cid),
                'userId': user_id,
                'isTyping': is_typing,
                'timestamp': isoformat(utc_now()),
            }, to=conversation_room(cid))

        @self.socketio.on('typing:start')
        def handle_typing_start(data):
            relay_typing(data, True)

        @self.socketio.on('typing:stop')
        def handle_typing_stop(data):
            relay_typing(data, False)

        @self.socketio.on('ping')
        def handle_ping(data=None):
            emit('pong', {'timestamp': isoformat(utc_now())})
