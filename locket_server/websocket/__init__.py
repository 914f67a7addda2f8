"""Socket.IO delivery channel and connection hub."""
from locket_server.websocket.event_emitter import (
    Events, DeliveryChannel, SocketRegistry, SocketIODeliveryChannel, conversation_room, user_room
)

__all__ = [
    'Events', 'DeliveryChannel', 'SocketRegistry', 'SocketIODeliveryChannel',
    'conversation_room', 'user_room',
]
