from .routes.message import message_bp
from .routes.conversation import conversation_bp
from .routes.public import public_bp

# The application factory lives in server.py; the blueprints are re-exported
# so other runners can build an app without importing it.

__all__ = ["message_bp", "conversation_bp", "public_bp"]
