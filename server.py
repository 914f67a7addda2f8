import argparse
import logging

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from config import config
from locket_server.messaging.conversation_service import ConversationService
from locket_server.messaging.message_service import MessageService
from locket_server.notification.service import MongoNotificationService
from locket_server.repository.conversation_repository import ConversationRepository
from locket_server.repository.message_repository import MessageRepository
from locket_server.repository.mongo_helper import MongoRepo
from locket_server.repository.user_repository import UserRepository
from locket_server.routes import Services
from locket_server.routes.conversation import conversation_bp
from locket_server.routes.message import message_bp
from locket_server.routes.public import public_bp
from locket_server.security.authentication import AuthSecurity
from locket_server.utils.threading_util.pool import configure_executor
from locket_server.websocket.event_emitter import SocketRegistry, SocketIODeliveryChannel
from locket_server.websocket.hub import WebSocketHub

logger = logging.getLogger(__name__)


def create_app(mongo_client=None, delivery=None, runner=None) -> Flask:
    """Application factory used by server.py and tests.

    Connects MongoDB (``mongo_client`` replaces the real client in tests),
    wires repositories and services, registers blueprints and the Socket.IO
    hub. ``delivery`` and ``runner`` override the Socket.IO channel and the
    background executor.
    """
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    config.validate_required()

    app = Flask(__name__)
    app.config['DEBUG'] = config.DEBUG
    CORS(app, origins=config.CORS_ORIGINS_LIST)

    AuthSecurity.configure(secret_key=config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    configure_executor(config.WORKER_THREADS)

    db = MongoRepo.connect(config.MONGO_URI, config.DB_NAME, client=mongo_client)
    conversations = ConversationRepository(db)
    messages = MessageRepository(db)
    users = UserRepository(db)

    socketio = SocketIO(app, async_mode=config.SOCKETIO_ASYNC_MODE, cors_allowed_origins=config.CORS_ORIGINS_LIST)
    registry = SocketRegistry()
    if delivery is None:
        delivery = SocketIODeliveryChannel(socketio, registry)
    notifications = MongoNotificationService(db, delivery)

    app.extensions['locket'] = Services(
        messages=MessageService(conversations, messages, users, delivery, notifications, runner,
                                edit_window_minutes=config.EDIT_WINDOW_MINUTES),
        conversations=ConversationService(conversations, messages, users, delivery, notifications, runner),
    )
    WebSocketHub(registry, conversations).init_app(app, socketio)

    app.register_blueprint(public_bp)
    app.register_blueprint(message_bp)
    app.register_blueprint(conversation_bp)

    logger.info("%s ready (env=%s)", config.APP_NAME, config.CURRENT_ENV)
    return app


def parse_args():
    parser = argparse.ArgumentParser(description='Run the Locket messaging server')
    parser.add_argument('--port', type=int, default=config.PORT, help='TCP port to bind (default: config app.port or PORT env)')
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    app = create_app()
    logger.info('Starting server with Socket.IO on port %s', args.port)
    app.extensions['socketio'].run(app, host="0.0.0.0", port=args.port, debug=config.DEBUG,
                                   allow_unsafe_werkzeug=True)
