"""Route decorators.

``handle_errors`` turns exceptions into the JSON error envelope; services
raise ``MessagingError`` kinds and never build responses themselves.
``require_auth`` verifies the Bearer token and passes the claims on.

    @message_bp.route('/<message_id>', methods=['GET'])
    @handle_errors
    @require_auth
    def get_message(message_id, auth_payload):
        ...
"""
import functools
import logging
from typing import Callable

from flask import request

from locket_server.exception.UnauthorizedError import UnauthorizedError
from locket_server.exception.MessagingError import MessagingError, ValidationError
from locket_server.utils.helpers import respond_error
from locket_server.security.authentication import get_auth_payload

logger = logging.getLogger(__name__)


def handle_errors(func: Callable) -> Callable:
    """Map UnauthorizedError to 401, MessagingError kinds to their status, anything else to 500."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except UnauthorizedError as e:
            logger.warning("%s %s rejected: %s", request.method, request.path, e)
            return respond_error(e.message_key, status=401, kind='unauthorized')
        except ValidationError as e:
            logger.warning("Invalid input for %s: %s", func.__name__, e.errors)
            return respond_error(e.message_key, status=e.status, kind=e.kind, errors=e.errors)
        except MessagingError as e:
            logger.warning("%s refused (%s): %s", func.__name__, e.kind, e)
            return respond_error(e.message_key, status=e.status, kind=e.kind)
        except Exception:
            logger.exception("Unhandled error in %s %s", request.method, request.path)
            return respond_error('error.server', status=500, kind='server_error')
    return wrapper


def require_auth(func: Callable) -> Callable:
    """Inject the verified token claims as the ``auth_payload`` keyword argument."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        kwargs['auth_payload'] = get_auth_payload(request)
        return func(*args, **kwargs)
    return wrapper
