"""Error kinds raised by the messaging core.

Each error carries a language-neutral ``kind`` and a ``message_key`` that the
HTTP boundary translates into a localized message. Services never build
user-facing text themselves.
"""
from typing import Dict, Optional


class MessagingError(Exception):
    kind = 'server_error'
    status = 500
    default_key = 'error.server'

    def __init__(self, message: str = '', message_key: Optional[str] = None):
        super().__init__(message or self.kind)
        self.message_key = message_key or self.default_key


class NotFoundError(MessagingError):
    """Conversation, message or parent message absent (or tombstoned and filtered)."""
    kind = 'not_found'
    status = 404
    default_key = 'error.not_found'


class ForbiddenError(MessagingError):
    """Caller is not a participant, not the sender, or lacks admin authority."""
    kind = 'forbidden'
    status = 403
    default_key = 'error.forbidden'


class ValidationError(MessagingError):
    """Malformed payload. ``errors`` maps field name to reason."""
    kind = 'validation_error'
    status = 400
    default_key = 'error.validation'

    def __init__(self, errors: Dict[str, str], message: str = '', message_key: Optional[str] = None):
        super().__init__(message or 'Invalid request data', message_key)
        self.errors = dict(errors or {})


class PolicyViolationError(MessagingError):
    """Request is well formed but breaks a business rule (e.g. edit window expired)."""
    kind = 'policy_violation'
    status = 400
    default_key = 'error.policy'
