from .UnauthorizedError import UnauthorizedError
from .MessagingError import (
    MessagingError, NotFoundError, ForbiddenError, ValidationError, PolicyViolationError
)

__all__ = [
    'UnauthorizedError', 'MessagingError', 'NotFoundError', 'ForbiddenError',
    'ValidationError', 'PolicyViolationError',
]
