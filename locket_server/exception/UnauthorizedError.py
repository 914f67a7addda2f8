class UnauthorizedError(Exception):
    """The caller's access token is absent, unreadable, expired or names no user."""
    def __init__(self, message, message_key='auth.invalid_token'):
        super().__init__(message)
        self.message_key = message_key
