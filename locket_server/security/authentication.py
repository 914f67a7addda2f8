"""Access-token verification.

Tokens are issued by the account service; this server only checks them.
The same verification is used by the HTTP routes and the Socket.IO hub.
"""
from datetime import timedelta, datetime, timezone
from typing import Any, Dict, Optional

from jose import jwt, ExpiredSignatureError, JWTError

from locket_server.exception.UnauthorizedError import UnauthorizedError

# Claims that may carry the user id, in order of preference.
USER_ID_CLAIMS = ('user_id', 'userId', 'sub')


class AuthSecurity:
    """HS256 JWT settings shared by every entry point."""
    secret_key = None
    algorithm = 'HS256'
    access_token_expire_minutes = 7 * 24 * 60

    @classmethod
    def configure(cls, secret_key: str, algorithm: str = 'HS256', access_token_expire_minutes: int = 7 * 24 * 60):
        cls.secret_key = secret_key
        cls.algorithm = algorithm
        cls.access_token_expire_minutes = access_token_expire_minutes

    @classmethod
    def encode_token(cls, claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        """Mint a token. Used by tests and local tooling; production tokens come from the account service."""
        lifetime = expires_delta or timedelta(minutes=cls.access_token_expire_minutes)
        body = {**claims, 'exp': datetime.now(timezone.utc) + lifetime}
        return jwt.encode(body, cls.secret_key, algorithm=cls.algorithm)

    @classmethod
    def decode_token(cls, token: Optional[str]) -> Dict[str, Any]:
        """Verify ``token`` and return its claims with ``user_id`` normalized to a string."""
        if not token or token.count('.') != 2:
            raise UnauthorizedError('Malformed or missing token')
        try:
            claims = jwt.decode(token, cls.secret_key, algorithms=[cls.algorithm])
        except ExpiredSignatureError:
            raise UnauthorizedError('Token expired', message_key='auth.token_expired')
        except JWTError as e:
            raise UnauthorizedError(f'Invalid token: {e}')

        user_id = next((claims[c] for c in USER_ID_CLAIMS if claims.get(c)), None)
        if not user_id:
            raise UnauthorizedError('Token does not identify a user')
        claims['user_id'] = str(user_id)
        return claims


def extract_bearer_token(auth_header: Optional[str]) -> str:
    scheme, _, token = (auth_header or '').partition(' ')
    if scheme != 'Bearer' or not token.strip():
        raise UnauthorizedError('Missing or invalid token')
    return token.strip()


def get_auth_payload(request) -> Dict[str, Any]:
    """Claims of the Bearer token on a Flask request; UnauthorizedError otherwise."""
    return AuthSecurity.decode_token(extract_bearer_token(request.headers.get('Authorization')))
