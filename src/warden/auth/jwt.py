"""JWT access token encoding and decoding.

Learn: The JWT alone is NOT proof of a live session. It's a signed
envelope around (user id, session id, expiry) so malformed or forged
tokens are rejected without touching the database. TokenService then
looks the session id up in auth_sessions, which is what makes logout
and revoke_all effective immediately.

Tier is deliberately not a claim: it is read from the user row on every
validation, so a stale token can never carry an old tier.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import jwt

from warden.config import settings

ACCESS_TOKEN_TYPE = "access"


class TokenError(Exception):
    """Raised when a token cannot be decoded. `reason` is for logs only."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass(frozen=True)
class AccessClaims:
    user_id: uuid.UUID
    session_id: uuid.UUID
    issued_at: int
    expires_at: int


def create_access_token(
    user_id: uuid.UUID,
    session_id: uuid.UUID,
    issued_at: datetime,
    expires_at: datetime,
) -> str:
    """Create a JWT access token for a session."""
    payload = {
        "sub": str(user_id),
        "sid": str(session_id),
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, *, verify_exp: bool = True) -> AccessClaims:
    """Verify signature (and expiry unless disabled) and return the claims.

    Raises TokenError on any failure.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={
                "verify_exp": verify_exp,
                "require": ["sub", "sid", "exp", "iat"],
            },
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("expired")
    except jwt.InvalidTokenError:
        raise TokenError("malformed")

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise TokenError("wrong_type")

    try:
        return AccessClaims(
            user_id=uuid.UUID(payload["sub"]),
            session_id=uuid.UUID(payload["sid"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )
    except (ValueError, TypeError):
        raise TokenError("malformed")
