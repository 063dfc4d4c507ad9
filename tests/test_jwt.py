"""Access token encoding tests."""

import uuid
from datetime import timedelta

import jwt as pyjwt
import pytest

from warden.auth.jwt import TokenError, create_access_token, decode_access_token
from warden.config import settings
from warden.db.models import utcnow


def _token(**overrides) -> str:
    now = utcnow()
    return create_access_token(
        user_id=overrides.get("user_id", uuid.uuid4()),
        session_id=overrides.get("session_id", uuid.uuid4()),
        issued_at=overrides.get("issued_at", now),
        expires_at=overrides.get("expires_at", now + timedelta(minutes=5)),
    )


def test_round_trip_claims():
    user_id, session_id = uuid.uuid4(), uuid.uuid4()
    claims = decode_access_token(_token(user_id=user_id, session_id=session_id))
    assert claims.user_id == user_id
    assert claims.session_id == session_id
    assert claims.expires_at > claims.issued_at


def test_tier_is_not_a_claim():
    payload = pyjwt.decode(
        _token(), settings.jwt_secret, algorithms=[settings.jwt_algorithm]
    )
    assert set(payload) == {"sub", "sid", "type", "iat", "exp"}


def test_expired():
    past = utcnow() - timedelta(minutes=10)
    token = _token(issued_at=past, expires_at=past + timedelta(minutes=1))
    with pytest.raises(TokenError) as exc_info:
        decode_access_token(token)
    assert exc_info.value.reason == "expired"

    # Revocation still needs to read expired tokens
    assert decode_access_token(token, verify_exp=False).expires_at < utcnow().timestamp()


def test_malformed():
    with pytest.raises(TokenError) as exc_info:
        decode_access_token("a.b.c")
    assert exc_info.value.reason == "malformed"


def test_wrong_type():
    now = utcnow()
    token = pyjwt.encode(
        {
            "sub": str(uuid.uuid4()),
            "sid": str(uuid.uuid4()),
            "type": "refresh",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=5)).timestamp()),
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenError) as exc_info:
        decode_access_token(token)
    assert exc_info.value.reason == "wrong_type"


def test_missing_session_claim():
    now = utcnow()
    token = pyjwt.encode(
        {
            "sub": str(uuid.uuid4()),
            "type": "access",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=5)).timestamp()),
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenError):
        decode_access_token(token)
