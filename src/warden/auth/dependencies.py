"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers. The chain is:

    extract_token → get_current_principal → authorize("<operation>")

Two places a credential can come from:
1. Authorization: Bearer <token> (API clients, the CLI, tests)
2. the access_token cookie set at login (browsers)

The header wins when both are present. Whatever the source, the token
is checked against the session store on every request.
"""

import uuid
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth import policy
from warden.auth.identity import Principal
from warden.config import settings
from warden.db.engine import get_db
from warden.errors import AuthenticationFailure
from warden.services.token_service import TokenService


def extract_token(request: Request) -> Optional[str]:
    """Pull the raw access token off the request, or None."""
    authorization = request.headers.get("authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    return request.cookies.get(settings.access_cookie_name) or None


def get_token_service(db: AsyncSession = Depends(get_db)) -> TokenService:
    return TokenService(db)


async def get_current_principal(
    request: Request,
    tokens: TokenService = Depends(get_token_service),
) -> Principal:
    """Validate the presented token (required; 401 if missing or dead)."""
    token = extract_token(request)
    if not token:
        raise AuthenticationFailure()
    principal = await tokens.validate(token)
    request.state.principal = principal
    return principal


def _target_user_id(request: Request) -> Optional[uuid.UUID]:
    raw = request.path_params.get("user_id")
    if raw is None:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


def authorize(operation: str):
    """Build the dependency that guards one operation.

    Learn: The lookup happens here, at import time of the router, so a
    typo in an operation name fails at startup rather than on the first
    request.
    """
    policy.POLICIES[operation]

    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        policy.check(operation, principal, _target_user_id(request))
        return principal

    dependency.__name__ = f"authorize_{operation.replace('.', '_')}"
    return dependency
