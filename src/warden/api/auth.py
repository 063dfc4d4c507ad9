"""Auth API — registration, login, refresh, logout.

Learn: Routes for the session lifecycle:
- POST /auth/register → create a standard-tier account
- POST /auth/login → email/password → access + refresh tokens
- POST /auth/refresh → refresh token → new token pair (old one dies)
- POST /auth/logout → revoke the presented session only
- POST /auth/logout-all → revoke every session of the caller
- GET /auth/me → current user info

When WARDEN_AUTH_COOKIES is on, login and refresh also set HttpOnly
cookies, and logout clears them. Bearer tokens in the JSON body work
either way.
"""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth.dependencies import authorize, get_token_service
from warden.auth.identity import Principal
from warden.config import settings
from warden.db.engine import get_db
from warden.errors import AuthenticationFailure
from warden.schemas.auth import (
    LoginRequest,
    LogoutResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from warden.schemas.user import UserRead
from warden.services.token_service import IssuedTokens, TokenService
from warden.services.user_service import UserService

router = APIRouter(prefix="/auth")

_REFRESH_COOKIE_PATH = "/api/v1/auth"


# ─── Cookies ─────────────────────────────────────────────


def _client(request: Request) -> dict:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
    }


def _set_auth_cookies(response: Response, issued: IssuedTokens) -> None:
    if not settings.auth_cookies:
        return
    response.set_cookie(
        settings.access_cookie_name,
        issued.access_token,
        expires=issued.expires_at,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        issued.refresh_token,
        expires=issued.refresh_expires_at,
        path=_REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def _clear_auth_cookies(response: Response) -> None:
    if not settings.auth_cookies:
        return
    response.delete_cookie(
        settings.access_cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    response.delete_cookie(
        settings.refresh_cookie_name,
        path=_REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def _token_response(issued: IssuedTokens) -> TokenResponse:
    return TokenResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        token_type=issued.token_type,
        session_id=issued.session_id,
        expires_at=issued.expires_at,
        refresh_expires_at=issued.refresh_expires_at,
    )


# ─── Routes ──────────────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Register a new user account."""
    user = await UserService(db).register(body.email, body.name, body.password)
    return UserRead.from_user(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with email/password and get a fresh session."""
    _, issued = await UserService(db).login(
        body.email, body.password, **_client(request)
    )
    _set_auth_cookies(response, issued)
    return _token_response(issued)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    tokens: TokenService = Depends(get_token_service),
):
    """Exchange a refresh token for a new token pair. Single use."""
    refresh_token = (body.refresh_token if body else None) or request.cookies.get(
        settings.refresh_cookie_name
    )
    if not refresh_token:
        raise AuthenticationFailure()
    issued = await tokens.refresh(refresh_token, **_client(request))
    _set_auth_cookies(response, issued)
    return _token_response(issued)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    response: Response,
    principal: Principal = Depends(authorize("auth.logout")),
    tokens: TokenService = Depends(get_token_service),
):
    """Revoke the session the request was made with. Other sessions live on."""
    changed = await tokens.revoke_session(principal.session_id, reason="logout")
    _clear_auth_cookies(response)
    return LogoutResponse(revoked=1 if changed else 0)


@router.post("/logout-all", response_model=LogoutResponse)
async def logout_all(
    response: Response,
    principal: Principal = Depends(authorize("auth.logout_all")),
    tokens: TokenService = Depends(get_token_service),
):
    """Revoke every session of the caller, including this one."""
    count = await tokens.revoke_all(principal.user_id, reason="logout_all")
    _clear_auth_cookies(response)
    return LogoutResponse(revoked=count)


@router.get("/me", response_model=UserRead)
async def get_me(
    principal: Principal = Depends(authorize("auth.me")),
    db: AsyncSession = Depends(get_db),
):
    """Get current user info."""
    user = await UserService(db).get(principal.user_id)
    return UserRead.from_user(user)
