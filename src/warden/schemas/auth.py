"""Pydantic schemas for registration, login and token exchange.

Learn: Request schemas only enforce shape (types, max lengths). Business
rules such as email format and password length live in UserService so the
CLI gets the same checks, and so a failure comes back as the same
ValidationFailure body either way.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=255)
    name: str = Field(..., max_length=100)
    password: str = Field(..., max_length=1024)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=1024)


class RefreshRequest(BaseModel):
    """Body is optional: browsers send the refresh cookie instead."""
    refresh_token: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    session_id: uuid.UUID
    expires_at: datetime
    refresh_expires_at: datetime


class LogoutResponse(BaseModel):
    revoked: int
