"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Unlike a blanket router-level auth dependency, each protected
route declares its own authorize("<operation>") dependency, because the
rule differs per operation (admin only vs. self-or-admin). Health,
register, login and refresh are open.
"""

from fastapi import APIRouter

from warden.api.auth import router as auth_router
from warden.api.health import router as health_router
from warden.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(users_router, tags=["users", "avatars"])
