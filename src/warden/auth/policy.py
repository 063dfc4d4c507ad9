"""Authorization policy — one table, one check.

Learn: Every protected route names an operation. POLICIES maps that name
to a Rule, and authorize() in dependencies.py is the only place a Rule is
evaluated. Adding an endpoint means adding a row here, not sprinkling
`if user.tier == ...` through route handlers.

A Rule permits a principal when:
  - the principal's tier satisfies min_tier, OR
  - allow_self is set and the target user is the principal.

Unauthenticated requests never reach the table (401 happens first), so a
denial here is always a 403.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog

from warden.auth.identity import Principal
from warden.auth.tiers import Tier
from warden.errors import AuthorizationFailure

logger = structlog.get_logger()


@dataclass(frozen=True)
class Rule:
    min_tier: Tier = Tier.STANDARD
    allow_self: bool = False

    def permits(self, principal: Principal, target_user_id: Optional[uuid.UUID] = None) -> bool:
        if principal.tier.satisfies(self.min_tier):
            return True
        return self.allow_self and target_user_id == principal.user_id


_SELF_OR_ADMIN = Rule(min_tier=Tier.ADMIN, allow_self=True)
_ADMIN_ONLY = Rule(min_tier=Tier.ADMIN)

POLICIES: dict[str, Rule] = {
    # Own session
    "auth.me": Rule(),
    "auth.logout": Rule(),
    "auth.logout_all": Rule(),
    # Accounts
    "users.list": _ADMIN_ONLY,
    "users.read": _SELF_OR_ADMIN,
    "users.update": _SELF_OR_ADMIN,
    "users.delete": _ADMIN_ONLY,
    "users.set_tier": _ADMIN_ONLY,
    # Avatars
    "users.upload_avatar": _SELF_OR_ADMIN,
    "users.delete_avatar": _SELF_OR_ADMIN,
}


def check(
    operation: str,
    principal: Principal,
    target_user_id: Optional[uuid.UUID] = None,
) -> None:
    """Raise AuthorizationFailure unless `principal` may perform `operation`."""
    rule = POLICIES[operation]
    if rule.permits(principal, target_user_id):
        return
    logger.info(
        "auth.forbidden",
        operation=operation,
        user_id=str(principal.user_id),
        tier=principal.tier.value,
        target_user_id=str(target_user_id) if target_user_id else None,
    )
    raise AuthorizationFailure()
