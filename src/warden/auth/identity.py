"""The resolved identity attached to an authenticated request."""

import uuid
from dataclasses import dataclass

from warden.auth.tiers import Tier

# Stands in for a human admin when the CLI performs tier transitions.
OPERATOR_ID = uuid.UUID(int=0)


@dataclass(frozen=True)
class Principal:
    """Who is making the request.

    Learn: Produced by TokenService.validate() and stored on
    request.state.principal. Tier comes from the user row at validation
    time, never from the token itself.
    """

    user_id: uuid.UUID
    tier: Tier
    session_id: uuid.UUID
    email: str

    @property
    def is_admin(self) -> bool:
        return self.tier.satisfies(Tier.ADMIN)

    @classmethod
    def operator(cls) -> "Principal":
        return cls(
            user_id=OPERATOR_ID,
            tier=Tier.ADMIN,
            session_id=OPERATOR_ID,
            email="operator@localhost",
        )
