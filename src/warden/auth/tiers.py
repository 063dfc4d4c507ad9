"""User tiers and their ordering."""

import enum


class Tier(str, enum.Enum):
    STANDARD = "standard"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def satisfies(self, required: "Tier") -> bool:
        """True if this tier grants at least the access of `required`."""
        return self.rank >= required.rank

    @classmethod
    def parse(cls, value: str) -> "Tier":
        """Unknown stored values degrade to STANDARD, never upward."""
        try:
            return cls(value)
        except ValueError:
            return cls.STANDARD


_RANKS = {
    Tier.STANDARD: 0,
    Tier.ADMIN: 1,
}
