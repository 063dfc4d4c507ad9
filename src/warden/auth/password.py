"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting and is resistant to rainbow table attacks.
The work factor (WARDEN_BCRYPT_ROUNDS, default 12) takes ~100ms per hash
on modern hardware.

Hashes made with a lower work factor than the current setting are
re-hashed on the next successful login (see needs_upgrade()).
"""

import bcrypt

from warden.config import settings


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash a password with bcrypt.

    Learn: bcrypt includes a random salt automatically and produces
    hashes starting with "$2b$". Passwords are truncated to 72 bytes
    (bcrypt's limit).
    """
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash. Malformed hashes never verify."""
    try:
        pw_bytes = password.encode("utf-8")[:72]
        hash_bytes = password_hash.encode("utf-8")
        return bcrypt.checkpw(pw_bytes, hash_bytes)
    except (ValueError, TypeError):
        return False


def needs_upgrade(password_hash: str) -> bool:
    """Check if a hash was made with fewer rounds than currently configured."""
    try:
        # "$2b$12$<salt+digest>"
        rounds = int(password_hash.split("$")[2])
    except (IndexError, ValueError):
        return True
    return rounds < settings.bcrypt_rounds


# Checked against when the email is unknown, so a failed login costs the
# same whether or not the account exists.
_DUMMY_HASH = hash_password("warden-timing-equalizer")


def burn_verify(password: str) -> None:
    """Spend one bcrypt verification without a real hash to compare against."""
    verify_password(password, _DUMMY_HASH)
