"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.
"""

# ─── Accounts ────────────────────────────────────────────

USER_REGISTERED = "user.registered"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"
USER_TIER_CHANGED = "user.tier_changed"

# ─── Sessions ────────────────────────────────────────────

LOGIN_SUCCEEDED = "auth.login_succeeded"
LOGIN_FAILED = "auth.login_failed"
SESSION_REFRESHED = "auth.session_refreshed"
SESSION_REVOKED = "auth.session_revoked"
SESSIONS_REVOKED_ALL = "auth.sessions_revoked_all"

# ─── Avatars ─────────────────────────────────────────────

AVATAR_UPDATED = "avatar.updated"
AVATAR_REMOVED = "avatar.removed"
