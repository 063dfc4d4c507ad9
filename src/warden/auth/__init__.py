"""Authentication and authorization.

Learn: Users log in with email/password and receive a short-lived JWT
access token plus an opaque refresh token. The JWT's `sid` claim names a
row in auth_sessions; validation checks that row on every request, so
revocation (logout, logout-all, tier change) is immediate.

Authorization is declarative: warden.auth.policy maps each protected
operation to a minimum tier and an optional "acting on yourself" escape.
"""
