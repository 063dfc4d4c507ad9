"""Warden — authentication, session lifecycle and tier-based authorization.

The backend core of the fullstack scaffold: registration and login,
store-backed bearer tokens with immediate revocation, a declarative
tier policy for protected routes, and avatar uploads into object storage.
"""

__version__ = "0.1.0"
