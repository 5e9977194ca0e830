"""Authentication module.

This module provides:
- Bearer token hashing (digest-of-digest storage scheme)
- Org auth middleware for FastAPI
- Request state with the authenticated organization
"""

from aica.auth.middleware import OrgAuthMiddleware, OrgPrincipal, get_principal
from aica.auth.tokens import hash_bearer_token, verify_bearer_token

__all__ = [
    "OrgAuthMiddleware",
    "OrgPrincipal",
    "get_principal",
    "hash_bearer_token",
    "verify_bearer_token",
]
