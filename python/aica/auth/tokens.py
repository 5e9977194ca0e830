"""Bearer token hashing for organization authentication.

Canonical scheme (client and server must agree):

- The client derives auth key material from the org password and sends
  token = hex(SHA-256(auth_key_material)), both as auth_key_hash at signup
  and as the Bearer token on every authenticated request.
- The server never stores the token. It stores
  hex(SHA-256(token.encode("utf-8"))) and recomputes that digest for each
  request, comparing in constant time.

A leaked organizations row therefore cannot be replayed as a bearer token.
"""

import hashlib
import hmac
import re

# A client token is a lowercase hex SHA-256 digest
TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def is_valid_token_format(token: str) -> bool:
    """Check that a token looks like a hex SHA-256 digest."""
    return bool(TOKEN_PATTERN.match(token))


def hash_bearer_token(token: str) -> str:
    """Compute the stored form of a client token.

    Args:
        token: The client's hex token.

    Returns:
        hex(SHA-256(token_utf8)).
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_bearer_token(token: str, stored_hash: str) -> bool:
    """Check a presented token against the stored digest in constant time."""
    return hmac.compare_digest(hash_bearer_token(token).encode(), stored_hash.encode())
