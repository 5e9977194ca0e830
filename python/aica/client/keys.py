"""Password-based key derivation for organizations.

One Argon2id derivation (libsodium via PyNaCl) turns the shared org password
and the org's public salt into 64 bytes, split into two independent halves:

- bytes 0..31: encryption_key, used only with SecretBox, never sent anywhere
- bytes 32..63: auth_key_material, used only to prove password knowledge

The halves must never be used interchangeably. The bearer token sent to the
server is hex(SHA-256(auth_key_material)); see aica.auth.tokens for what the
server stores.

Parameters are fixed: changing any of them changes every derived key and
makes existing data unreadable.
"""

import hashlib

from nacl.pwhash import argon2id
from nacl.utils import random

from aica.client.errors import ValidationError
from aica.client.models import DerivedKeys

# Argon2id parameters
DERIVED_KEY_BYTES = 64
KEY_BYTES = 32
SALT_BYTES = argon2id.SALTBYTES  # 16
OPSLIMIT = 3  # libsodium "moderate" CPU cost tier
MEMLIMIT = 64 * 1024 * 1024  # 64 MiB

MIN_PASSWORD_LENGTH = 8


def generate_salt() -> bytes:
    """Generate a random 16-byte salt for a new organization."""
    return random(SALT_BYTES)


def validate_password(password: str) -> None:
    """Reject passwords that are too short to derive keys from.

    Raises:
        ValidationError: If the password is shorter than 8 characters.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def derive_keys(password: str, salt: bytes) -> DerivedKeys:
    """Derive the encryption key and auth key material.

    This is CPU and memory heavy (tens of MiB); async callers should run it
    in a worker thread. Callers validate the password first.

    Args:
        password: The organization password.
        salt: The organization's 16-byte salt.

    Returns:
        DerivedKeys with two 32-byte halves.

    Raises:
        ValueError: If the salt is not 16 bytes.
    """
    if len(salt) != SALT_BYTES:
        raise ValueError(f"Salt must be {SALT_BYTES} bytes, got {len(salt)}")

    derived = argon2id.kdf(
        DERIVED_KEY_BYTES,
        password.encode("utf-8"),
        salt,
        opslimit=OPSLIMIT,
        memlimit=MEMLIMIT,
    )

    return DerivedKeys(
        encryption_key=derived[:KEY_BYTES],
        auth_key_material=derived[KEY_BYTES:],
    )


def hash_auth_key(auth_key_material: bytes) -> str:
    """Compute the bearer token for an organization.

    Returns:
        Lowercase hex SHA-256 of the auth key material.
    """
    return hashlib.sha256(auth_key_material).hexdigest()
