"""Authenticated encryption of conversation payloads.

Uses libsodium's SecretBox (XSalsa20-Poly1305) via PyNaCl:
- 32-byte key from aica.client.keys
- Fresh random 24-byte nonce per encryption, stored beside the ciphertext
- Ciphertext includes the 16-byte Poly1305 tag

Security invariants:
- A MAC failure always raises AuthenticationError; corrupted plaintext is
  never returned
- Never log keys, plaintext, or ciphertext
"""

import base64
import binascii

import pydantic
from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.exceptions import ValueError as NaclValueError
from nacl.secret import SecretBox
from nacl.utils import random

from aica.client.errors import AuthenticationError, CryptoError, PayloadDecodeError
from aica.client.models import Conversation, EncryptedPayload

NONCE_SIZE = SecretBox.NONCE_SIZE  # 24
KEY_SIZE = SecretBox.KEY_SIZE  # 32


def generate_nonce() -> bytes:
    """Generate a random 24-byte nonce.

    Each encryption operation MUST use a unique nonce.
    """
    return random(NONCE_SIZE)


def _box(key: bytes) -> SecretBox:
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    return SecretBox(key)


def encrypt(plaintext: str, key: bytes) -> EncryptedPayload:
    """Encrypt UTF-8 text under a fresh nonce.

    Args:
        plaintext: Text to encrypt.
        key: 32-byte encryption key.

    Returns:
        EncryptedPayload with the nonce and ciphertext (tag included).
    """
    nonce = generate_nonce()
    encrypted = _box(key).encrypt(plaintext.encode("utf-8"), nonce)
    # SecretBox.encrypt prefixes the nonce; it is stored separately
    return EncryptedPayload(nonce=nonce, ciphertext=encrypted.ciphertext)


def decrypt(ciphertext: bytes, nonce: bytes, key: bytes) -> str:
    """Decrypt and authenticate a payload.

    Args:
        ciphertext: Encrypted bytes including the tag.
        nonce: The 24-byte nonce used at encryption.
        key: 32-byte encryption key.

    Returns:
        The plaintext text.

    Raises:
        AuthenticationError: MAC check failed (tampering, wrong key, or wrong nonce).
        CryptoError: The nonce has the wrong length.
        PayloadDecodeError: Authenticated bytes are not UTF-8.
    """
    if len(nonce) != NONCE_SIZE:
        raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    box = _box(key)
    try:
        plaintext = box.decrypt(ciphertext, nonce)
    except (NaclCryptoError, NaclValueError):
        raise AuthenticationError("Ciphertext failed authentication") from None

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise PayloadDecodeError("Decrypted payload is not valid UTF-8") from None


def encrypt_conversation(conversation: Conversation, key: bytes) -> EncryptedPayload:
    """Serialize a conversation to JSON and encrypt it."""
    return encrypt(conversation.model_dump_json(), key)


def decrypt_conversation(ciphertext: bytes, nonce: bytes, key: bytes) -> Conversation:
    """Decrypt a payload and parse it as a conversation.

    Raises:
        AuthenticationError: MAC check failed.
        PayloadDecodeError: Plaintext is not a valid conversation document.
    """
    plaintext = decrypt(ciphertext, nonce, key)
    try:
        return Conversation.model_validate_json(plaintext)
    except pydantic.ValidationError as e:
        raise PayloadDecodeError(
            f"Decrypted payload is not a conversation ({e.error_count()} errors)"
        ) from None


def to_base64(raw: bytes) -> str:
    """Encode bytes as standard base64 with padding."""
    return base64.b64encode(raw).decode("ascii")


def from_base64(text: str) -> bytes:
    """Decode standard base64 with padding.

    Raises:
        PayloadDecodeError: If the text is not valid base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise PayloadDecodeError("Invalid base64 payload") from None
