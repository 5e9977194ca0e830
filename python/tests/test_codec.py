"""Tests for conversation encryption.

Tests cover:
- Round-trip for text and conversations
- Fresh nonce per encryption
- Tamper detection on ciphertext, nonce, and key
- Decode failures after a good MAC are PayloadDecodeError, not MAC errors
- Base64 helpers
"""

import pytest

from aica.client.codec import (
    KEY_SIZE,
    NONCE_SIZE,
    decrypt,
    decrypt_conversation,
    encrypt,
    encrypt_conversation,
    from_base64,
    to_base64,
)
from aica.client.errors import AuthenticationError, CryptoError, PayloadDecodeError
from aica.client.keys import generate_salt
from tests.helpers import make_conversation

KEY = b"k" * KEY_SIZE


def _flip_bit(data: bytes, index: int) -> bytes:
    flipped = bytearray(data)
    flipped[index] ^= 0x01
    return bytes(flipped)


class TestRoundTrip:
    @pytest.mark.parametrize(
        "plaintext",
        ["", "hello", "emoji 🔐 and accents é", "x" * 100_000],
    )
    def test_decrypt_inverts_encrypt(self, plaintext):
        payload = encrypt(plaintext, KEY)

        assert decrypt(payload.ciphertext, payload.nonce, KEY) == plaintext

    def test_nonce_is_24_bytes_and_fresh(self):
        a = encrypt("same text", KEY)
        b = encrypt("same text", KEY)

        assert len(a.nonce) == NONCE_SIZE == 24
        assert a.nonce != b.nonce
        assert a.ciphertext != b.ciphertext

    def test_ciphertext_carries_16_byte_tag(self):
        payload = encrypt("abc", KEY)

        assert len(payload.ciphertext) == 3 + 16

    def test_conversation_round_trip(self):
        conversation = make_conversation("c-1")

        payload = encrypt_conversation(conversation, KEY)
        restored = decrypt_conversation(payload.ciphertext, payload.nonce, KEY)

        assert restored == conversation

    def test_wrong_key_length_rejected(self):
        with pytest.raises(ValueError, match="Key must be 32 bytes"):
            encrypt("abc", b"short")


class TestTamperDetection:
    """Any modification must fail authentication, never return plaintext."""

    def test_every_ciphertext_bit_position_detected(self):
        payload = encrypt("secret message", KEY)

        for i in range(len(payload.ciphertext)):
            with pytest.raises(AuthenticationError):
                decrypt(_flip_bit(payload.ciphertext, i), payload.nonce, KEY)

    def test_flipped_nonce_detected(self):
        payload = encrypt("secret message", KEY)

        with pytest.raises(AuthenticationError):
            decrypt(payload.ciphertext, _flip_bit(payload.nonce, 0), KEY)

    def test_wrong_key_detected(self):
        payload = encrypt("secret message", KEY)

        with pytest.raises(AuthenticationError):
            decrypt(payload.ciphertext, payload.nonce, b"j" * KEY_SIZE)

    def test_truncated_ciphertext_detected(self):
        payload = encrypt("secret message", KEY)

        with pytest.raises(AuthenticationError):
            decrypt(payload.ciphertext[:-1], payload.nonce, KEY)

    def test_wrong_nonce_length_is_crypto_error(self):
        payload = encrypt("secret", KEY)

        with pytest.raises(CryptoError):
            decrypt(payload.ciphertext, payload.nonce[:12], KEY)


class TestPayloadDecode:
    def test_authentic_non_json_payload(self):
        payload = encrypt("not json at all", KEY)

        with pytest.raises(PayloadDecodeError):
            decrypt_conversation(payload.ciphertext, payload.nonce, KEY)

    def test_authentic_json_missing_fields(self):
        payload = encrypt('{"platform": "chatgpt"}', KEY)

        with pytest.raises(PayloadDecodeError):
            decrypt_conversation(payload.ciphertext, payload.nonce, KEY)

    def test_payload_decode_error_is_a_crypto_error(self):
        assert issubclass(PayloadDecodeError, CryptoError)
        assert not issubclass(PayloadDecodeError, AuthenticationError)


class TestBase64:
    def test_salt_round_trip(self):
        salt = generate_salt()

        assert from_base64(to_base64(salt)) == salt

    def test_padding_is_kept(self):
        assert to_base64(b"\x01") == "AQ=="

    def test_invalid_base64_rejected(self):
        with pytest.raises(PayloadDecodeError):
            from_base64("not base64!!")
