"""Tests for webhook signature verification and AES payload decryption.

Covers:
- SHA-1 signature over sorted [token, timestamp, nonce, data]
- Tampering with any signed component fails verification
- AES-256-CBC decrypt with IV = key[:16], lenient PKCS7 stripping
- Key length / empty ciphertext / alignment failures raise DecryptionError
- URL verification parameter, signature and decryption failures
"""

from __future__ import annotations

import base64
import hashlib

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from src.app.webhooks.crypto import (
    compute_signature,
    decrypt,
    encrypt,
    strip_pkcs7,
    verify_signature,
    verify_webhook_url,
)
from src.app.webhooks.exceptions import (
    DecryptionError,
    SignatureMismatchError,
    UrlVerificationError,
)

RAW_KEY = bytes(range(32))
# 43 characters, trailing '=' stripped like the platform's EncodingAESKey
AES_KEY = base64.b64encode(RAW_KEY).decode("ascii").rstrip("=")
TOKEN = "test-webhook-token"


def _encrypt_unpadded(plaintext: bytes) -> str:
    """Encrypt a block-aligned buffer without adding any padding."""
    assert len(plaintext) % 16 == 0
    encryptor = Cipher(algorithms.AES(RAW_KEY), modes.CBC(RAW_KEY[:16])).encryptor()
    return base64.b64encode(encryptor.update(plaintext) + encryptor.finalize()).decode("ascii")


# ── Signature ────────────────────────────────────────────────────────────────


class TestSignature:
    def test_signature_is_sha1_of_sorted_concatenation(self):
        expected = hashlib.sha1("".join(sorted([TOKEN, "1700000000", "42", "abc"])).encode()).hexdigest()
        assert compute_signature(TOKEN, "1700000000", "42", "abc") == expected

    def test_signature_ignores_argument_order(self):
        # Sorting makes the digest depend only on the multiset of values
        a = compute_signature("b", "a", "d", "c")
        b = compute_signature("d", "c", "b", "a")
        assert a == b

    def test_verify_accepts_matching_signature(self):
        signature = compute_signature(TOKEN, "1700000000", "42", "cipher")
        assert verify_signature(TOKEN, "1700000000", "42", "cipher", signature) is True

    @pytest.mark.parametrize(
        "field, value",
        [
            ("token", "other-token"),
            ("timestamp", "1700000001"),
            ("nonce", "43"),
            ("data", "cipher2"),
        ],
    )
    def test_tampering_any_component_fails(self, field, value):
        parts = {"token": TOKEN, "timestamp": "1700000000", "nonce": "42", "data": "cipher"}
        signature = compute_signature(**parts)
        parts[field] = value
        assert verify_signature(**parts, signature=signature) is False


# ── Decryption ───────────────────────────────────────────────────────────────


class TestDecrypt:
    def test_round_trip_through_platform_encryption(self):
        plaintext = '{"event":"meeting.started","payload":[]}'
        assert decrypt(encrypt(plaintext, AES_KEY), AES_KEY) == plaintext

    def test_utf8_content_survives(self):
        plaintext = '{"subject":"周会"}'
        assert decrypt(encrypt(plaintext, AES_KEY), AES_KEY) == plaintext

    def test_unpadded_block_aligned_plaintext_returned_as_is(self):
        # 32 bytes whose last byte (0x7d) is not a valid PKCS7 pad value
        plaintext = b'{"event":"x","trace_id":"abc12"}'
        assert len(plaintext) == 32
        assert decrypt(_encrypt_unpadded(plaintext), AES_KEY) == plaintext.decode()

    def test_full_block_of_padding_is_stripped(self):
        plaintext = b"0123456789abcdef" + bytes([16]) * 16
        assert decrypt(_encrypt_unpadded(plaintext), AES_KEY) == "0123456789abcdef"

    def test_key_of_wrong_length_raises(self):
        short_key = base64.b64encode(bytes(16)).decode("ascii")
        with pytest.raises(DecryptionError, match="Invalid key length"):
            decrypt(encrypt("x", AES_KEY), short_key)

    def test_empty_ciphertext_raises(self):
        with pytest.raises(DecryptionError, match="empty"):
            decrypt("", AES_KEY)

    def test_ciphertext_not_block_aligned_raises(self):
        misaligned = base64.b64encode(b"0123456789").decode("ascii")
        with pytest.raises(DecryptionError):
            decrypt(misaligned, AES_KEY)

    def test_plaintext_that_is_only_padding_raises(self):
        with pytest.raises(DecryptionError, match="Decrypted data is empty"):
            decrypt(_encrypt_unpadded(bytes([16]) * 16), AES_KEY)

    def test_decryption_error_maps_to_400(self):
        assert DecryptionError("x").status_code == 400


class TestStripPkcs7:
    def test_valid_padding_removed(self):
        assert strip_pkcs7(b"abc" + bytes([3, 3, 3])) == b"abc"

    def test_inconsistent_padding_kept(self):
        assert strip_pkcs7(b"abc" + bytes([1, 2, 3])) == b"abc\x01\x02\x03"

    def test_pad_value_above_block_size_kept(self):
        buffer = b"a" * 15 + bytes([17])
        assert strip_pkcs7(buffer) == buffer

    def test_zero_pad_value_kept(self):
        buffer = b"abc\x00"
        assert strip_pkcs7(buffer) == buffer


# ── URL verification ─────────────────────────────────────────────────────────


class TestVerifyWebhookUrl:
    def test_returns_decrypted_check_str(self):
        check_str = encrypt("challenge-123", AES_KEY)
        signature = compute_signature(TOKEN, "1700000000", "7", check_str)

        result = verify_webhook_url(check_str, "1700000000", "7", signature, TOKEN, AES_KEY)

        assert result == "challenge-123"

    @pytest.mark.parametrize("missing", ["check_str", "timestamp", "nonce", "signature"])
    def test_missing_parameter_raises(self, missing):
        params = {
            "check_str": "abc",
            "timestamp": "1700000000",
            "nonce": "7",
            "signature": "sig",
        }
        params[missing] = ""
        with pytest.raises(UrlVerificationError, match="Missing required parameters"):
            verify_webhook_url(**params, token=TOKEN, key=AES_KEY)

    def test_signature_mismatch_raises_401_error(self):
        check_str = encrypt("challenge", AES_KEY)
        with pytest.raises(SignatureMismatchError) as exc_info:
            verify_webhook_url(check_str, "1700000000", "7", "bad", TOKEN, AES_KEY)
        assert exc_info.value.status_code == 401

    def test_undecryptable_check_str_raises_verification_error(self):
        check_str = base64.b64encode(b"short").decode("ascii")
        signature = compute_signature(TOKEN, "1700000000", "7", check_str)
        with pytest.raises(UrlVerificationError, match="URL verification failed"):
            verify_webhook_url(check_str, "1700000000", "7", signature, TOKEN, AES_KEY)
