"""Signature verification and payload decryption for Tencent Meeting webhooks.

Protocol summary:
- Signature: SHA-1 hex digest over the lexicographically sorted, concatenated
  ``[token, timestamp, nonce, data]``. ``data`` is the still-encrypted body
  (or the ``check_str`` query value for URL verification).
- Encryption: AES-256-CBC. The 32-byte key is the base64-decoded
  EncodingAESKey and the IV is the *first 16 bytes of that key* -- the
  platform fixes it that way, so it must not be randomised.
- Padding: PKCS7, stripped leniently. When the trailing bytes do not form a
  valid PKCS7 pad, the buffer is returned as-is instead of raising.

All functions are pure and safe to call concurrently.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from src.app.webhooks.exceptions import (
    DecryptionError,
    SignatureMismatchError,
    UrlVerificationError,
)

AES_KEY_LENGTH = 32
AES_BLOCK_SIZE = 16


# ── Signature ───────────────────────────────────────────────────────────────


def compute_signature(token: str, timestamp: str, nonce: str, data: str) -> str:
    """Return the SHA-1 hex signature for a webhook request."""
    joined = "".join(sorted([token, timestamp, nonce, data]))
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()


def verify_signature(
    token: str,
    timestamp: str,
    nonce: str,
    data: str,
    signature: str,
) -> bool:
    """Check a webhook signature.

    Plain (not constant-time) string comparison of the hex digests.

    Args:
        token: Webhook token configured on the platform.
        timestamp: ``timestamp`` request header.
        nonce: ``nonce`` request header.
        data: Encrypted body / check_str exactly as received.
        signature: ``signature`` request header.

    Returns:
        True when the computed digest equals ``signature``.
    """
    return compute_signature(token, timestamp, nonce, data) == signature


# ── AES ─────────────────────────────────────────────────────────────────────


def _b64decode(value: str) -> bytes:
    """Decode base64, tolerating stripped '=' padding (EncodingAESKey is 43 chars)."""
    padded = value + "=" * (-len(value) % 4)
    return base64.b64decode(padded)


def _decode_key(key: str) -> bytes:
    try:
        decoded = _b64decode(key)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"Invalid key encoding: {exc}") from exc
    if len(decoded) != AES_KEY_LENGTH:
        raise DecryptionError(
            f"Invalid key length: expected {AES_KEY_LENGTH} bytes, got {len(decoded)}"
        )
    return decoded


def strip_pkcs7(buffer: bytes) -> bytes:
    """Strip PKCS7 padding if it validates, otherwise return ``buffer`` unchanged."""
    if not buffer:
        return buffer
    pad = buffer[-1]
    if 0 < pad <= AES_BLOCK_SIZE and len(buffer) >= pad:
        if buffer[-pad:] == bytes([pad]) * pad:
            return buffer[:-pad]
    return buffer


def decrypt(ciphertext: str, key: str) -> str:
    """Decrypt a base64 AES-256-CBC payload.

    Args:
        ciphertext: Base64 ciphertext from the request.
        key: Base64 EncodingAESKey.

    Returns:
        Decrypted UTF-8 text.

    Raises:
        DecryptionError: Key is not 32 bytes, ciphertext decodes to nothing,
            ciphertext is not block aligned, or the plaintext is empty.
    """
    decoded_key = _decode_key(key)

    try:
        raw = _b64decode(ciphertext)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"Invalid ciphertext encoding: {exc}") from exc
    if not raw:
        raise DecryptionError("Decoded encrypted text is empty")

    iv = decoded_key[:AES_BLOCK_SIZE]
    decryptor = Cipher(algorithms.AES(decoded_key), modes.CBC(iv)).decryptor()
    try:
        decrypted = decryptor.update(raw) + decryptor.finalize()
    except ValueError as exc:
        raise DecryptionError(f"AES decryption failed: {exc}") from exc

    plaintext = strip_pkcs7(decrypted)
    if not plaintext:
        raise DecryptionError("Decrypted data is empty")

    return plaintext.decode("utf-8", errors="replace")


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt text the way the platform does (PKCS7, IV = key[:16]).

    Used by tests and local tooling that replays deliveries.
    """
    decoded_key = _decode_key(key)
    padder = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(
        algorithms.AES(decoded_key), modes.CBC(decoded_key[:AES_BLOCK_SIZE])
    ).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(encrypted).decode("ascii")


# ── URL verification ────────────────────────────────────────────────────────


def verify_webhook_url(
    check_str: str,
    timestamp: str,
    nonce: str,
    signature: str,
    token: str,
    key: str,
) -> str:
    """Answer the one-time URL ownership challenge.

    Returns:
        The decrypted ``check_str``; the platform expects it verbatim.

    Raises:
        UrlVerificationError: A parameter is missing or decryption failed.
        SignatureMismatchError: The signature does not match.
    """
    if not check_str or not timestamp or not nonce or not signature:
        raise UrlVerificationError("Missing required parameters for URL verification")

    if not verify_signature(token, timestamp, nonce, check_str, signature):
        raise SignatureMismatchError()

    try:
        return decrypt(check_str, key)
    except DecryptionError as exc:
        raise UrlVerificationError(f"URL verification failed: {exc.message}") from exc
