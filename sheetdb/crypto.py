"""Passphrase-based AES-256-GCM envelope for stored secrets.

An envelope is ``base64(salt || iv || ciphertext)`` where the key is derived
from the passphrase with PBKDF2-HMAC-SHA256.  Salt and IV are random per call,
so encrypting the same value twice yields different envelopes.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sheetdb.errors import DecryptionError

PBKDF2_ITERATIONS = 100_000
SALT_LEN = 16
IV_LEN = 12
KEY_LEN = 32  # 256-bit
TAG_LEN = 16


def derive_key(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"), salt, iterations, KEY_LEN)


def encrypt(plaintext: str, passphrase: str) -> str:
    salt = os.urandom(SALT_LEN)
    iv = os.urandom(IV_LEN)
    ciphertext = AESGCM(derive_key(passphrase, salt)).encrypt(iv, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + iv + ciphertext).decode("ascii")


def decrypt(envelope: str, passphrase: str) -> str:
    """Open ``envelope``; every failure surfaces as :class:`DecryptionError`."""

    try:
        raw = base64.b64decode(envelope.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError, AttributeError) as exc:
        raise DecryptionError("Encrypted value is not valid base64") from exc

    if len(raw) < SALT_LEN + IV_LEN + TAG_LEN:
        raise DecryptionError("Encrypted value is truncated")

    salt = raw[:SALT_LEN]
    iv = raw[SALT_LEN:SALT_LEN + IV_LEN]
    ciphertext = raw[SALT_LEN + IV_LEN:]
    try:
        plaintext = AESGCM(derive_key(passphrase, salt)).decrypt(iv, ciphertext, None)
    except InvalidTag as exc:
        raise DecryptionError("Failed to decrypt value: wrong key or tampered data") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Decrypted value is not valid UTF-8") from exc


__all__ = ["decrypt", "derive_key", "encrypt"]
