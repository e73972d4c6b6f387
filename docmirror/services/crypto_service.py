"""Authenticated encryption for repository access tokens stored at rest.

Envelope format: base64(nonce || ciphertext || tag), AES-256-GCM with a fresh
96-bit nonce per call.  The empty string stands for "no token" and is passed
through without touching the cipher.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from docmirror.exceptions import DecryptionError, InvalidKeyError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
MIN_ENVELOPE_SIZE = NONCE_SIZE + TAG_SIZE


class TokenEncryptor:
    """Encrypts and decrypts short secrets with a single 256-bit key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            msg = f"encryption key must be {KEY_SIZE} bytes, got {len(key)}"
            raise InvalidKeyError(msg)
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, key_hex: str) -> TokenEncryptor:
        """Build an encryptor from a hex-encoded key (64 characters)."""
        try:
            key = bytes.fromhex(key_hex.strip())
        except ValueError as exc:
            msg = f"encryption key must be {KEY_SIZE * 2} hex characters"
            raise InvalidKeyError(msg) from exc
        return cls(key)

    @classmethod
    def generate(cls) -> TokenEncryptor:
        """Build an encryptor with a random key. Only suitable for development."""
        return cls(AESGCM.generate_key(bit_length=KEY_SIZE * 8))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return the base64 envelope."""
        if plaintext == "":
            return ""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, envelope: str) -> str:
        """Decrypt a base64 envelope. Raises DecryptionError on any failure."""
        if envelope == "":
            return ""
        try:
            raw = base64.b64decode(envelope, validate=True)
        except (binascii.Error, ValueError) as exc:
            msg = "Failed to decrypt credential data: envelope is not valid base64"
            raise DecryptionError(msg) from exc
        if len(raw) < MIN_ENVELOPE_SIZE:
            msg = "Failed to decrypt credential data: envelope is too short"
            raise DecryptionError(msg)

        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            msg = "Failed to decrypt credential data: authentication failed"
            raise DecryptionError(msg) from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            msg = "Failed to decrypt credential data: plaintext is not UTF-8"
            raise DecryptionError(msg) from exc


def rotate_ciphertext(envelope: str, old: TokenEncryptor, new: TokenEncryptor) -> str:
    """Re-encrypt an envelope produced by ``old`` under ``new``."""
    return new.encrypt(old.decrypt(envelope))
