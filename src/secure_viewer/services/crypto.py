# src/secure_viewer/services/crypto.py
"""Authenticated encryption of document payloads.

Payload layout on disk and on the wire::

    IV (12 bytes) | auth tag (16 bytes) | ciphertext (variable)
"""

from __future__ import annotations

import os
import secrets
import threading
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from secure_viewer.core.exceptions import AuthenticationFailure, MalformedPayloadError
from secure_viewer.core.settings import settings

KEY_LENGTH_BYTES = 32
IV_LENGTH_BYTES = 12
AUTH_TAG_LENGTH_BYTES = 16
MIN_PAYLOAD_BYTES = IV_LENGTH_BYTES + AUTH_TAG_LENGTH_BYTES
NONCE_BYTES = 24
SESSION_ID_BYTES = 16


class CryptoEngineClosedError(RuntimeError):
    """Raised when the engine is used after its key handle was released."""


def load_master_key(key_hex: str) -> bytes:
    """Decode a hex-encoded AES-256 key.

    Raises:
        ValueError: If the value is not exactly 32 bytes of hex.
    """
    try:
        key = bytes.fromhex(key_hex.strip())
    except ValueError as err:
        raise ValueError("Master key must be hex encoded") from err
    if len(key) != KEY_LENGTH_BYTES:
        raise ValueError("Master key must be 32 bytes (64 hex characters)")
    return key


def encrypt_payload(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt ``plaintext`` under ``key`` with a fresh random IV."""
    iv = os.urandom(IV_LENGTH_BYTES)
    # AESGCM appends the tag to the ciphertext; move it in front.
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH_BYTES], sealed[-AUTH_TAG_LENGTH_BYTES:]
    return iv + tag + ciphertext


def decrypt_payload(payload: bytes, key: bytes) -> bytes:
    """Decrypt a payload produced by :func:`encrypt_payload`.

    Raises:
        MalformedPayloadError: If the payload is shorter than IV + tag.
        AuthenticationFailure: If the tag does not verify.
    """
    if len(payload) < MIN_PAYLOAD_BYTES:
        raise MalformedPayloadError("Invalid encrypted data: too short")

    iv = payload[:IV_LENGTH_BYTES]
    tag = payload[IV_LENGTH_BYTES:MIN_PAYLOAD_BYTES]
    ciphertext = payload[MIN_PAYLOAD_BYTES:]
    try:
        return AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as err:
        raise AuthenticationFailure("Encrypted payload failed authentication") from err


def generate_nonce() -> str:
    """Return a 192-bit single-use token, hex encoded."""
    return secrets.token_hex(NONCE_BYTES)


def generate_session_id() -> str:
    """Return a 128-bit viewing session identifier, hex encoded."""
    return secrets.token_hex(SESSION_ID_BYTES)


class CryptoEngine:
    """Holds the process-wide document key and applies it to payloads."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH_BYTES:
            raise ValueError("Master key must be 32 bytes (64 hex characters)")
        self._key: bytes | None = bytes(key)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> CryptoEngine:
        """Build an engine from ``ENCRYPTION_MASTER_KEY``."""
        return cls(load_master_key(settings.master_key_hex))

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<CryptoEngine aes-256-gcm {state}>"

    @property
    def closed(self) -> bool:
        return self._key is None

    def _current_key(self) -> bytes:
        with self._lock:
            if self._key is None:
                raise CryptoEngineClosedError("Crypto engine has been closed")
            return self._key

    def encrypt(self, plaintext: bytes) -> bytes:
        return encrypt_payload(plaintext, self._current_key())

    def decrypt(self, payload: bytes) -> bytes:
        return decrypt_payload(payload, self._current_key())

    def close(self) -> None:
        """Drop the key handle. Safe to call more than once."""
        with self._lock:
            self._key = None


@lru_cache(maxsize=1)
def get_crypto_engine() -> CryptoEngine:
    """Return the process-wide crypto engine, loading the key on first use."""
    return CryptoEngine.from_settings()
