"""
Token encryption - AES-256-GCM for tenant access tokens at rest.

Payload layout (base64): iv (12 bytes) + auth tag (16 bytes) + ciphertext.
"""

import base64
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config.environments import current_config
from utils.errors import EncryptionError

IV_LENGTH = 12
TAG_LENGTH = 16


def _get_key(key_hex: str = None) -> bytes:
    key_hex = key_hex if key_hex is not None else (current_config.ENCRYPTION_KEY or os.getenv("ENCRYPTION_KEY", ""))

    if not key_hex:
        raise EncryptionError("ENCRYPTION_KEY is not configured")

    if len(key_hex) != 64:
        raise EncryptionError("ENCRYPTION_KEY must be 64 hex characters (32 bytes)")

    try:
        return bytes.fromhex(key_hex)
    except ValueError as e:
        raise EncryptionError("ENCRYPTION_KEY is not valid hex") from e


def encrypt(text: str, key_hex: str = None) -> str:
    key = _get_key(key_hex)
    iv = os.urandom(IV_LENGTH)

    sealed = AESGCM(key).encrypt(iv, text.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt(payload: str, key_hex: str = None) -> str:
    key = _get_key(key_hex)

    try:
        raw = base64.b64decode(payload)
    except (ValueError, TypeError) as e:
        raise EncryptionError("Encrypted payload is not valid base64") from e

    if len(raw) < IV_LENGTH + TAG_LENGTH:
        raise EncryptionError("Encrypted payload is too short")

    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[IV_LENGTH + TAG_LENGTH:]

    try:
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise EncryptionError("Could not decrypt payload (wrong key or tampered data)") from e

    return plain.decode("utf-8")


def encrypt_access_token(token: str) -> str:
    return encrypt(token)


def decrypt_access_token(encrypted_token: str) -> str:
    return decrypt(encrypted_token)


def generate_encryption_key() -> str:
    """New random 32-byte key as 64 hex characters"""
    return secrets.token_hex(32)


def generate_webhook_verify_token() -> str:
    return secrets.token_urlsafe(32)
