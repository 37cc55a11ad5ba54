import base64
import binascii
import logging
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from errors import DecryptError

log = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12


def normalize_key(key: bytes) -> bytes:
    """Right-pad with zero bytes or truncate to 32 bytes. No derivation."""
    if len(key) < KEY_SIZE:
        return key + b"\x00" * (KEY_SIZE - len(key))
    return key[:KEY_SIZE]


def encrypt(plaintext: bytes, key: bytes) -> Tuple[str, str]:
    """
    Seal plaintext with AES-256-GCM under a fresh random nonce.
    Returns (base64 ciphertext, base64 nonce).
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(normalize_key(key)).encrypt(nonce, plaintext, None)
    return (
        base64.b64encode(ciphertext).decode("ascii"),
        base64.b64encode(nonce).decode("ascii"),
    )


def decrypt(ciphertext_b64: str, nonce_b64: str, key: bytes) -> bytes:
    """
    Open a sealed payload. Every failure raises the same DecryptError.
    """
    try:
        ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        nonce = base64.b64decode(nonce_b64, validate=True)
        return AESGCM(normalize_key(key)).decrypt(nonce, ciphertext, None)
    except (binascii.Error, ValueError, InvalidTag) as e:
        log.debug("License decryption failed: %s", type(e).__name__)
        raise DecryptError("Failed to decrypt license payload") from e
