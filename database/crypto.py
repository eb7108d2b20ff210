"""
AonyxEngine Database - Token Encryption
Chiffrement des tokens OAuth avec AES-256-GCM (AEAD)
"""

import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import DecryptionError

LOGGER = logging.getLogger(__name__)

KEY_SIZE = 32     # AES-256
NONCE_SIZE = 12   # 96-bit nonce
TAG_SIZE = 16     # 128-bit tag


def generate_key() -> str:
    """Generate a fresh 256-bit key, hex encoded (for the .env file)."""
    return os.urandom(KEY_SIZE).hex()


def load_key(secret: str) -> bytes:
    """
    Turn the configured secret into a 32-byte AES key.

    Accepted formats:
        - 64 hex characters
        - base64 (standard or urlsafe) of 32 bytes
        - a raw 32-character string (legacy deployments)

    Raises:
        ValueError: if the secret does not describe a 256-bit key
    """
    secret = (secret or "").strip()
    if not secret:
        raise ValueError("Encryption key is empty")

    if len(secret) == KEY_SIZE * 2:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass

    raw = secret.encode("utf-8")
    if len(raw) == KEY_SIZE:
        return raw

    for decoder in (base64.urlsafe_b64decode, base64.b64decode):
        try:
            decoded = decoder(secret)
        except (binascii.Error, ValueError):
            continue
        if len(decoded) == KEY_SIZE:
            return decoded

    raise ValueError("Encryption key must be 256 bits (64 hex chars, base64 or 32 raw chars)")


class TokenCipher:
    """
    Gère le chiffrement/déchiffrement des tokens OAuth avec AES-256-GCM

    Blob format (base64): nonce(12) || tag(16) || ciphertext
    - Authentification ET chiffrement
    - Nonce aléatoire à chaque appel, jamais fourni par l'appelant
    - Blob autonome: pas de stockage externe du nonce
    """

    def __init__(self, key: bytes):
        """
        Initialize cipher with a 256-bit key

        Args:
            key: 32 raw key bytes (see load_key)
        """
        if len(key) != KEY_SIZE:
            raise ValueError(f"AES-256-GCM requires a {KEY_SIZE}-byte key, got {len(key)}")
        self._key = key
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token string

        Args:
            plaintext: Token to encrypt

        Returns:
            Base64-encoded nonce || tag || ciphertext
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)

        # AESGCM appends the tag; store it in front of the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a token string

        Args:
            blob: Base64-encoded nonce || tag || ciphertext

        Returns:
            Decrypted token plaintext

        Raises:
            DecryptionError: wrong key, tampered or malformed blob
        """
        try:
            data = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptionError("malformed ciphertext") from e

        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("ciphertext too short")

        nonce = data[:NONCE_SIZE]
        tag = data[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = data[NONCE_SIZE + TAG_SIZE:]

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("authentication tag mismatch") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("plaintext is not utf-8") from e

    def get_key_fingerprint(self) -> str:
        """
        Get a fingerprint of the current key (for auditing)

        Returns:
            SHA256 hash of the key (first 16 chars)
        """
        return hashlib.sha256(self._key).hexdigest()[:16]
