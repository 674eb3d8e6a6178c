"""
AES-256-GCM encryption for provider tokens stored in the database.

The key is derived from the application secret key, so rotating the secret
key invalidates every stored token.
"""

import hashlib
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

_CONTEXT = b'cloud-provider-tokens'
_KEY_DERIVATION_PREFIX = b'cloudhub-token-key-v1:'
_NONCE_SIZE = 12


class TokenCipher:
    """Encrypts and decrypts provider tokens."""

    def __init__(self, secret_key: str):
        try:
            raw = bytes.fromhex(secret_key)
        except ValueError:
            raw = secret_key.encode('utf-8')
        self._key = hashlib.sha256(_KEY_DERIVATION_PREFIX + raw).digest()

    def encrypt(self, token: Optional[str]) -> Optional[bytes]:
        """
        Encrypt a token.

        Returns:
            12-byte nonce || ciphertext blob, or None for a missing token
        """
        if token is None:
            return None
        nonce = os.urandom(_NONCE_SIZE)
        ciphertext = AESGCM(self._key).encrypt(nonce, token.encode('utf-8'), _CONTEXT)
        return nonce + ciphertext

    def decrypt(self, blob: Optional[bytes]) -> Optional[str]:
        """
        Decrypt a blob produced by encrypt().

        Returns:
            The token, or None if the blob is empty or cannot be decrypted.
        """
        if not blob or len(blob) <= _NONCE_SIZE:
            return None
        try:
            plaintext = AESGCM(self._key).decrypt(blob[:_NONCE_SIZE], blob[_NONCE_SIZE:], _CONTEXT)
            return plaintext.decode('utf-8')
        except InvalidTag:
            logger.error("Token decryption failed (secret key changed?)")
            return None
