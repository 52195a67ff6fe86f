"""
Token encryption service for secure credential storage.

Uses Fernet symmetric encryption with a key derived from a secret via
PBKDF2. Desktop clients derive the key from SPOTCTL_SECRET_KEY or a
per-user key file; the managed backend derives it from its SECRET_KEY.
"""

import base64
import logging
import os
import secrets
import stat
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# Fixed salt for key derivation. Changing this invalidates all stored tokens.
_SALT = b"spotctl-credential-encryption-v1"


class TokenEncryptionError(Exception):
    """Raised when token encryption or decryption fails."""

    pass


class TokenCipher:
    """Encrypts and decrypts credential payloads with Fernet."""

    def __init__(self, secret_key: str):
        """
        Derive the Fernet cipher from a secret.

        Args:
            secret_key: Secret string providing the key entropy.

        Raises:
            TokenEncryptionError: If key derivation fails.
        """
        if not secret_key:
            raise TokenEncryptionError(
                "A secret key is required for token encryption"
            )

        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=_SALT,
                iterations=480_000,
            )
            key = base64.urlsafe_b64encode(
                kdf.derive(secret_key.encode("utf-8"))
            )
            self._fernet = Fernet(key)
        except Exception as e:
            logger.error(f"Failed to initialize TokenCipher: {e}")
            raise TokenEncryptionError(
                f"Failed to derive encryption key: {e}"
            )

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a payload for storage.

        Raises:
            TokenEncryptionError: If encryption fails.
        """
        if not plaintext:
            raise TokenEncryptionError("Cannot encrypt empty token")

        try:
            encrypted = self._fernet.encrypt(plaintext.encode("utf-8"))
            return encrypted.decode("utf-8")
        except Exception as e:
            logger.error(f"Token encryption failed: {e}")
            raise TokenEncryptionError(f"Encryption failed: {e}")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored payload.

        Raises:
            TokenEncryptionError: If decryption fails.
        """
        if not ciphertext:
            raise TokenEncryptionError("Cannot decrypt empty token")

        try:
            decrypted = self._fernet.decrypt(ciphertext.encode("utf-8"))
            return decrypted.decode("utf-8")
        except InvalidToken:
            logger.error(
                "Token decryption failed: invalid token or wrong key"
            )
            raise TokenEncryptionError(
                "Decryption failed: token is corrupted "
                "or secret key changed"
            )
        except Exception as e:
            logger.error(f"Token decryption failed: {e}")
            raise TokenEncryptionError(f"Decryption failed: {e}")


def load_or_create_key_file(path: Path) -> str:
    """
    Read the client's encryption secret, creating it on first use.

    The file is created owner read/write only.

    Args:
        path: Location of the key file.

    Returns:
        The secret string stored in the file.
    """
    path = Path(path)
    if path.exists():
        secret = path.read_text().strip()
        if secret:
            return secret
        logger.warning("Key file %s is empty, regenerating", path)

    path.parent.mkdir(parents=True, exist_ok=True)
    secret = secrets.token_urlsafe(32)
    fd = os.open(
        path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR
    )
    with os.fdopen(fd, "w") as f:
        f.write(secret)
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    logger.info("Created credential key file at %s", path)
    return secret
