"""
Symmetric encryption helpers for stored passwords.

Passwords are encrypted with Fernet (AES-128 in CBC mode with HMAC). The
key lives in a file next to the database, readable by the owner only.
"""
import logging
import os

from cryptography.fernet import Fernet, InvalidToken

from mail_checker import config


logger = logging.getLogger(__name__)


class DecryptionError(Exception):
    """Raised when decryption fails due to corruption or a changed key."""
    pass


def _get_or_create_key() -> bytes:
    """
    Get the encryption key from file, or generate a new one if missing.

    Returns:
        The encryption key as bytes.
    """
    key_file = config.SECRET_KEY_FILE
    key_file.parent.mkdir(parents=True, exist_ok=True)

    if key_file.exists():
        key = key_file.read_bytes().strip()
        try:
            Fernet(key)
            return key
        except (ValueError, TypeError):
            # Previously stored secrets become unreadable with a new key
            logger.warning(f"Encryption key in {key_file} is corrupted, generating a new one")

    key = Fernet.generate_key()
    key_file.write_bytes(key)
    try:
        os.chmod(key_file, 0o600)
    except OSError:
        logger.debug(f"Could not restrict permissions of {key_file}")
    return key


def _get_cipher() -> Fernet:
    return Fernet(_get_or_create_key())


def encrypt_text(text: str) -> str:
    """
    Encrypt a text string.

    Args:
        text: The text to encrypt.

    Returns:
        The Fernet token as text, safe to store in a TEXT column.

    Raises:
        ValueError: If text is empty.
    """
    if not text:
        raise ValueError("Cannot encrypt empty text")
    return _get_cipher().encrypt(text.encode("utf-8")).decode("ascii")


def decrypt_text(token: str) -> str:
    """
    Decrypt a token produced by ``encrypt_text``.

    Raises:
        DecryptionError: If the token is corrupted or the key changed.
    """
    if not token:
        raise DecryptionError("Cannot decrypt empty data")
    try:
        return _get_cipher().decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken as e:
        raise DecryptionError("Decryption failed: invalid or corrupted data") from e
    except UnicodeError as e:
        raise DecryptionError(f"Decrypted data is not valid text: {e}") from e
