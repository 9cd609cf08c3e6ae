"""
Credential lookup for webmail accounts.

The login flow asks a CredentialProvider for the password of an account
when the session has expired. The default provider keeps passwords
encrypted in the application database, keyed by username and realm.
"""
import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import List

from mail_checker import config
from mail_checker.storage import db
from mail_checker.storage.encryption import DecryptionError, decrypt_text, encrypt_text
from mail_checker.utils.errors import (
    CredentialAccessDeniedError,
    CredentialLookupError,
    CredentialNotFoundError,
)


logger = logging.getLogger(__name__)


class CredentialProvider(ABC):
    """Looks up stored secrets by account identifier and realm."""

    @abstractmethod
    def get_secret(self, username: str, realm: str = config.CREDENTIAL_REALM) -> str:
        """
        Get the secret stored for an account.

        Args:
            username: The account identifier (full email address).
            realm: The URL the secret is valid for.

        Returns:
            The secret.

        Raises:
            CredentialNotFoundError: If nothing is stored.
            CredentialAccessDeniedError: If the stored secret cannot be read.
        """
        pass

    @abstractmethod
    def list_usernames(self, realm: str = config.CREDENTIAL_REALM) -> List[str]:
        """List the accounts with a secret stored for ``realm``."""
        pass


class EncryptedCredentialStore(CredentialProvider):
    """Stores Fernet-encrypted secrets in the ``credentials`` table."""

    def get_secret(self, username: str, realm: str = config.CREDENTIAL_REALM) -> str:
        try:
            row = db.fetchone(
                "SELECT encrypted_secret FROM credentials WHERE username = ? AND realm = ?",
                (username, realm),
            )
        except sqlite3.Error as e:
            raise CredentialLookupError(f"Failed to read credentials for {username}: {e}") from e
        if row is None:
            raise CredentialNotFoundError(f"No credentials stored for {username} at {realm}")
        try:
            return decrypt_text(row["encrypted_secret"])
        except DecryptionError as e:
            raise CredentialAccessDeniedError(
                f"Stored credentials for {username} cannot be decrypted"
            ) from e

    def list_usernames(self, realm: str = config.CREDENTIAL_REALM) -> List[str]:
        rows = db.fetchall(
            "SELECT username FROM credentials WHERE realm = ? ORDER BY username",
            (realm,),
        )
        return [row["username"] for row in rows]

    def save_secret(self, username: str, secret: str, realm: str = config.CREDENTIAL_REALM) -> None:
        """
        Store or replace the secret of an account.

        Raises:
            ValueError: If the secret is empty.
        """
        encrypted = encrypt_text(secret)
        db.execute(
            """
            INSERT OR REPLACE INTO credentials (username, realm, encrypted_secret)
            VALUES (?, ?, ?)
            """,
            (username, realm, encrypted),
        )
        logger.info(f"Stored credentials for {username}")

    def delete_secret(self, username: str, realm: str = config.CREDENTIAL_REALM) -> None:
        """
        Remove the secret of an account.

        Raises:
            CredentialNotFoundError: If nothing was stored.
        """
        deleted = db.execute(
            "DELETE FROM credentials WHERE username = ? AND realm = ?",
            (username, realm),
        )
        if not deleted:
            raise CredentialNotFoundError(f"No credentials stored for {username} at {realm}")
        logger.info(f"Removed credentials for {username}")
