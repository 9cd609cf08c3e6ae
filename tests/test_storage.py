from __future__ import annotations

import pytest

from mail_checker import config
from mail_checker.auth.credentials import EncryptedCredentialStore
from mail_checker.core.settings import (
    AUTO_LOGIN,
    CHECK_INTERVAL,
    MemorySettingsStore,
    SqliteSettingsStore,
)
from mail_checker.storage import db
from mail_checker.storage.encryption import DecryptionError, decrypt_text, encrypt_text
from mail_checker.utils.errors import (
    CredentialAccessDeniedError,
    CredentialLookupError,
    CredentialNotFoundError,
)


def test_encryption_round_trip_creates_private_key(app_dir) -> None:
    token = encrypt_text("s3cret")

    assert token != "s3cret"
    assert decrypt_text(token) == "s3cret"
    assert config.SECRET_KEY_FILE.exists()
    assert config.SECRET_KEY_FILE.stat().st_mode & 0o077 == 0


def test_encryption_rejects_empty_and_foreign_data() -> None:
    with pytest.raises(ValueError):
        encrypt_text("")
    with pytest.raises(DecryptionError):
        decrypt_text("")
    with pytest.raises(DecryptionError):
        decrypt_text("not-a-fernet-token")


def test_corrupted_key_is_replaced() -> None:
    token = encrypt_text("s3cret")
    config.SECRET_KEY_FILE.write_bytes(b"garbage")

    with pytest.raises(DecryptionError):
        decrypt_text(token)
    assert decrypt_text(encrypt_text("fresh")) == "fresh"


def test_credential_store_round_trip() -> None:
    store = EncryptedCredentialStore()
    store.save_secret("bob@example.org", "pw-1")
    store.save_secret("alice@gmail.com", "pw-2")
    store.save_secret("alice@gmail.com", "pw-3")

    assert store.get_secret("alice@gmail.com") == "pw-3"
    assert store.list_usernames() == ["alice@gmail.com", "bob@example.org"]
    assert store.list_usernames("https://other.example") == []

    stored = db.fetchone("SELECT encrypted_secret FROM credentials WHERE username = ?", ("alice@gmail.com",))
    assert "pw-3" not in stored["encrypted_secret"]


def test_credential_lookup_failures() -> None:
    store = EncryptedCredentialStore()

    with pytest.raises(CredentialNotFoundError):
        store.get_secret("nobody@gmail.com")

    store.save_secret("alice@gmail.com", "pw")
    with pytest.raises(CredentialNotFoundError):
        store.get_secret("alice@gmail.com", realm="https://other.example")

    config.SECRET_KEY_FILE.unlink()
    with pytest.raises(CredentialAccessDeniedError):
        store.get_secret("alice@gmail.com")


def test_credential_lookup_database_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "SQLITE_DB_PATH", config.APP_DIR / "missing" / "fresh.db")

    with pytest.raises(CredentialLookupError, match="Failed to read"):
        EncryptedCredentialStore().get_secret("alice@gmail.com")


def test_credential_delete() -> None:
    store = EncryptedCredentialStore()
    store.save_secret("alice@gmail.com", "pw")

    store.delete_secret("alice@gmail.com")

    assert store.list_usernames() == []
    with pytest.raises(CredentialNotFoundError):
        store.delete_secret("alice@gmail.com")


@pytest.mark.parametrize("store_factory", [MemorySettingsStore, SqliteSettingsStore])
def test_settings_store(store_factory) -> None:
    store = store_factory()

    assert store.load("alice@gmail.com") == {}
    assert store.register("alice@gmail.com") is True
    assert store.register("alice@gmail.com") is False
    assert store.get("alice@gmail.com", AUTO_LOGIN) is True
    assert store.get("alice@gmail.com", CHECK_INTERVAL) == config.DEFAULT_CHECK_INTERVAL_SECONDS
    assert store.get("alice@gmail.com", "missing", "fallback") == "fallback"

    store.set("alice@gmail.com", AUTO_LOGIN, False)
    store.set("bob@example.org", CHECK_INTERVAL, 600)

    assert store.get("alice@gmail.com", AUTO_LOGIN) is False
    assert store.load("bob@example.org") == {CHECK_INTERVAL: 600}
    assert store.account_keys() == ["alice@gmail.com", "bob@example.org"]

    store.remove("bob@example.org")
    assert store.account_keys() == ["alice@gmail.com"]


def test_sqlite_settings_survive_new_store_and_ignore_garbage() -> None:
    SqliteSettingsStore().set("alice@gmail.com", AUTO_LOGIN, False)

    assert SqliteSettingsStore().get("alice@gmail.com", AUTO_LOGIN) is False

    db.execute("UPDATE settings SET value = ? WHERE key = ?", ("{broken", "account:alice@gmail.com"))
    assert SqliteSettingsStore().load("alice@gmail.com") == {}
