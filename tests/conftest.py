from __future__ import annotations

import pytest

from mail_checker import config
from mail_checker.storage.db import init_db


@pytest.fixture(autouse=True)
def app_dir(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Point every persisted file at a temporary directory."""
    monkeypatch.setattr(config, "APP_DIR", tmp_path)
    monkeypatch.setattr(config, "SQLITE_DB_PATH", tmp_path / "webmail_checker.db")
    monkeypatch.setattr(config, "SECRET_KEY_FILE", tmp_path / "secret.key")
    monkeypatch.setattr(config, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(config, "COOKIE_EXPORT_DIR", tmp_path / "cookies")
    init_db()
    return tmp_path
