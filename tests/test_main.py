from __future__ import annotations

import json
import logging

import pytest
import requests

import main as app
from helpers import CHECK_URL, FakeSession, make_response, mailbox_page, thread_row
from mail_checker.auth.credentials import EncryptedCredentialStore
from mail_checker.core.settings import AUTO_LOGIN, SqliteSettingsStore
from mail_checker.network.session_client import SessionClient


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def test_add_and_remove_account(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(app.getpass, "getpass", lambda prompt: "s3cret")

    assert app.main(["add-account", "alice@gmail.com"]) == 0

    assert EncryptedCredentialStore().get_secret("alice@gmail.com") == "s3cret"
    assert SqliteSettingsStore().get("alice@gmail.com", AUTO_LOGIN) is True

    assert app.main(["remove-account", "alice@gmail.com"]) == 0
    assert EncryptedCredentialStore().list_usernames() == []
    assert SqliteSettingsStore().account_keys() == []

    assert app.main(["remove-account", "alice@gmail.com"]) == 1
    assert "No saved password" in capsys.readouterr().err


def test_add_account_rejects_bad_input(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app.getpass, "getpass", lambda prompt: "")

    assert app.main(["add-account", "not-an-address"]) == 2
    assert app.main(["add-account", "alice@gmail.com"]) == 2
    assert EncryptedCredentialStore().list_usernames() == []


def test_check_prints_labels_and_previews(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    EncryptedCredentialStore().save_secret("alice@gmail.com", "s3cret")
    view_data = '[["tb",0,[' + json.dumps(thread_row("t1", subject="Lunch", people="Bob")) + "]]]"
    session = FakeSession({
        ("GET", CHECK_URL): make_response(CHECK_URL, body=mailbox_page('[null,[["^i",1,5]]]', view_data)),
    })
    monkeypatch.setattr(app, "SessionClient", lambda: SessionClient(session=session))

    assert app.main(["check"]) == 0

    out = capsys.readouterr().out
    assert "alice@gmail.com: notify" in out
    assert "Inbox: 1 unread / 5" in out
    assert "Lunch" in out


def test_check_reports_failures(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    EncryptedCredentialStore().save_secret("alice@gmail.com", "s3cret")
    session = FakeSession({("GET", CHECK_URL): requests.ConnectionError("offline")})
    monkeypatch.setattr(app, "SessionClient", lambda: SessionClient(session=session))

    assert app.main(["check", "alice@gmail.com"]) == 1
    assert "internet connection" in capsys.readouterr().err


def test_check_without_accounts(capsys) -> None:
    assert app.main(["check"]) == 1
    assert "No matching accounts" in capsys.readouterr().err
