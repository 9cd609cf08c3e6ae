from __future__ import annotations

import threading
import time

import pytest

from helpers import mailbox_document
from mail_checker.auth.accounts import Account
from mail_checker.core.checker import AccountChecker, CheckScheduler
from mail_checker.models import ConnectionState
from mail_checker.network.cookies import Cookie
from mail_checker.utils.errors import (
    CheckCancelledError,
    CheckInProgressError,
    LoginLoopError,
    MalformedMailboxDataError,
    NetworkError,
)


MAILBOX = mailbox_document('[null,[["^i",3,40]]]')


class ScriptedFlow:
    """Answers fetch_with_login from a list of documents or exceptions."""

    def __init__(self, *answers) -> None:
        self.answers = list(answers)
        self.requests = []

    def fetch_with_login(self, account, request, token=None):
        self.requests.append(request)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class BlockingFlow:
    """First fetch waits until its check is cancelled; later ones succeed."""

    def __init__(self, document) -> None:
        self.document = document
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def fetch_with_login(self, account, request, token=None):
        self.calls += 1
        if self.calls == 1:
            self.started.set()
            deadline = time.monotonic() + 5
            while not token.cancelled and not self.release.is_set() and time.monotonic() < deadline:
                time.sleep(0.01)
            token.raise_if_cancelled()
        return self.document


class GateFlow:
    """Gets through to the mailbox, then waits at a gate before returning it."""

    def __init__(self, document, authenticate_first: bool = True) -> None:
        self.document = document
        self.authenticate_first = authenticate_first
        self.reached = threading.Event()
        self.gate = threading.Event()

    def fetch_with_login(self, account, request, token=None):
        url = "https://mail.google.com/mail/u/0/"
        if self.authenticate_first:
            account.mark_authenticated(url, request.cookie_store)
        self.reached.set()
        assert self.gate.wait(5)
        if not self.authenticate_first:
            account.mark_authenticated(url, request.cookie_store)
        return self.document


def signed_in_account() -> Account:
    account = Account("alice@gmail.com")
    account.cookie_store.add(Cookie("SID", "abc", domain=".google.com"), "https://accounts.google.com/")
    return account


def test_successful_check_updates_account() -> None:
    account = signed_in_account()
    states = []
    flow = ScriptedFlow(MAILBOX)
    checker = AccountChecker(account, flow, on_state_changed=lambda acc: states.append(acc.state))

    snapshot = checker.check()

    assert snapshot.inbox_unread == 3
    assert account.state == ConnectionState.NOTIFY
    assert account.inbox_unread == 3
    assert account.last_error is None
    assert account.last_checked is not None
    assert states == [ConnectionState.CONNECTING, ConnectionState.NOTIFY]
    assert flow.requests[0].url == account.check_url
    assert flow.requests[0].cookie_store is account.cookie_store


def test_check_uses_known_mailbox_url() -> None:
    account = signed_in_account()
    account.mailbox_url = "https://mail.google.com/mail/u/0/"
    flow = ScriptedFlow(MAILBOX)

    AccountChecker(account, flow).check()

    assert flow.requests[0].url == "https://mail.google.com/mail/u/0/"


@pytest.mark.parametrize("error", [NetworkError("down"), LoginLoopError("rejected")])
def test_failed_check_logs_out(error: Exception) -> None:
    account = signed_in_account()
    account.state = ConnectionState.ONLINE
    account.mailbox_url = "https://mail.google.com/mail/u/0/"
    old_store = account.cookie_store

    with pytest.raises(type(error)):
        AccountChecker(account, ScriptedFlow(error)).check()

    assert account.state == ConnectionState.OFFLINE
    assert account.cookie_store is not old_store
    assert len(account.cookie_store) == 0
    assert account.mailbox_url is None
    assert account.last_error is error


def test_unreadable_mailbox_keeps_session() -> None:
    account = signed_in_account()
    store = account.cookie_store
    checker = AccountChecker(account, ScriptedFlow(MAILBOX, mailbox_document("[null]")))
    checker.check()

    with pytest.raises(MalformedMailboxDataError):
        checker.check()

    assert account.state == ConnectionState.ONLINE
    assert account.cookie_store is store
    assert len(store) == 1
    # The previous snapshot stays visible
    assert account.inbox_unread == 3


def test_second_check_while_running_is_refused() -> None:
    account = signed_in_account()
    flow = BlockingFlow(MAILBOX)
    checker = AccountChecker(account, flow)
    worker = threading.Thread(target=checker.check)
    worker.start()
    assert flow.started.wait(5)

    assert checker.is_checking()
    with pytest.raises(CheckInProgressError):
        checker.check()

    flow.release.set()
    worker.join(5)
    assert not checker.is_checking()
    assert account.state == ConnectionState.NOTIFY


def test_cancelled_check_restores_state_and_keeps_cookies() -> None:
    account = signed_in_account()
    account.state = ConnectionState.ONLINE
    store = account.cookie_store
    flow = BlockingFlow(MAILBOX)
    checker = AccountChecker(account, flow)
    errors = []

    def run():
        try:
            checker.check()
        except CheckCancelledError as e:
            errors.append(e)

    worker = threading.Thread(target=run)
    worker.start()
    assert flow.started.wait(5)

    assert checker.cancel()
    worker.join(5)

    assert len(errors) == 1
    assert account.state == ConnectionState.ONLINE
    assert account.cookie_store is store
    assert checker.cancel() is False


def test_logout_drops_session() -> None:
    account = signed_in_account()
    account.state = ConnectionState.NOTIFY
    states = []
    checker = AccountChecker(account, ScriptedFlow(MAILBOX), on_state_changed=lambda acc: states.append(acc.state))

    checker.logout()

    assert account.state == ConnectionState.OFFLINE
    assert len(account.cookie_store) == 0
    assert states == [ConnectionState.OFFLINE]


def run_in_thread(checker: AccountChecker):
    errors = []

    def run():
        try:
            checker.check()
        except Exception as e:
            errors.append(e)

    worker = threading.Thread(target=run)
    worker.start()
    return worker, errors


def test_logout_during_check_stays_logged_out() -> None:
    account = signed_in_account()
    account.state = ConnectionState.ONLINE
    account.mailbox_url = "https://mail.google.com/mail/u/0/"
    flow = BlockingFlow(MAILBOX)
    checker = AccountChecker(account, flow)
    worker, errors = run_in_thread(checker)
    assert flow.started.wait(5)

    checker.logout()
    worker.join(5)

    assert isinstance(errors[0], CheckCancelledError)
    assert account.state == ConnectionState.OFFLINE
    assert account.mailbox_url is None
    assert len(account.cookie_store) == 0


@pytest.mark.parametrize("authenticate_first", [True, False])
def test_logout_after_last_hop_discards_the_result(authenticate_first: bool) -> None:
    account = signed_in_account()
    flow = GateFlow(MAILBOX, authenticate_first=authenticate_first)
    checker = AccountChecker(account, flow)
    worker, errors = run_in_thread(checker)
    assert flow.reached.wait(5)

    checker.logout()
    flow.gate.set()
    worker.join(5)

    assert isinstance(errors[0], CheckCancelledError)
    assert account.state == ConnectionState.OFFLINE
    assert account.mailbox_url is None
    assert len(account.cookie_store) == 0
    assert account.labels == {}


def test_failing_state_callback_does_not_break_check() -> None:
    def explode(account):
        raise RuntimeError("ui gone")

    account = signed_in_account()

    AccountChecker(account, ScriptedFlow(MAILBOX), on_state_changed=explode).check()

    assert account.state == ConnectionState.NOTIFY


def test_scheduler_returns_running_check_or_supersedes_it() -> None:
    account = signed_in_account()
    flow = BlockingFlow(MAILBOX)
    scheduler = CheckScheduler(max_workers=2)
    scheduler.add(AccountChecker(account, flow))
    try:
        first = scheduler.trigger(account.username)
        assert flow.started.wait(5)

        assert scheduler.trigger(account.username) is first

        second = scheduler.trigger(account.username, supersede=True)
        assert second is not first
        assert second.result(timeout=5).inbox_unread == 3
        assert isinstance(first.exception(timeout=5), CheckCancelledError)
        assert flow.calls == 2
        assert account.state == ConnectionState.NOTIFY
    finally:
        scheduler.shutdown()


def test_scheduler_trigger_all_and_remove() -> None:
    alice = signed_in_account()
    bob = Account("bob@example.org")
    scheduler = CheckScheduler()
    scheduler.add(AccountChecker(alice, ScriptedFlow(MAILBOX)))
    scheduler.add(AccountChecker(bob, ScriptedFlow(NetworkError("down"))))
    try:
        futures = scheduler.trigger_all()

        assert futures[alice.username].result(timeout=5).inbox_unread == 3
        assert isinstance(futures[bob.username].exception(timeout=5), NetworkError)
        assert bob.state == ConnectionState.OFFLINE

        assert scheduler.remove(bob.username).account is bob
        assert scheduler.remove(bob.username) is None
        with pytest.raises(KeyError):
            scheduler.trigger(bob.username)
    finally:
        scheduler.shutdown()


def test_superseding_a_queued_check_drops_it() -> None:
    alice = signed_in_account()
    bob = Account("bob@example.org")
    alice_flow = BlockingFlow(MAILBOX)
    bob_flow = ScriptedFlow(MAILBOX)
    scheduler = CheckScheduler(max_workers=1)
    scheduler.add(AccountChecker(alice, alice_flow))
    scheduler.add(AccountChecker(bob, bob_flow))
    try:
        scheduler.trigger(alice.username)
        assert alice_flow.started.wait(5)
        queued = scheduler.trigger(bob.username)

        second = scheduler.trigger(bob.username, supersede=True)

        assert queued.cancelled()
        alice_flow.release.set()
        assert second.result(timeout=5).inbox_unread == 3
        assert len(bob_flow.requests) == 1
    finally:
        scheduler.shutdown()
