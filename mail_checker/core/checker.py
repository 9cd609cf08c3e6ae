"""
Mail check orchestration.

One check cycle fetches the account's mailbox through the login flow,
parses it and updates the account. Failures that invalidate the session
log the account out (new empty cookie jar, OFFLINE); parse failures keep
the session.

Thread-safe design: an AccountChecker runs at most one check at a time for
its account. The CheckScheduler runs checks on a worker pool and can
supersede a running check by cancelling it.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, Optional

from mail_checker import config
from mail_checker.auth.accounts import Account
from mail_checker.auth.login_flow import LoginFlow
from mail_checker.core.mailbox_parser import MailboxParser
from mail_checker.models import ConnectionState, MailboxSnapshot
from mail_checker.network.session_client import CancelToken, Request
from mail_checker.utils.errors import (
    CheckCancelledError,
    CheckInProgressError,
    invalidates_session,
)


logger = logging.getLogger(__name__)

# callback(account) after every state change
StateCallback = Callable[[Account], None]


class AccountChecker:
    """
    Runs check cycles for one account.

    Does not create threads; callers decide where ``check`` runs.
    """

    def __init__(
        self,
        account: Account,
        flow: LoginFlow,
        parser: Optional[MailboxParser] = None,
        on_state_changed: Optional[StateCallback] = None,
        deadline: Optional[float] = None,
    ):
        """
        Initialize the checker.

        Args:
            account: The account to check.
            flow: Login flow used to fetch the mailbox.
            parser: Mailbox parser (a default one is created if omitted).
            on_state_changed: Optional callback invoked after state changes.
            deadline: Overall time limit of one check in seconds.
        """
        self.account = account
        self.flow = flow
        self.parser = parser or MailboxParser()
        self.on_state_changed = on_state_changed
        self.deadline = deadline if deadline is not None else config.CHECK_DEADLINE
        self._lock = threading.Lock()
        self._token: Optional[CancelToken] = None

    def is_checking(self) -> bool:
        with self._lock:
            return self._token is not None

    def cancel(self) -> bool:
        """
        Cancel the running check, if any.

        Returns:
            True if a check was running.
        """
        with self._lock:
            if self._token is None:
                return False
            self._token.cancel()
            return True

    def check(self) -> MailboxSnapshot:
        """
        Run one complete check.

        Returns:
            The parsed mailbox.

        Raises:
            CheckInProgressError: If a check is already running.
            MailCheckerError: Any failure of the check; the account state
                has already been updated when it propagates.
        """
        with self._lock:
            if self._token is not None:
                raise CheckInProgressError(f"Check already in progress for {self.account.username}")
            token = CancelToken(self.deadline)
            self._token = token
            # A logout swaps the jar; writes for the old one are dropped
            store = self.account.cookie_store

        account = self.account
        previous_state = account.state
        try:
            self._set_state(ConnectionState.CONNECTING, store)
            request = Request(
                url=account.mailbox_url or account.check_url,
                cookie_store=store,
            )
            document = self.flow.fetch_with_login(account, request, token)
            snapshot = self.parser.parse(document)
            if not account.apply_snapshot(snapshot, store):
                raise CheckCancelledError(f"{account.username} was logged out during the check")
            logger.info(
                f"{account.username}: {snapshot.inbox_unread} unread, "
                f"{len(snapshot.messages)} preview(s)"
            )
            self._notify()
            return snapshot
        except CheckCancelledError as e:
            logger.info(f"{account.username}: check cancelled")
            account.last_error = e
            self._set_state(previous_state, store)
            raise
        except Exception as e:
            account.last_error = e
            account.last_checked = datetime.now()
            if account.cookie_store is not store:
                logger.info(f"{account.username}: check failed after logout: {e}")
            elif invalidates_session(e):
                logger.error(f"{account.username}: check failed, logging out: {e}")
                account.logout()
                self._notify()
            else:
                logger.error(f"{account.username}: mailbox could not be read: {e}")
                self._set_state(ConnectionState.ONLINE, store)
            raise
        finally:
            with self._lock:
                self._token = None

    def logout(self) -> None:
        """Cancel any running check and drop the session."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self.account.logout()
        self._notify()

    def _set_state(self, state: ConnectionState, store=None) -> None:
        if self.account.set_state(state, store):
            self._notify()

    def _notify(self) -> None:
        if self.on_state_changed is None:
            return
        try:
            self.on_state_changed(self.account)
        except Exception:
            logger.exception(f"State callback failed for {self.account.username}")


class CheckScheduler:
    """
    Runs account checks on a worker pool.

    A second trigger for an account whose check is still running returns
    the running check's future, unless ``supersede`` is set, in which case
    the running check is cancelled and a new one starts after it stopped.
    A superseded check that is still queued is dropped without running.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="check")
        self._checkers: Dict[str, AccountChecker] = {}
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def add(self, checker: AccountChecker) -> None:
        with self._lock:
            self._checkers[checker.account.username] = checker

    def remove(self, username: str) -> Optional[AccountChecker]:
        with self._lock:
            checker = self._checkers.pop(username, None)
            self._futures.pop(username, None)
        if checker is not None:
            checker.cancel()
        return checker

    def checker(self, username: str) -> AccountChecker:
        with self._lock:
            return self._checkers[username]

    def trigger(self, username: str, supersede: bool = False) -> Future:
        """
        Start a check for an account.

        Args:
            username: The account to check.
            supersede: Cancel a running check and start over.

        Returns:
            A future resolving to the MailboxSnapshot.

        Raises:
            KeyError: If the account is unknown.
        """
        with self._lock:
            checker = self._checkers[username]
            running = self._futures.get(username)
            if running is not None and not running.done():
                if not supersede:
                    logger.debug(f"{username}: check already running")
                    return running
                logger.info(f"{username}: superseding running check")
                if running.cancel():
                    # Still queued; it never touched the account
                    future = self._executor.submit(checker.check)
                else:
                    checker.cancel()
                    future = self._executor.submit(self._run_after, running, checker)
            else:
                future = self._executor.submit(checker.check)
            self._futures[username] = future
        return future

    @staticmethod
    def _run_after(previous: Future, checker: AccountChecker) -> MailboxSnapshot:
        # The superseded check stops at its next hop; its outcome belongs
        # to whoever holds its future
        try:
            previous.result()
        except Exception as e:
            logger.debug(f"{checker.account.username}: superseded check ended with {e!r}")
        return checker.check()

    def trigger_all(self) -> Dict[str, Future]:
        with self._lock:
            usernames = list(self._checkers)
        return {username: self.trigger(username) for username in usernames}

    def shutdown(self) -> None:
        """Cancel running checks and stop the worker pool."""
        with self._lock:
            checkers = list(self._checkers.values())
        for checker in checkers:
            checker.cancel()
        self._executor.shutdown(wait=True)
