"""
Webmail account identity and session state.

An Account is created for every stored login. Everything derived from the
address (local part, domain, hosted or not, login and mailbox URLs) is
computed once at construction; the mutable part is the cookie jar, the
connection state and the latest mailbox snapshot.
"""
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from mail_checker import config
from mail_checker.models import ConnectionState, LabelCount, LoginState, MailboxSnapshot, Message
from mail_checker.network.cookies import CookieStore


logger = logging.getLogger(__name__)


def split_address(username: str):
    """
    Split an email address into (local part, domain).

    Raises:
        ValueError: If the address has no domain.
    """
    user, sep, domain = username.strip().rpartition("@")
    if not sep or not user or not domain:
        raise ValueError(f"Not an email address: {username!r}")
    return user, domain.lower()


def is_hosted_domain(domain: str) -> bool:
    """Check whether a domain is a custom (Google Apps) domain."""
    return domain.lower() not in config.DEFAULT_DOMAINS


def login_url_for(domain: str) -> str:
    """The login page URL for accounts on ``domain``."""
    if is_hosted_domain(domain):
        return config.HOSTED_LOGIN_URL.format(domain=domain)
    return config.LOGIN_URL


def check_url_for(domain: str) -> str:
    """The mailbox URL polled for accounts on ``domain``."""
    if is_hosted_domain(domain):
        return config.HOSTED_CHECK_URL.format(domain=domain)
    return config.CHECK_URL


class Account:
    """
    One webmail mailbox.

    The account owns its cookie jar exclusively. Only one check may use
    the jar at a time; the checker enforces that. Session writes carry the
    jar they started with and are dropped once a logout replaced it.
    """

    def __init__(self, username: str):
        """
        Initialize the account.

        Args:
            username: The full email address.

        Raises:
            ValueError: If the username is not an email address.
        """
        self.username = username.strip()
        self.user, self.domain = split_address(self.username)
        self.is_hosted = is_hosted_domain(self.domain)
        self.login_url = login_url_for(self.domain)
        self.check_url = check_url_for(self.domain)

        self._lock = threading.RLock()
        self.cookie_store = CookieStore()
        self.state = ConnectionState.OFFLINE
        self.mailbox_url: Optional[str] = None
        self.labels: Dict[str, LabelCount] = {}
        self.messages: List[Message] = []
        self.last_error: Optional[BaseException] = None
        self.last_checked: Optional[datetime] = None
        self.login_state: Optional[LoginState] = None
        logger.info(f"Created account {self.username} (hosted={self.is_hosted})")

    @property
    def login_name(self) -> str:
        """The identifier typed into the login form."""
        return self.user if self.is_hosted else self.username

    @property
    def inbox_unread(self) -> int:
        return MailboxSnapshot(labels=self.labels).inbox_unread

    def _owns(self, cookie_store: Optional[CookieStore]) -> bool:
        return cookie_store is None or cookie_store is self.cookie_store

    def set_state(self, state: ConnectionState, cookie_store: Optional[CookieStore] = None) -> bool:
        """
        Set the connection state.

        Returns:
            False if ``cookie_store`` is given and no longer the account's jar.
        """
        with self._lock:
            if not self._owns(cookie_store):
                return False
            self.state = state
            return True

    def mark_authenticated(self, mailbox_url: str, cookie_store: Optional[CookieStore] = None) -> bool:
        """Record the post-redirect mailbox URL of a session that got through."""
        with self._lock:
            if not self._owns(cookie_store):
                logger.info(f"{self.username}: logged out meanwhile, discarding session")
                return False
            self.mailbox_url = mailbox_url
            if self.state in (ConnectionState.OFFLINE, ConnectionState.CONNECTING):
                self.state = ConnectionState.ONLINE
            return True

    def apply_snapshot(self, snapshot: MailboxSnapshot, cookie_store: Optional[CookieStore] = None) -> bool:
        """Record a freshly parsed mailbox and derive the state from it."""
        with self._lock:
            if not self._owns(cookie_store):
                return False
            self.labels = snapshot.labels
            self.messages = snapshot.messages
            self.state = snapshot.state
            self.last_error = None
            self.last_checked = datetime.now()
            return True

    def logout(self) -> None:
        """Forget the session: new empty jar, OFFLINE state."""
        logger.info(f"Logging out {self.username}")
        with self._lock:
            self.cookie_store = CookieStore()
            self.state = ConnectionState.OFFLINE
            self.mailbox_url = None

    def __repr__(self) -> str:
        return f"<Account {self.username} {self.state.value}>"
