"""
Login flow for webmail sessions.

Fetching a protected page with an expired session lands on the login
page. The flow recognizes that, fills in the login form found on the page
and submits it through the same cookie jar, then checks that the service
let us through.

    FETCHING -> DONE
             -> NEED_CREDENTIALS -> SUBMITTING -> DONE
                                               -> FAILED (login loop)
"""
import logging
from typing import Dict, Optional
from urllib.parse import urljoin

from mail_checker import config
from mail_checker.auth.accounts import Account
from mail_checker.auth.credentials import CredentialProvider
from mail_checker.models import LoginState
from mail_checker.network.document import Document, same_page
from mail_checker.network.session_client import CancelToken, Request, SessionClient
from mail_checker.utils.errors import LoginFormError, LoginLoopError, LoginURLRequestError


logger = logging.getLogger(__name__)

# Opting out of "stay signed in"
PERSISTENT_COOKIE_FIELD = "PersistentCookie"


def build_login_form(document: Document, login_name: str, secret: str):
    """
    Fill in the login form of a login page.

    Args:
        document: The login page.
        login_name: Value for the identity field.
        secret: Value for the password field(s).

    Returns:
        A tuple (action URL, method, fields).

    Raises:
        LoginFormError: If the page has no form with an action and method.
    """
    form = document.select_one("form[action][method]")
    if form is None:
        raise LoginFormError(f"No login form found on {document.url}")

    fields: Dict[str, str] = {}
    for field in form.select("input"):
        name = field.get("name")
        if not name:
            continue
        input_type = (field.get("type") or "text").lower()
        if name == "Email" or input_type == "email":
            fields[name] = login_name
        elif input_type == "password":
            fields[name] = secret
        else:
            fields[name] = field.get("value", "")
    fields.pop(PERSISTENT_COOKIE_FIELD, None)

    action = urljoin(document.url, form.get("action"))
    method = (form.get("method") or "").upper()
    if method not in ("GET", "POST"):
        method = "POST"
    return action, method, fields


class LoginFlow:
    """
    Fetches pages on behalf of an account, logging in when needed.

    One flow serves every account. The step of an attempt is kept on its
    account as ``login_state``, so concurrent attempts for different
    accounts do not share state.
    """

    def __init__(self, client: SessionClient, credentials: CredentialProvider,
                 realm: str = config.CREDENTIAL_REALM):
        self.client = client
        self.credentials = credentials
        self.realm = realm

    @staticmethod
    def _transition(account: Account, state: LoginState) -> None:
        previous = account.login_state.value if account.login_state else "start"
        logger.debug(f"{account.username}: {previous} -> {state.value}")
        account.login_state = state

    def fetch_with_login(self, account: Account, request: Request,
                         token: Optional[CancelToken] = None) -> Document:
        """
        Fetch a page, signing in first if the session has expired.

        Args:
            account: The account whose session is used.
            request: The request for the protected page. Its cookie store
                should be the account's.
            token: Optional cancellation token.

        Returns:
            The protected page.

        Raises:
            LoginURLRequestError: If the request targets the login page.
            CredentialLookupError: If the password cannot be retrieved.
            LoginFormError: If the login page carries no usable form.
            LoginLoopError: If the login page comes back after submitting.
            NetworkError: On network failures.
        """
        if same_page(request.url, account.login_url):
            raise LoginURLRequestError(
                f"Refusing to fetch the login page {account.login_url} directly"
            )

        account.login_state = None
        self._transition(account, LoginState.FETCHING)
        try:
            document = self.client.send(request, token)
            if not document.is_page(account.login_url):
                return self._done(account, request, document)

            logger.info(f"{account.username}: session expired, logging in")
            self._transition(account, LoginState.NEED_CREDENTIALS)
            if token is not None:
                token.raise_if_cancelled()
            secret = self.credentials.get_secret(account.username, self.realm)
            action, method, fields = build_login_form(document, account.login_name, secret)

            self._transition(account, LoginState.SUBMITTING)
            logger.info(f"{account.username}: submitting login form to {action}")
            document = self.client.send(
                Request(
                    url=action,
                    cookie_store=request.cookie_store,
                    method=method,
                    data=fields,
                    referrer=document.url,
                    private=request.private,
                ),
                token,
            )
            if document.is_page(account.login_url):
                raise LoginLoopError(
                    f"{account.username}: still on the login page after submitting credentials"
                )
            return self._done(account, request, document)
        except Exception:
            self._transition(account, LoginState.FAILED)
            raise

    def _done(self, account: Account, request: Request, document: Document) -> Document:
        self._transition(account, LoginState.DONE)
        if account.mark_authenticated(document.url, request.cookie_store):
            logger.info(f"{account.username}: authenticated at {document.url}")
        return document
