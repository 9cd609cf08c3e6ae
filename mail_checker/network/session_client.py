"""
HTTP session client with an explicit cookie jar.

Requests are sent through ``requests`` with its own cookie handling turned
off: every hop reads its Cookie header from the account's CookieStore and
writes every Set-Cookie it receives back into it. Redirects are followed
one hop at a time so that cookies set by an intermediate redirect are
already in the jar when the next location is requested.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from http.cookiejar import DefaultCookiePolicy
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import requests

from mail_checker import config
from mail_checker.network.cookies import CookieStore, build_cookie_header, parse_set_cookie
from mail_checker.network.document import Document
from mail_checker.utils.errors import (
    CheckCancelledError,
    CheckTimeoutError,
    NetworkError,
)


logger = logging.getLogger(__name__)

REDIRECT_CODES = (301, 302, 303, 307, 308)


@dataclass
class Request:
    """One outbound HTTP exchange, including any redirects it triggers."""
    url: str
    cookie_store: CookieStore = field(default_factory=CookieStore)
    method: str = "GET"
    data: Optional[Dict[str, str]] = None
    referrer: Optional[str] = None
    private: bool = True

    def __post_init__(self):
        self.method = str(self.method).upper()
        if self.method not in ("GET", "POST"):
            raise ValueError(f"Unsupported method: {self.method}")
        if not urlsplit(self.url).hostname:
            raise ValueError(f"URL has no host, not supported: {self.url!r}")


class CancelToken:
    """
    Cooperative cancellation flag with an optional deadline.

    The session client checks the token before every hop; the checker
    cancels it when a newer check supersedes this one.
    """

    def __init__(self, deadline_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = None
        if deadline_seconds is not None:
            self._deadline = time.monotonic() + deadline_seconds

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self, default: float) -> float:
        """Seconds left before the deadline, capped at ``default``."""
        if self._deadline is None:
            return default
        return max(0.0, min(default, self._deadline - time.monotonic()))

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            CheckCancelledError: If the token was cancelled.
            CheckTimeoutError: If the deadline has passed.
        """
        if self.cancelled:
            raise CheckCancelledError("Check was cancelled")
        if self.expired:
            raise CheckTimeoutError("Check deadline exceeded")


def merge_query(url: str, data: Dict[str, str]) -> str:
    """
    Merge form data into a URL's query string.

    Existing parameters are kept; keys present in ``data`` replace
    parameters of the same name.
    """
    parts = urlsplit(url)
    query = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        query[key] = value
    for key, value in data.items():
        query[key] = value
    return urlunsplit(parts._replace(query=urlencode(query)))


def set_cookie_headers(response: requests.Response) -> List[str]:
    """
    Get every Set-Cookie header of a response as a separate value.

    ``response.headers`` folds repeated headers into one comma separated
    value, which is ambiguous for cookies carrying an Expires date, so the
    raw urllib3 header list is preferred.
    """
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return list(raw_headers.getlist("Set-Cookie"))
    header = response.headers.get("Set-Cookie")
    return [header] if header else []


class SessionClient:
    """
    Sends requests against per-account cookie stores.

    Stateless apart from the pooled connections of the underlying
    ``requests.Session``; all cookie state lives in the Request's store.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            session: Session to send through. A new one with cookie handling
                disabled is created when omitted.
            executor: Executor used by ``submit``; created lazily if omitted.
            timeout: Per-exchange timeout in seconds.
            max_redirects: Maximum number of redirect hops per request.
            user_agent: User-Agent header value.
        """
        if session is None:
            session = requests.Session()
            # The CookieStore is the only jar
            session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self.session = session
        self.timeout = timeout if timeout is not None else config.EXCHANGE_TIMEOUT
        self.max_redirects = max_redirects if max_redirects is not None else config.MAX_REDIRECTS
        self.user_agent = user_agent or config.USER_AGENT
        self._executor = executor
        self._owns_executor = executor is None

    def submit(self, request: Request, token: Optional[CancelToken] = None) -> "Future[Document]":
        """
        Send a request in the background.

        Returns:
            A future resolving to the final Document, or failing with
            NetworkError, CheckCancelledError or CheckTimeoutError.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="session")
        return self._executor.submit(self.send, request, token)

    def send(self, request: Request, token: Optional[CancelToken] = None) -> Document:
        """
        Perform an exchange, following redirects hop by hop.

        Args:
            request: The request to send.
            token: Optional cancellation token checked before every hop.

        Returns:
            The final Document.

        Raises:
            NetworkError: On connection failures or too many redirects.
            CheckCancelledError: If the token was cancelled mid-flight.
            CheckTimeoutError: If the token's deadline passed mid-flight.
        """
        store = request.cookie_store
        method = request.method
        data = request.data
        referrer = request.referrer
        url = request.url
        if method == "GET" and data:
            url = merge_query(url, data)
            data = None

        logger.info(f"{method} {url}")
        redirects: List[str] = []

        while True:
            if token is not None:
                token.raise_if_cancelled()

            response = self._dispatch(method, url, data, referrer, store, token)
            stored = self._store_cookies(response, url, store)

            location = response.headers.get("Location")
            if response.status_code in REDIRECT_CODES and location:
                if len(redirects) >= self.max_redirects:
                    raise NetworkError(f"Too many redirects starting at {request.url}")
                next_url = urljoin(url, location)
                redirects.append(url)
                if stored:
                    # Next hop goes out with the cookies this hop just set
                    logger.info(f"Restarting at {next_url} after {stored} cookie(s) from {url}")
                    referrer = url
                else:
                    logger.debug(f"Redirected from {url} to {next_url} with no additional cookies")
                if response.status_code == 303 or (
                    response.status_code in (301, 302) and method == "POST"
                ):
                    method = "GET"
                    data = None
                url = next_url
                continue

            if response.status_code >= 400:
                logger.warning(f"{url} answered with HTTP {response.status_code}")
            return Document(
                url=url,
                status_code=response.status_code,
                content_type=response.headers.get("Content-Type", ""),
                content=response.content,
                redirects=redirects,
                private=request.private,
            )

    def _dispatch(
        self,
        method: str,
        url: str,
        data: Optional[Dict[str, str]],
        referrer: Optional[str],
        store: CookieStore,
        token: Optional[CancelToken],
    ) -> requests.Response:
        """Send one hop without following redirects."""
        headers = {"User-Agent": self.user_agent}
        cookies = store.get(url)
        if cookies:
            headers["Cookie"] = build_cookie_header(cookies)
        if referrer:
            headers["Referer"] = referrer
        timeout = token.remaining(self.timeout) if token is not None else self.timeout

        try:
            return self.session.request(
                method,
                url,
                data=data if method == "POST" else None,
                headers=headers,
                allow_redirects=False,
                timeout=timeout,
            )
        except requests.Timeout as e:
            if token is not None and token.expired:
                raise CheckTimeoutError(f"Check deadline exceeded while requesting {url}") from e
            raise NetworkError(f"Timed out requesting {url}") from e
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

    def _store_cookies(self, response: requests.Response, url: str, store: CookieStore) -> int:
        """Commit a response's cookies to the store; return how many were accepted."""
        stored = 0
        for header in set_cookie_headers(response):
            cookie = parse_set_cookie(header, url)
            if cookie is None:
                continue
            logger.debug(f"Set-Cookie {cookie.name} from {url}")
            if store.add(cookie, url):
                stored += 1
        return stored

    def close(self) -> None:
        """Release pooled connections and the background executor."""
        self.session.close()
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=False)
            self._executor = None
