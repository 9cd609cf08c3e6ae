"""
Hand an account's session to an external viewer.

Opening the mailbox in a browser needs the browser to know our cookies.
A CookieSink receives them as if they had arrived in Set-Cookie headers
for the given URL; the file sink writes Netscape ``cookies.txt`` files a
browser profile or extension can import, keeping private-browsing cookies
in a separate file.
"""
import logging
import webbrowser
from abc import ABC, abstractmethod
from http.cookiejar import Cookie as JarCookie
from http.cookiejar import MozillaCookieJar
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from mail_checker import config
from mail_checker.auth.accounts import Account
from mail_checker.network.cookies import Cookie


logger = logging.getLogger(__name__)


class CookieSink(ABC):
    """Receives cookies for a URL, respecting the private partition."""

    @abstractmethod
    def inject(self, url: str, cookies: List[Cookie], private: bool = True) -> None:
        pass


def to_jar_cookie(cookie: Cookie, host: str) -> JarCookie:
    """Convert a stored cookie to an ``http.cookiejar`` cookie for ``host``."""
    domain = cookie.domain or host
    rest = {"HttpOnly": None} if cookie.http_only else {}
    return JarCookie(
        version=0,
        name=cookie.name,
        value=cookie.value,
        port=None,
        port_specified=False,
        domain=domain,
        domain_specified=cookie.domain is not None,
        domain_initial_dot=domain.startswith("."),
        path=cookie.path,
        path_specified=True,
        secure=cookie.secure,
        expires=int(cookie.expires) if cookie.expires is not None else None,
        discard=cookie.expires is None,
        comment=None,
        comment_url=None,
        rest=rest,
    )


class CookieFileSink(CookieSink):
    """Writes cookies to ``cookies.txt`` / ``cookies-private.txt``."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory or config.COOKIE_EXPORT_DIR)

    def path_for(self, private: bool) -> Path:
        return self.directory / ("cookies-private.txt" if private else "cookies.txt")

    def inject(self, url: str, cookies: List[Cookie], private: bool = True) -> None:
        host = (urlsplit(url).hostname or "").lower()
        if not host:
            raise ValueError(f"URL has no host, not supported: {url!r}")
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(private)

        jar = MozillaCookieJar(str(path))
        if path.exists():
            jar.load(ignore_discard=True)
        for cookie in cookies:
            jar.set_cookie(to_jar_cookie(cookie, host))
        jar.save(ignore_discard=True)
        logger.info(f"Exported {len(cookies)} cookie(s) for {host} to {path}")


def open_mailbox(
    account: Account,
    sink: CookieSink,
    opener: Callable[[str], object] = webbrowser.open,
    private: bool = True,
) -> str:
    """
    Export the account's cookies and open its mailbox in a viewer.

    Args:
        account: The account to open.
        sink: Where the cookies go.
        opener: Function opening a URL (``webbrowser.open`` by default).
        private: Whether to use the private partition.

    Returns:
        The URL that was opened.
    """
    url = account.mailbox_url or account.check_url
    sink.inject(url, account.cookie_store.get(url), private=private)
    opener(url)
    return url
