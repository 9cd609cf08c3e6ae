"""
Cookie model and per-account cookie store.

The store is a small browser-style cookie jar. Cookies are indexed by the
reversed labels of their domain so that a lookup can walk from the top
level domain down to the request host, collecting the cookies that apply
at each level:

    com -> example -> ""  -> name -> path -> Cookie   (".example.com")
    com -> example -> www -> "." -> name -> path -> Cookie   ("www.example.com")

The ``""`` bucket holds cookies that apply to a domain and all of its
subdomains; the ``"."`` bucket (never a valid label) holds cookies that
apply to one exact host only.
"""
import ipaddress
import logging
import re
import threading
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Dict, Iterator, List, Optional
from urllib.parse import urlsplit

import tldextract

from mail_checker.utils.errors import CookieDomainError


logger = logging.getLogger(__name__)

# Bucket for cookies set with an explicit ".domain"
WILDCARD_BUCKET = ""
# Bucket for host-only cookies
HOST_BUCKET = "."

# Public suffix lookups use the snapshot bundled with tldextract
_suffix_extract = tldextract.TLDExtract(suffix_list_urls=())

# "Wed, 09-Jun-2021 10:18:14 GMT" -> "Wed, 09 Jun 2021 10:18:14 GMT"
_DASHED_DATE = re.compile(r"(\d{1,2})-([A-Za-z]{3})-(\d{2,4})")


@dataclass(frozen=True, slots=True)
class Cookie:
    """An HTTP cookie as received in a Set-Cookie header."""
    name: str
    value: str = ""
    domain: Optional[str] = None  # ".example.com" or None for host-only
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    expires: Optional[float] = None  # epoch seconds; None = session cookie

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check whether the cookie's expiry lies in the past."""
        if self.expires is None:
            return False
        if now is None:
            now = time.time()
        return now > self.expires

    @property
    def request_string(self) -> str:
        """The ``name=value`` form sent back in a Cookie header."""
        return f"{self.name}={self.value}"

    def __str__(self) -> str:
        return self.request_string


def build_cookie_header(cookies: List[Cookie]) -> str:
    """Join cookies into the value of a Cookie request header."""
    return "; ".join(cookie.request_string for cookie in cookies)


def _request_parts(url: str):
    """Split a URL into (scheme, host, path), failing on hostless URLs."""
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if not host:
        raise ValueError(f"URL has no host, not supported: {url!r}")
    return parts.scheme.lower(), host, parts.path or "/"


def default_path(url: str) -> str:
    """
    Compute the RFC 6265 default-path for cookies set by a URL.

    Args:
        url: The URL of the response that set the cookie.

    Returns:
        The directory of the request path, or "/" at the top level.
    """
    path = urlsplit(url).path
    if not path.startswith("/") or path.count("/") == 1:
        return "/"
    return path[:path.rindex("/")]


def path_matches(request_path: str, cookie_path: str) -> bool:
    """Check whether a request path falls under a cookie path."""
    if request_path == cookie_path:
        return True
    if request_path.startswith(cookie_path):
        return cookie_path.endswith("/") or request_path[len(cookie_path)] == "/"
    return False


def _parse_expires(value: str) -> Optional[float]:
    value = _DASHED_DATE.sub(r"\1 \2 \3", value.strip())
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError, IndexError):
        return None


def parse_set_cookie(header: str, request_url: str,
                     now: Optional[float] = None) -> Optional[Cookie]:
    """
    Parse a single Set-Cookie header value into a Cookie.

    Supports the Expires, Max-Age, Domain, Path, Secure and HttpOnly
    attributes; unknown attributes are ignored. Max-Age takes precedence
    over Expires.

    Args:
        header: The raw header value, e.g. ``"SID=abc; Path=/; Secure"``.
        request_url: URL of the response, used for the default path.
        now: Reference time for Max-Age (defaults to the current time).

    Returns:
        The parsed Cookie, or None if the header has no ``name=value`` pair.
    """
    pieces = header.split(";")
    name, sep, value = pieces[0].partition("=")
    name = name.strip()
    if not sep or not name:
        logger.warning(f"Ignoring Set-Cookie without a name: {header!r}")
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]

    domain = None
    path = None
    secure = False
    http_only = False
    expires = None
    max_age = None

    for attribute in pieces[1:]:
        key, _, attr_value = attribute.partition("=")
        key = key.strip().lower()
        attr_value = attr_value.strip()
        if key == "expires":
            expires = _parse_expires(attr_value)
        elif key == "max-age":
            try:
                max_age = int(attr_value)
            except ValueError:
                continue
        elif key == "domain" and attr_value:
            domain = attr_value.lower()
        elif key == "path" and attr_value.startswith("/"):
            path = attr_value
        elif key == "secure":
            secure = True
        elif key == "httponly":
            http_only = True

    if max_age is not None:
        if now is None:
            now = time.time()
        # Max-Age <= 0 means "expire now"
        expires = now + max_age if max_age > 0 else 0.0

    return Cookie(
        name=name,
        value=value,
        domain=domain,
        path=path or default_path(request_url),
        secure=secure,
        http_only=http_only,
        expires=expires,
    )


def is_public_suffix(domain: str) -> bool:
    """
    Check whether a domain (without leading dot) is a public suffix.

    "com" and "co.uk" cannot carry cookies; "example.com" can.
    """
    # "co.uk" extracts to suffix "co.uk" with an empty registrable part
    return not _suffix_extract(domain).domain


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def cookie_domain_for(cookie: Cookie, host: str) -> str:
    """
    Resolve the domain a cookie will be stored under.

    Args:
        cookie: The cookie being stored.
        host: The lowercase host of the URL that set it.

    Returns:
        The host itself for host-only cookies, or the dot-prefixed domain
        for domain cookies.

    Raises:
        CookieDomainError: If the domain is not acceptable for the host.
    """
    domain = cookie.domain
    if not domain or domain == host:
        return host
    if not domain.startswith("."):
        raise CookieDomainError("domains must start with a dot")
    if _is_ip_address(host):
        raise CookieDomainError("domain cookies cannot be set from an IP address")
    bare = domain[1:]
    if host != bare and not host.endswith(domain):
        raise CookieDomainError(f"domain {domain} is not a suffix of host {host}")
    if "." not in bare or is_public_suffix(bare):
        raise CookieDomainError(f"domain {domain} is a public suffix")
    return domain


class CookieStore:
    """
    Domain/path indexed cookie jar owned by one account.

    Thread-safe; all mutation happens under an internal lock.
    """

    def __init__(self):
        self._jar: Dict[str, dict] = {}
        self._lock = threading.RLock()

    def add(self, cookie: Cookie, url: str) -> bool:
        """
        Store a cookie received from a response to ``url``.

        Cookies with an unacceptable domain are dropped with a warning.
        Expired cookies remove the stored cookie with the same name,
        domain and path instead of being stored.

        Args:
            cookie: The cookie to store.
            url: The URL of the response that carried it.

        Returns:
            True if the store changed, False if the cookie was rejected.

        Raises:
            ValueError: If the URL has no host.
        """
        _, host, _ = _request_parts(url)
        try:
            domain = cookie_domain_for(cookie, host)
        except CookieDomainError as e:
            logger.warning(f"Rejecting cookie {cookie.name} from {host}: {e}")
            return False

        pieces = domain.split(".")
        pieces.reverse()
        if pieces[-1] != WILDCARD_BUCKET:
            pieces.append(HOST_BUCKET)

        with self._lock:
            if cookie.is_expired():
                logger.debug(f"Removing expired cookie {cookie.name} for {domain}{cookie.path}")
                self._remove(pieces, cookie.name, cookie.path)
            else:
                jar = self._jar
                for piece in pieces:
                    jar = jar.setdefault(piece, {})
                jar.setdefault(cookie.name, {})[cookie.path] = cookie
                logger.debug(f"Stored cookie {cookie.name} for {domain}{cookie.path}")
        return True

    def _remove(self, pieces: List[str], name: str, path: str) -> None:
        jar = self._jar
        for piece in pieces:
            jar = jar.get(piece)
            if jar is None:
                return
        paths = jar.get(name)
        if paths is not None:
            paths.pop(path, None)
            if not paths:
                del jar[name]

    def get(self, url: str) -> List[Cookie]:
        """
        Get the cookies to send with a request to ``url``.

        Args:
            url: The request URL.

        Returns:
            One cookie per name: the longest matching path wins within a
            bucket, and more specific domains override less specific ones,
            with host-only cookies applied last.

        Raises:
            ValueError: If the URL has no host.
        """
        scheme, host, path = _request_parts(url)
        secure_ok = scheme in ("https", "wss")
        now = time.time()
        results: Dict[str, Cookie] = {}

        def update(bucket: Dict[str, Dict[str, Cookie]]) -> None:
            for name in list(bucket):
                paths = bucket[name]
                # Longest path first, ties broken alphabetically
                for cookie_path in sorted(paths, key=lambda p: (-len(p), p)):
                    if not path_matches(path, cookie_path):
                        continue
                    cookie = paths[cookie_path]
                    if cookie.is_expired(now):
                        del paths[cookie_path]
                    elif cookie.secure and not secure_ok:
                        continue
                    else:
                        results[name] = cookie
                        break
                if not paths:
                    del bucket[name]

        with self._lock:
            jar = self._jar
            walked_host = True
            for piece in reversed(host.split(".")):
                if piece not in jar:
                    walked_host = False
                    break
                jar = jar[piece]
                if WILDCARD_BUCKET in jar:
                    update(jar[WILDCARD_BUCKET])
            if walked_host and HOST_BUCKET in jar:
                update(jar[HOST_BUCKET])

        return list(results.values())

    def clear(self) -> None:
        """Drop every stored cookie."""
        with self._lock:
            self._jar = {}

    def __iter__(self) -> Iterator[Cookie]:
        with self._lock:
            cookies = list(self._walk(self._jar))
        return iter(cookies)

    def _walk(self, jar: dict) -> Iterator[Cookie]:
        for key, child in jar.items():
            if key in (WILDCARD_BUCKET, HOST_BUCKET):
                for paths in child.values():
                    yield from paths.values()
            else:
                yield from self._walk(child)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __repr__(self) -> str:
        names = ", ".join(sorted(cookie.name for cookie in self))
        return f"<CookieStore: {names}>"
