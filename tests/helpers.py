from __future__ import annotations

from types import SimpleNamespace

import requests
from requests.structures import CaseInsensitiveDict
from urllib3 import HTTPHeaderDict

from mail_checker.auth.credentials import CredentialProvider
from mail_checker.network.document import Document
from mail_checker.utils.errors import CredentialNotFoundError


LOGIN_URL = "https://accounts.google.com/ServiceLoginAuth"
CHECK_URL = "https://mail.google.com/mail/"

LOGIN_PAGE = b"""
<html><body>
<form id="gaia_loginform" action="https://accounts.google.com/ServiceLoginAuth" method="post">
  <input type="hidden" name="continue" value="https://mail.google.com/mail/">
  <input type="hidden" name="GALX" value="token-123">
  <input type="email" name="Email" value="">
  <input type="password" name="Passwd">
  <input type="checkbox" name="PersistentCookie" value="yes">
  <input type="submit" value="Sign in">
</form>
</body></html>
"""


def make_response(
    url: str,
    *,
    status: int = 200,
    body: bytes = b"",
    location: str | None = None,
    set_cookies: tuple[str, ...] = (),
    content_type: str = "text/html; charset=utf-8",
) -> requests.Response:
    response = requests.Response()
    response.url = url
    response.status_code = status
    response._content = body
    headers = {"Content-Type": content_type}
    if location is not None:
        headers["Location"] = location
    raw_headers = HTTPHeaderDict(headers)
    for value in set_cookies:
        raw_headers.add("Set-Cookie", value)
    if set_cookies:
        headers["Set-Cookie"] = ", ".join(set_cookies)
    response.headers = CaseInsensitiveDict(headers)
    response.raw = SimpleNamespace(headers=raw_headers)
    return response


class FakeSession:
    """Stands in for requests.Session; answers from a routing table."""

    def __init__(self, routes: dict[tuple[str, str], object] | None = None) -> None:
        self.routes: dict[tuple[str, str], object] = dict(routes or {})
        self.calls: list[SimpleNamespace] = []
        self.closed = False

    def route(self, method: str, url: str, answer: object) -> None:
        self.routes[(method, url)] = answer

    def request(self, method, url, data=None, headers=None, allow_redirects=True, timeout=None):
        assert allow_redirects is False, "redirects must be followed by the client"
        self.calls.append(
            SimpleNamespace(method=method, url=url, data=data, headers=dict(headers or {}), timeout=timeout)
        )
        answer = self.routes.get((method, url))
        if answer is None:
            raise AssertionError(f"Unexpected request in test fake: {method} {url}")
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            answer = answer(url)
        return answer

    def close(self) -> None:
        self.closed = True


class FakeCredentials(CredentialProvider):
    def __init__(self, secrets: dict[str, str] | None = None, error: Exception | None = None) -> None:
        self.secrets = dict(secrets or {})
        self.error = error
        self.lookups: list[tuple[str, str]] = []

    def get_secret(self, username, realm="https://accounts.google.com"):
        self.lookups.append((username, realm))
        if self.error is not None:
            raise self.error
        try:
            return self.secrets[username]
        except KeyError:
            raise CredentialNotFoundError(f"No credentials stored for {username}") from None

    def list_usernames(self, realm="https://accounts.google.com"):
        return sorted(self.secrets)


def mailbox_page(globals_js: str, view_data_js: str | None = None) -> bytes:
    scripts = [f"<script>var GLOBALS={globals_js};</script>"]
    if view_data_js is not None:
        scripts.append(f"<script>var VIEW_DATA={view_data_js};</script>")
    return ("<html><head>" + "".join(scripts) + "</head><body></body></html>").encode("utf-8")


def mailbox_document(globals_js: str, view_data_js: str | None = None, url: str = CHECK_URL) -> Document:
    return Document(url=url, content=mailbox_page(globals_js, view_data_js))


def thread_row(
    thread_id: str = "t1",
    *,
    read: int = 0,
    starred: int = 0,
    people: str = "Bob",
    subject: str = "Hello",
    snippet: str = "Snippet",
    attachments: str = "",
    short_date: str = "10:15 am",
    full_date: str = "Mon, Oct 19, 2026 at 10:15 AM",
) -> list:
    return [
        thread_id, None, None, read, starred, None, None, people, None,
        subject, snippet, None, None, attachments, short_date, full_date,
    ]
