"""
Parsed HTML documents returned by the session client.

Wraps BeautifulSoup so the login flow and the mailbox parser can query the
page with CSS selectors without caring about the transport.
"""
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag


def parse_html(markup) -> BeautifulSoup:
    """Parse markup (str or bytes) into a queryable tree."""
    return BeautifulSoup(markup, "html.parser")


def text_of(html: Optional[str]) -> str:
    """
    Reduce an HTML fragment to its plain text.

    Entities are decoded and runs of whitespace collapsed.
    """
    if html is None or html == "":
        return ""
    text = parse_html(str(html)).get_text(" ")
    return " ".join(text.split())


def same_page(url: str, other: str) -> bool:
    """
    Check whether two URLs point to the same page.

    Scheme, host and path must be identical; query string and fragment
    are ignored.
    """
    a = urlsplit(url)
    b = urlsplit(other)
    return (
        a.scheme.lower() == b.scheme.lower()
        and a.netloc.lower() == b.netloc.lower()
        and (a.path or "/") == (b.path or "/")
    )


@dataclass
class Document:
    """A fetched page after all redirects were followed."""
    url: str
    status_code: int = 200
    content_type: str = "text/html"
    content: bytes = b""
    redirects: List[str] = field(default_factory=list)  # URLs that redirected
    private: bool = True
    _soup: Optional[BeautifulSoup] = field(default=None, repr=False)

    @property
    def soup(self) -> BeautifulSoup:
        """The parsed tree, built on first access."""
        if self._soup is None:
            self._soup = parse_html(self.content)
        return self._soup

    def select_one(self, selector: str) -> Optional[Tag]:
        """Return the first element matching a CSS selector."""
        return self.soup.select_one(selector)

    def select(self, selector: str) -> List[Tag]:
        """Return all elements matching a CSS selector."""
        return self.soup.select(selector)

    def scripts(self) -> List[str]:
        """Return the text of every inline script element, in page order."""
        return [
            script.string or script.get_text()
            for script in self.soup.find_all("script")
            if not script.get("src")
        ]

    def is_page(self, url: str) -> bool:
        """Check whether this document landed on ``url`` (ignoring the query)."""
        return same_page(self.url, url)
