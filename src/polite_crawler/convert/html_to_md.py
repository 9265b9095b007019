from __future__ import annotations

from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from markdownify import markdownify as md

_CONTENT_SELECTORS = (
    "main",
    "article",
    "div[role='main']",
    "#content",
    "#main",
)

_CHROME_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "form"]

# (tag, attribute) pairs whose URLs are rewritten against the page URL.
_URL_ATTRS = (("a", "href"), ("img", "src"))


def _strip_chrome(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(_CHROME_TAGS):
        tag.decompose()


def _absolutize_links(root: Tag, base_url: str) -> None:
    for tag_name, attr in _URL_ATTRS:
        for tag in root.find_all(tag_name):
            value = tag.get(attr)
            if isinstance(value, str) and value and not value.startswith("#"):
                tag[attr] = urljoin(base_url, value)


def _content_root(soup: BeautifulSoup) -> Tag:
    """The element most likely to hold the page's own text.

    Rules:
    - The first non-empty match of ``_CONTENT_SELECTORS`` wins.
    - Otherwise the ``div`` with the most text, then ``<body>``, then the
      whole document.
    """

    for selector in _CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None and node.get_text(strip=True):
            return node

    divs = soup.find_all("div")
    if divs:
        densest = max(divs, key=lambda d: len(d.get_text(" ", strip=True)))
        if densest.get_text(strip=True):
            return densest
    return soup.body or soup


def extract_title(html: str, *, fallback: str = "Untitled") -> str:
    soup = BeautifulSoup(html, "html.parser")
    for node in (soup.title, soup.find("h1")):
        if node is not None and node.get_text(strip=True):
            return node.get_text(" ", strip=True)
    return fallback


def html_to_markdown(html: str, *, source_url: str, title: str | None = None) -> str:
    """Render the main content of a crawled page as Markdown.

    Links and images point back at absolute URLs so the file stands on its
    own outside the crawl.
    """

    soup = BeautifulSoup(html, "html.parser")
    _strip_chrome(soup)
    root = _content_root(soup)
    _absolutize_links(root, source_url)

    lines = []
    if title:
        lines.append(f"# {title}\n")
    lines.append(f"Source: {source_url}\n")
    lines.append(md(str(root), heading_style="ATX").strip())
    return "\n".join(lines) + "\n"
