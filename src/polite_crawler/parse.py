from __future__ import annotations

import logging
import re
import warnings
from dataclasses import dataclass

from bs4 import BeautifulSoup, UnicodeDammit, XMLParsedAsHTMLWarning

from .config import CrawlConfig
from .content import ContentKind, classify
from .errors import ParseError
from .page import BinaryContent, HtmlContent, Page, TextContent, WorkItem
from .urls import TldList, canonicalize_url

logger = logging.getLogger(__name__)

# Feeds are parsed with html.parser too.
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

_REFRESH_URL_RE = re.compile(r"url\s*=\s*['\"]?([^'\"]+)", re.IGNORECASE)

_SKIPPED_HREF_MARKERS = ("javascript:", "mailto:", "@")


@dataclass
class ExtractedLink:
    href: str
    anchor: str = ""


def _attr_text(val: object) -> str:
    if isinstance(val, list):
        if not val:
            return ""
        return str(val[0])
    return str(val or "")


def _html_to_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text("\n")
    lines = [ln.strip() for ln in text.splitlines()]
    return "\n".join(ln for ln in lines if ln)


def extract_links(soup: BeautifulSoup) -> tuple[list[ExtractedLink], str | None]:
    """Collect candidate hrefs and the ``<base href>`` override, in document order.

    Rules:
    - ``a[href]`` links carry their anchor text; ``link``, frames and embeds
      carry none.
    - ``<meta http-equiv="refresh">`` contributes its ``url=`` target and
      ``<meta http-equiv="location">`` its content.
    """

    base_href = None
    base = soup.find("base")
    if base is not None:
        base_href = _attr_text(base.get("href")).strip() or None

    links: list[ExtractedLink] = []
    for tag in soup.find_all(["a", "link", "iframe", "frame", "embed", "meta"]):
        name = tag.name
        if name == "a":
            href = _attr_text(tag.get("href"))
            if href:
                links.append(ExtractedLink(href, tag.get_text(" ", strip=True)))
        elif name == "link":
            href = _attr_text(tag.get("href"))
            if href:
                links.append(ExtractedLink(href))
        elif name in {"iframe", "frame", "embed"}:
            src = _attr_text(tag.get("src"))
            if src:
                links.append(ExtractedLink(src))
        else:
            equiv = _attr_text(tag.get("http-equiv")).strip().lower()
            content = _attr_text(tag.get("content")).strip()
            if not content:
                continue
            if equiv == "refresh":
                m = _REFRESH_URL_RE.search(content)
                if m:
                    links.append(ExtractedLink(m.group(1).strip()))
            elif equiv == "location":
                links.append(ExtractedLink(content))
    return links, base_href


class HtmlParser:
    def __init__(self, config: CrawlConfig, tld_list: TldList) -> None:
        self.config = config
        self.tld_list = tld_list

    def parse(self, page: Page, context_url: str) -> HtmlContent:
        dammit = UnicodeDammit(
            page.content_data,
            [page.content_charset] if page.content_charset else [],
        )
        html = dammit.unicode_markup
        if html is None:
            raise ParseError(f"Could not decode content of {context_url}")
        if dammit.original_encoding:
            page.content_charset = dammit.original_encoding

        soup = BeautifulSoup(html, "html.parser")
        if soup.find(True) is None:
            raise ParseError(f"No markup found in {context_url}")

        title = ""
        if soup.title and soup.title.get_text(strip=True):
            title = soup.title.get_text(" ", strip=True)

        links, base_href = extract_links(soup)
        if base_href:
            context_url = canonicalize_url(base_href, context_url) or context_url

        outgoing: list[WorkItem] = []
        limit = self.config.max_outgoing_links_per_page
        for link in links:
            if 0 <= limit <= len(outgoing):
                break
            href = link.href.strip()
            if not href:
                continue
            lowered = href.lower()
            if any(marker in lowered for marker in _SKIPPED_HREF_MARKERS):
                continue
            url = canonicalize_url(href, context_url)
            if url is None:
                continue
            outgoing.append(WorkItem.create(url, self.tld_list, anchor=link.anchor))

        return HtmlContent(
            text=_html_to_text(soup),
            html=html,
            title=title,
            outgoing_urls=outgoing,
        )


class TextParser:
    def parse(self, page: Page, context_url: str) -> TextContent:
        encoding = page.content_charset or "utf-8"
        try:
            text = page.content_data.decode(encoding, errors="replace")
        except LookupError as e:
            raise ParseError(f"Unknown charset {encoding} for {context_url}") from e
        return TextContent(text=text)


class Parser:
    """Turns fetched bytes into ``page.parse_data`` by declared content type."""

    def __init__(self, config: CrawlConfig, tld_list: TldList | None = None) -> None:
        self.config = config
        tld_list = tld_list if tld_list is not None else config.tld_list
        self.html_parser = HtmlParser(config, tld_list)
        self.text_parser = TextParser()

    def parse(self, page: Page, context_url: str) -> bool:
        kind = classify(page.content_type, page.content_data)
        try:
            if kind is ContentKind.BINARY:
                if not self.config.include_binary_content:
                    logger.debug("Binary content not enabled for: %s", context_url)
                    return False
                page.parse_data = BinaryContent()
            elif kind is ContentKind.TEXT:
                page.parse_data = self.text_parser.parse(page, context_url)
            else:
                page.parse_data = self.html_parser.parse(page, context_url)
        except ParseError as e:
            logger.warning("Parsing failed for %s: %s", context_url, e)
            return False
        return True
