from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from bs4 import BeautifulSoup

from .page import HtmlContent, Page, WorkItem
from .urls import is_asset_intent_url
from .visitor import Visitor

logger = logging.getLogger(__name__)

FEED_ITEM_CUTOFF = timedelta(days=30)

FEED_PRIORITY = 0
DEFAULT_LINK_PRIORITY = 100

_FEED_HINTS = ("rss", "feed", "xml")
_FEED_ROOTS = {"rss", "feed", "rdf:rdf"}
_FEED_ITEMS = ["item", "entry"]
_FEED_DATES = ["pubdate", "dc:date", "updated", "published"]


class SameSiteVisitor(Visitor):
    """Stays under ``base_url`` and skips static assets."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.lower()

    def should_visit(self, item: WorkItem) -> bool:
        href = item.url.lower()
        return href.startswith(self.base_url) and not is_asset_intent_url(href)

    def visit(self, page: Page) -> None:
        data = page.parse_data
        if isinstance(data, HtmlContent):
            logger.info(
                "Visited %s (docid %s, depth %s): %d links, %d chars",
                page.url,
                page.item.docid,
                page.item.depth,
                len(data.outgoing_urls),
                len(data.text),
            )
        else:
            logger.info("Visited %s (docid %s)", page.url, page.item.docid)


def _parse_feed_date(text: str) -> datetime | None:
    text = text.strip()
    if not text:
        return None
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def feed_root(markup: str) -> str | None:
    """Root element name when ``markup`` is an RSS, Atom or RDF document."""
    soup = BeautifulSoup(markup.strip(), "html.parser")
    root = soup.find(True)
    if root is None or root.name not in _FEED_ROOTS:
        return None
    return root.name


def feed_item_dates(markup: str) -> list[datetime | None]:
    soup = BeautifulSoup(markup, "html.parser")
    dates: list[datetime | None] = []
    for entry in soup.find_all(_FEED_ITEMS):
        stamp = entry.find(_FEED_DATES)
        dates.append(_parse_feed_date(stamp.get_text()) if stamp else None)
    return dates


def is_fresh_feed(markup: str, *, now: datetime | None = None) -> bool:
    """True when at least one feed item is dated within ``FEED_ITEM_CUTOFF``."""
    now = now or datetime.now(timezone.utc)
    dates = feed_item_dates(markup)
    if not dates:
        return False
    return any(d is not None and d > now - FEED_ITEM_CUTOFF for d in dates)


class FeedFinderVisitor(SameSiteVisitor):
    """Crawls a site preferring links that look like feeds and records live feeds.

    Links whose anchor or URL mention rss/feed/xml jump the frontier queue.
    A visited page counts as a feed when its root element is ``rss``,
    ``feed`` or ``rdf:RDF`` and at least one item is dated within the last
    30 days.
    """

    def __init__(self, base_url: str) -> None:
        super().__init__(base_url)
        self._lock = threading.Lock()
        self.feeds: list[str] = []
        self.stale_feeds: list[str] = []

    def priority(self, item: WorkItem) -> int:
        anchor = (item.anchor or "").lower()
        url = item.url.lower()
        if any(hint in anchor or hint in url for hint in _FEED_HINTS):
            return FEED_PRIORITY
        return DEFAULT_LINK_PRIORITY

    def visit(self, page: Page) -> None:
        data = page.parse_data
        if not isinstance(data, HtmlContent):
            return
        if feed_root(data.html) is None:
            logger.debug("Not a feed: %s", page.url)
            return

        logger.info("Found feed: %s", page.url)
        fresh = is_fresh_feed(data.html)
        with self._lock:
            if fresh:
                self.feeds.append(page.url)
            else:
                self.stale_feeds.append(page.url)
        if not fresh:
            logger.info("No recent items on feed: %s", page.url)
