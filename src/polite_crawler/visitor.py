from __future__ import annotations

import logging

from .page import DEFAULT_PRIORITY, Page, WorkItem

logger = logging.getLogger(__name__)


class Visitor:
    """Crawl policy plugged into one worker.

    Subclass and override the hooks you need. ``should_visit`` and
    ``priority`` are consulted for every discovered link before it is
    admitted; ``visit`` receives each successfully parsed page.
    """

    def on_start(self) -> None:
        pass

    def on_before_exit(self) -> None:
        pass

    def handle_page_status_code(
        self, item: WorkItem, status_code: int, description: str
    ) -> None:
        pass

    def on_content_fetch_error(self, item: WorkItem) -> None:
        logger.warning("Can't fetch content of: %s", item.url)

    def on_parse_error(self, item: WorkItem) -> None:
        logger.warning("Parsing error in: %s", item.url)

    def priority(self, item: WorkItem) -> int:
        return DEFAULT_PRIORITY

    def should_visit(self, item: WorkItem) -> bool:
        return True

    def visit(self, page: Page) -> None:
        pass
