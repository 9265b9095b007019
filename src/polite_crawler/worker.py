from __future__ import annotations

import logging
import threading

from .config import CrawlConfig
from .docids import DocumentIdRegistry
from .frontier import CrawlFrontier
from .http_client import FetchResult, FetchStatus, PoliteFetcher, status_description
from .page import NOT_ADMITTED_DEPTH, HtmlContent, Page, WorkItem
from .parse import Parser
from .robots import RobotsDirectiveCache
from .visitor import Visitor

logger = logging.getLogger(__name__)

TAKE_BATCH_SIZE = 1

_REDIRECT_STATUSES = {FetchStatus.MOVED_PERMANENTLY, FetchStatus.MOVED_TEMPORARILY}


class CrawlWorker(threading.Thread):
    """One crawl thread: take work from the frontier, fetch, parse, schedule.

    Per item:
    - A 301/302 schedules the redirect target as its own work item (if
      unseen and admitted) and abandons the current item.
    - A 200 served from a different URL is re-keyed to that URL, or
      abandoned if that URL was already seen.
    - Failures are reported to the visitor and the item is dropped; nothing
      is retried.
    - Outgoing links already known get ``depth == NOT_ADMITTED_DEPTH``;
      unseen ones within the depth limit that pass ``should_visit`` and
      robots get a fresh id and go to the frontier in one batch.
    """

    def __init__(
        self,
        worker_id: int,
        *,
        visitor: Visitor,
        config: CrawlConfig,
        frontier: CrawlFrontier,
        registry: DocumentIdRegistry,
        fetcher: PoliteFetcher,
        robots: RobotsDirectiveCache,
        parser: Parser | None = None,
    ) -> None:
        super().__init__(name=f"crawler-{worker_id}", daemon=True)
        self.worker_id = worker_id
        self.visitor = visitor
        self.config = config
        self.frontier = frontier
        self.registry = registry
        self.fetcher = fetcher
        self.robots = robots
        self.parser = parser if parser is not None else Parser(config)
        self.is_waiting_for_new_urls = False

    def run(self) -> None:
        self.visitor.on_start()
        while True:
            self.is_waiting_for_new_urls = True
            items = self.frontier.take(TAKE_BATCH_SIZE)
            self.is_waiting_for_new_urls = False
            if not items:
                if self.frontier.is_finished():
                    return
                continue
            for item in items:
                if self.frontier.is_finished():
                    logger.info("Exiting because the crawl was finished")
                    return
                self.process_item(item)

    def process_item(self, item: WorkItem) -> None:
        try:
            self._process_page(item)
        except Exception:
            logger.exception("Unexpected error while processing %s", item.url)
        finally:
            self.frontier.mark_processed(item)

    def _process_page(self, item: WorkItem) -> None:
        result: FetchResult | None = None
        try:
            result = self.fetcher.fetch_header(item)
            status = result.status_code
            self.visitor.handle_page_status_code(
                item, status, status_description(status)
            )

            if status != FetchStatus.OK:
                if status in _REDIRECT_STATUSES:
                    self._handle_redirect(item, result)
                elif status == FetchStatus.PAGE_TOO_BIG:
                    logger.info(
                        "Skipping a URL: %s which was bigger (%s) than max "
                        "allowed size",
                        item.url,
                        result.headers.get("Content-Length"),
                    )
                return

            if result.url_changed and not self._adopt_fetched_url(
                item, result.fetched_url or item.url
            ):
                return

            page = Page(item)
            if not result.fetch_content(page):
                self.visitor.on_content_fetch_error(item)
                return

            if not self.parser.parse(page, item.url):
                self.visitor.on_parse_error(item)
                return

            if isinstance(page.parse_data, HtmlContent):
                self._schedule_outgoing(item, page.parse_data)

            self.visitor.visit(page)
        finally:
            if result is not None:
                result.discard_content_if_not_consumed()

    def _handle_redirect(self, item: WorkItem, result: FetchResult) -> None:
        if not self.config.follow_redirects:
            return
        moved_to = result.moved_to_url
        if moved_to is None:
            return
        if self.registry.is_seen(moved_to):
            logger.debug("Redirect page: %s is already seen", moved_to)
            return

        target = WorkItem.create(
            moved_to,
            self.config.tld_list,
            parent_docid=item.parent_docid,
            parent_url=item.parent_url,
            depth=item.depth,
            anchor=item.anchor,
            priority=item.priority,
        )
        if not (self.visitor.should_visit(target) and self.robots.is_allowed(target)):
            logger.debug("Not visiting: %s as per your visitor's policy", moved_to)
            return

        docid = self.registry.assign_new(moved_to)
        if docid is None:
            return
        target.docid = docid
        self.frontier.schedule(target)

    def _adopt_fetched_url(self, item: WorkItem, fetched_url: str) -> bool:
        docid = self.registry.assign_new(fetched_url)
        if docid is None:
            logger.debug("Redirect page: %s has already been seen", item.url)
            return False
        item.set_url(fetched_url, self.config.tld_list)
        item.docid = docid
        return True

    def _schedule_outgoing(self, item: WorkItem, content: HtmlContent) -> None:
        max_depth = self.config.max_depth_of_crawling
        batch: list[WorkItem] = []
        for link in content.outgoing_urls:
            link.parent_docid = item.docid
            link.parent_url = item.url

            known = self.registry.lookup(link.url)
            if known is not None:
                link.docid = known
                link.depth = NOT_ADMITTED_DEPTH
                continue

            link.depth = item.depth + 1
            if max_depth != -1 and item.depth >= max_depth:
                continue
            if not self.visitor.should_visit(link):
                continue
            if not self.robots.is_allowed(link):
                continue

            docid = self.registry.assign_new(link.url)
            if docid is None:
                link.depth = NOT_ADMITTED_DEPTH
                continue
            link.docid = docid
            link.priority = self.visitor.priority(link)
            batch.append(link)

        if batch:
            self.frontier.schedule_batch(batch)
