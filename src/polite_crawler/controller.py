from __future__ import annotations

import logging
import threading
import time
from typing import Iterable, Sequence

from .config import CrawlConfig, RobotsConfig
from .docids import DocumentIdRegistry
from .errors import ConfigError, StorageError
from .frontier import CrawlFrontier, CrawlStatistics, PendingQueue
from .http_client import PoliteFetcher
from .page import UNASSIGNED_DOCID, WorkItem
from .parse import Parser
from .robots import RobotsDirectiveCache
from .store import OrderedStore, reset_folder
from .urls import canonicalize_url
from .visitor import Visitor
from .worker import CrawlWorker

logger = logging.getLogger(__name__)


class CrawlController:
    """Owns the durable state, the worker threads and crawl termination.

    Completion is detected by a monitor thread with a two-stage debounce:
    no worker busy for two consecutive polls, then an empty queue for two
    consecutive checks. Only then is the frontier finished and everything
    closed.
    """

    def __init__(
        self,
        config: CrawlConfig,
        fetcher: PoliteFetcher | None = None,
        robots: RobotsDirectiveCache | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self.fetcher = fetcher if fetcher is not None else PoliteFetcher(config)
        self.robots = (
            robots
            if robots is not None
            else RobotsDirectiveCache(RobotsConfig(), self.fetcher)
        )

        storage = config.crawl_storage_folder
        if storage is None:
            raise ConfigError("Crawl storage folder is not set in the CrawlConfig.")
        env_home = storage / "frontier"
        try:
            if config.resumable:
                env_home.mkdir(parents=True, exist_ok=True)
            else:
                reset_folder(env_home)
        except OSError as e:
            raise ConfigError(
                f"Couldn't create the storage folder: {env_home} ({e})"
            ) from e

        try:
            self.registry = DocumentIdRegistry(OrderedStore(env_home / "docids.db"))
            self.frontier = CrawlFrontier(
                PendingQueue(OrderedStore(env_home / "pending.db")),
                max_pages_to_fetch=config.max_pages_to_fetch,
                statistics=CrawlStatistics(),
            )
        except StorageError as e:
            raise ConfigError(f"Couldn't open crawl storage in {env_home}: {e}") from e

        self.parser = Parser(config)
        self.workers: list[CrawlWorker] = []

        self._state = threading.Condition()
        self._started = False
        self._finished = False
        self._shutting_down = False
        self._monitor: threading.Thread | None = None
        self._dead_reported: set[str] = set()

    @property
    def is_finished(self) -> bool:
        with self._state:
            return self._finished

    @property
    def is_shutting_down(self) -> bool:
        with self._state:
            return self._shutting_down

    def statistics(self) -> dict[str, int]:
        return self.frontier.statistics.as_dict()

    def add_seed(self, url: str, docid: int = UNASSIGNED_DOCID) -> None:
        """Admit a seed at depth 0.

        With an explicit ``docid`` the url is reserved under that id and an
        ``IdConflict`` propagates; otherwise a seen seed is skipped.
        """

        canonical = canonicalize_url(url)
        if canonical is None:
            logger.error("Invalid seed URL: %s", url)
            return

        item = WorkItem.create(canonical, self.config.tld_list, depth=0)
        if docid > UNASSIGNED_DOCID:
            self.registry.reserve(canonical, docid)
            item.docid = docid
        else:
            new_id = self.registry.assign_new(canonical)
            if new_id is None:
                logger.debug("This URL is already seen: %s", canonical)
                return
            item.docid = new_id

        if self.robots.is_allowed(item):
            self.frontier.schedule(item)
        else:
            logger.info("Robots.txt does not allow this seed: %s", url)

    def add_seen_url(self, url: str, docid: int) -> None:
        """Mark ``url`` as already crawled under ``docid`` without fetching it."""
        canonical = canonicalize_url(url)
        if canonical is None:
            logger.error("Invalid Url: %s (can't cannonicalize it!)", url)
            return
        self.registry.reserve(canonical, docid)

    def start(
        self,
        visitors: Sequence[Visitor],
        seeds: Iterable[str] = (),
        *,
        blocking: bool = True,
    ) -> None:
        with self._state:
            if self._started:
                raise ConfigError("The crawler has already been started")
            if not visitors:
                raise ConfigError("At least one visitor is required to crawl")
            self._started = True

        for seed in seeds:
            self.add_seed(seed)

        for i, visitor in enumerate(visitors, start=1):
            worker = CrawlWorker(
                i,
                visitor=visitor,
                config=self.config,
                frontier=self.frontier,
                registry=self.registry,
                fetcher=self.fetcher,
                robots=self.robots,
                parser=self.parser,
            )
            self.workers.append(worker)
            worker.start()
            logger.info("Crawler %d started", i)

        self._monitor = threading.Thread(
            target=self._monitor_loop, name="crawl-monitor", daemon=True
        )
        self._monitor.start()

        if blocking:
            self.wait_until_finish()

    def wait_until_finish(self, timeout: float | None = None) -> bool:
        with self._state:
            return self._state.wait_for(lambda: self._finished, timeout=timeout)

    def shutdown(self) -> None:
        logger.info("Shutting down...")
        with self._state:
            self._shutting_down = True
            self._state.notify_all()
        self.frontier.finish()

    def _pause(self) -> None:
        """Sleep one monitor interval; cut short by ``shutdown()``.

        While shutting down, waits for workers to finish their current item
        instead, bounded by the same interval.
        """
        interval = self.config.monitor_interval_s
        with self._state:
            if not self._shutting_down:
                self._state.wait_for(lambda: self._shutting_down, timeout=interval)
                return
        deadline = time.monotonic() + interval
        for worker in self.workers:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))

    def _someone_is_working(self) -> bool:
        working = False
        for worker in self.workers:
            if not worker.is_alive():
                if not self.is_shutting_down and worker.name not in self._dead_reported:
                    self._dead_reported.add(worker.name)
                    logger.info("Thread %s was dead", worker.name)
            elif not worker.is_waiting_for_new_urls:
                working = True
        return working

    def _monitor_loop(self) -> None:
        interval = self.config.monitor_interval_s
        try:
            while True:
                self._pause()
                if self._someone_is_working():
                    continue

                logger.info(
                    "It looks like no thread is working, waiting for %s seconds "
                    "to make sure...",
                    interval,
                )
                self._pause()
                if self._someone_is_working():
                    continue

                if not self.is_shutting_down:
                    if self.frontier.queue_length() > 0:
                        continue
                    logger.info(
                        "No thread is working and no more URLs are in queue "
                        "waiting for another %s seconds to make sure...",
                        interval,
                    )
                    self._pause()
                    if self.frontier.queue_length() > 0:
                        continue

                logger.info("All of the crawlers are stopped. Finishing the process...")
                self.frontier.finish()
                for worker in self.workers:
                    try:
                        worker.visitor.on_before_exit()
                    except Exception:
                        logger.exception("on_before_exit failed for %s", worker.name)

                logger.info(
                    "Waiting for %s seconds before final clean up...", interval
                )
                deadline = time.monotonic() + interval
                for worker in self.workers:
                    worker.join(timeout=max(0.0, deadline - time.monotonic()))
                return
        finally:
            self._close()

    def _close(self) -> None:
        try:
            self.frontier.close()
        except StorageError as e:
            logger.error("Could not close the frontier: %s", e)
        try:
            self.registry.close()
        except StorageError as e:
            logger.error("Could not close the id registry: %s", e)
        self.fetcher.shutdown()
        with self._state:
            self._finished = True
            self._state.notify_all()
        logger.info("Crawl finished: %s", self.statistics())
