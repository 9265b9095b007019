from __future__ import annotations

import logging
import struct
import threading
from collections import Counter
from typing import Iterable

from .errors import StorageError
from .page import WorkItem
from .store import OrderedStore

logger = logging.getLogger(__name__)

SCHEDULED_PAGES = "scheduled_pages"
PROCESSED_PAGES = "processed_pages"

MAX_KEY_DEPTH = 127
MAX_KEY_PRIORITY = 255

# Seconds a taker waits before reading the queue again after a storage error.
STORAGE_RETRY_DELAY_S = 0.5

_KEY = struct.Struct(">BBI")


def frontier_key(item: WorkItem) -> bytes:
    """6-byte dequeue key: priority, clamped depth, big-endian docid.

    Ascending unsigned-byte order of these keys is the dequeue order:
    lower priority value first, then shallower depth, then older docid.
    """

    priority = min(max(int(item.priority), 0), MAX_KEY_PRIORITY)
    depth = min(max(int(item.depth), 0), MAX_KEY_DEPTH)
    return _KEY.pack(priority, depth, item.docid & 0xFFFFFFFF)


def decode_frontier_key(key: bytes) -> tuple[int, int, int]:
    return _KEY.unpack(key)


class CrawlStatistics:
    """In-memory counters; never persisted across runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def as_dict(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)


class PendingQueue:
    """Admitted-but-unfetched work items keyed by ``frontier_key``."""

    def __init__(self, store: OrderedStore) -> None:
        self._store = store

    def put(self, item: WorkItem) -> None:
        self._store.put(frontier_key(item), item.to_bytes())

    def pop_first(self, n: int) -> list[WorkItem]:
        """Remove and return up to ``n`` items in key order.

        An entry is only returned once its delete succeeded. If a delete fails
        after some entries were removed, those are returned and the rest stay
        queued; if the first delete fails the error propagates.
        """
        items: list[WorkItem] = []
        removed = 0
        for key, value in self._store.first(n):
            try:
                self._store.delete(key)
            except StorageError as e:
                if not removed:
                    raise
                logger.error("Could not remove a taken entry: %s", e)
                break
            removed += 1
            if value:
                items.append(WorkItem.from_bytes(value))
        return items

    def __len__(self) -> int:
        return self._store.count()

    def sync(self) -> None:
        self._store.sync()

    def close(self) -> None:
        self._store.close()


class CrawlFrontier:
    """Durable priority queue of pending work plus the crawl's finished flag."""

    def __init__(
        self,
        queue: PendingQueue,
        *,
        max_pages_to_fetch: int = -1,
        statistics: CrawlStatistics | None = None,
    ) -> None:
        self._queue = queue
        self._max_pages = max_pages_to_fetch
        self.statistics = statistics or CrawlStatistics()
        self._cond = threading.Condition(threading.RLock())
        self._finished = False
        self._scheduled = 0

        resumed = self.queue_length()
        if resumed > 0:
            logger.info("Resumed frontier with %d pending urls", resumed)
            self._scheduled = resumed

    @property
    def scheduled_count(self) -> int:
        with self._cond:
            return self._scheduled

    @property
    def processed_count(self) -> int:
        return self.statistics.get(PROCESSED_PAGES)

    def _at_cap(self, pending: int = 0) -> bool:
        return self._max_pages >= 0 and self._scheduled + pending >= self._max_pages

    def schedule(self, item: WorkItem) -> bool:
        """Admit one item; a no-op once ``max_pages_to_fetch`` is reached."""
        with self._cond:
            if self._at_cap():
                return False
            try:
                self._queue.put(item)
            except StorageError as e:
                logger.error("Error while putting %s in the work queue: %s", item, e)
                return False
            self._scheduled += 1
            self.statistics.increment(SCHEDULED_PAGES)
            self._cond.notify_all()
            return True

    def schedule_batch(self, items: Iterable[WorkItem]) -> int:
        """Admit items in order until the page cap is hit; returns admitted."""
        admitted = 0
        with self._cond:
            for item in items:
                if self._at_cap(admitted):
                    break
                try:
                    self._queue.put(item)
                except StorageError as e:
                    logger.error(
                        "Error while putting %s in the work queue: %s", item, e
                    )
                    continue
                admitted += 1

            if admitted:
                self._scheduled += admitted
                self.statistics.increment(SCHEDULED_PAGES, admitted)
            self._cond.notify_all()
        return admitted

    def take(self, max_items: int) -> list[WorkItem]:
        """Remove and return up to ``max_items`` entries in key order.

        Blocks while the frontier is empty; returns an empty list only once
        the frontier is finished. Taken entries are deleted immediately.
        After a storage error the read is retried every
        ``STORAGE_RETRY_DELAY_S`` seconds instead of waiting for a schedule.
        """

        with self._cond:
            while True:
                if self._finished:
                    return []
                try:
                    items = self._queue.pop_first(max_items)
                except StorageError as e:
                    logger.error("Error while getting next urls: %s", e)
                    self._cond.wait(timeout=STORAGE_RETRY_DELAY_S)
                    continue
                if items:
                    return items
                self._cond.wait()

    def mark_processed(self, item: WorkItem) -> None:
        self.statistics.increment(PROCESSED_PAGES)

    def queue_length(self) -> int:
        try:
            return len(self._queue)
        except StorageError as e:
            logger.error("Could not read crawl queue length: %s", e)
            return -1

    def is_finished(self) -> bool:
        with self._cond:
            return self._finished

    def finish(self) -> None:
        with self._cond:
            self._finished = True
            self._cond.notify_all()

    def sync(self) -> None:
        try:
            self._queue.sync()
        except StorageError as e:
            logger.error("Could not sync frontier: %s", e)

    def close(self) -> None:
        self.sync()
        self._queue.close()
