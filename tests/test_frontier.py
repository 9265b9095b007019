from __future__ import annotations

import random
import threading
from unittest.mock import patch

import pytest

from polite_crawler import frontier as frontier_module
from polite_crawler.errors import StorageError
from polite_crawler.frontier import (
    PROCESSED_PAGES,
    SCHEDULED_PAGES,
    CrawlFrontier,
    PendingQueue,
    decode_frontier_key,
    frontier_key,
)
from polite_crawler.page import WorkItem
from polite_crawler.store import OrderedStore


def _frontier(tmp_path, **kwargs) -> CrawlFrontier:
    return CrawlFrontier(PendingQueue(OrderedStore(tmp_path / "pending.db")), **kwargs)


def _item(docid: int, *, priority: int = 0, depth: int = 0) -> WorkItem:
    return WorkItem.create(
        f"http://h.test/{docid}", docid=docid, priority=priority, depth=depth
    )


def test_frontier_key_layout():
    key = frontier_key(_item(300, priority=0, depth=130))
    assert key == bytes([0x00, 0x7F, 0x00, 0x00, 0x01, 0x2C])
    assert decode_frontier_key(key) == (0, 127, 300)


def test_frontier_key_clamps_priority():
    assert frontier_key(_item(1, priority=999))[0] == 255
    assert frontier_key(_item(1, priority=-4))[0] == 0


def test_take_returns_key_order(tmp_path):
    frontier = _frontier(tmp_path)
    rng = random.Random(7)
    items = [
        _item(docid, priority=rng.choice([0, 100, 5]), depth=rng.randint(0, 140))
        for docid in rng.sample(range(1, 1000), 60)
    ]
    frontier.schedule_batch(items[:30])
    for item in items[30:]:
        frontier.schedule(item)

    taken: list[WorkItem] = []
    while frontier.queue_length() > 0:
        taken.extend(frontier.take(7))

    keys = [frontier_key(i) for i in taken]
    assert keys == sorted(keys)
    assert len(taken) == 60
    frontier.close()


def test_take_prefers_priority_then_depth_then_docid(tmp_path):
    frontier = _frontier(tmp_path)
    frontier.schedule(_item(1, priority=100, depth=0))
    frontier.schedule(_item(5, priority=0, depth=2))
    frontier.schedule(_item(3, priority=0, depth=1))
    frontier.schedule(_item(2, priority=0, depth=1))
    assert [i.docid for i in frontier.take(10)] == [2, 3, 5, 1]
    frontier.close()


def test_schedule_respects_page_cap(tmp_path):
    frontier = _frontier(tmp_path, max_pages_to_fetch=2)
    assert frontier.schedule(_item(1))
    assert frontier.schedule(_item(2))
    assert not frontier.schedule(_item(3))
    assert frontier.scheduled_count == 2
    assert frontier.queue_length() == 2
    assert frontier.statistics.get(SCHEDULED_PAGES) == 2
    frontier.close()


def test_schedule_batch_drops_items_beyond_cap(tmp_path):
    frontier = _frontier(tmp_path, max_pages_to_fetch=3)
    frontier.schedule(_item(1))
    admitted = frontier.schedule_batch([_item(2), _item(3), _item(4), _item(5)])
    assert admitted == 2
    assert frontier.scheduled_count == 3
    assert [i.docid for i in frontier.take(10)] == [1, 2, 3]
    frontier.close()


def test_take_blocks_until_schedule(tmp_path):
    frontier = _frontier(tmp_path)
    got: list[list[WorkItem]] = []
    taker = threading.Thread(target=lambda: got.append(frontier.take(5)))
    taker.start()
    taker.join(timeout=0.1)
    assert taker.is_alive()

    frontier.schedule(_item(9))
    taker.join(timeout=5)
    assert not taker.is_alive()
    assert [i.docid for i in got[0]] == [9]
    frontier.close()


def test_finish_unblocks_takers(tmp_path):
    frontier = _frontier(tmp_path)
    got: list[list[WorkItem]] = []
    takers = [
        threading.Thread(target=lambda: got.append(frontier.take(5))) for _ in range(3)
    ]
    for t in takers:
        t.start()
    frontier.finish()
    frontier.finish()
    for t in takers:
        t.join(timeout=5)
        assert not t.is_alive()
    assert got == [[], [], []]
    assert frontier.is_finished()
    frontier.close()


def test_mark_processed_counts(tmp_path):
    frontier = _frontier(tmp_path)
    frontier.mark_processed(_item(1))
    frontier.mark_processed(_item(2))
    assert frontier.processed_count == 2
    assert frontier.statistics.as_dict()[PROCESSED_PAGES] == 2
    frontier.close()


def test_pending_items_survive_reopen(tmp_path):
    frontier = _frontier(tmp_path)
    frontier.schedule_batch([_item(4, depth=1), _item(2, depth=1), _item(8)])
    frontier.take(1)
    frontier.close()

    resumed = _frontier(tmp_path)
    assert resumed.scheduled_count == 2
    assert resumed.queue_length() == 2
    assert [i.docid for i in resumed.take(10)] == [2, 4]
    resumed.close()


def test_queue_length_after_close_reports_error(tmp_path):
    frontier = _frontier(tmp_path)
    frontier.close()
    assert frontier.queue_length() == -1


@pytest.mark.parametrize("cap", [0, 1])
def test_small_caps(tmp_path, cap):
    frontier = _frontier(tmp_path, max_pages_to_fetch=cap)
    assert frontier.schedule_batch([_item(1), _item(2)]) == cap
    frontier.close()


def _failing_once(real, error: Exception):
    calls = {"n": 0}

    def _call(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise error
        return real(*args, **kwargs)

    return _call


def test_take_retries_after_storage_error(tmp_path, monkeypatch):
    monkeypatch.setattr(frontier_module, "STORAGE_RETRY_DELAY_S", 0.01)
    store = OrderedStore(tmp_path / "pending.db")
    frontier = CrawlFrontier(PendingQueue(store))
    frontier.schedule(_item(1))

    locked = StorageError("database is locked")
    with patch.object(store, "first", side_effect=_failing_once(store.first, locked)):
        got: list[list[WorkItem]] = []
        taker = threading.Thread(target=lambda: got.append(frontier.take(1)))
        taker.start()
        taker.join(timeout=5)

    assert not taker.is_alive()
    assert [i.docid for i in got[0]] == [1]
    assert frontier.queue_length() == 0
    frontier.close()


def test_failed_delete_keeps_untaken_entries(tmp_path):
    store = OrderedStore(tmp_path / "pending.db")
    queue = PendingQueue(store)
    for docid in (1, 2, 3):
        queue.put(_item(docid))

    real_delete = store.delete
    calls = {"n": 0}

    def _delete(key):
        calls["n"] += 1
        if calls["n"] == 2:
            raise StorageError("disk I/O error")
        real_delete(key)

    with patch.object(store, "delete", side_effect=_delete):
        taken = queue.pop_first(3)

    assert [i.docid for i in taken] == [1]
    assert len(queue) == 2
    assert [i.docid for i in queue.pop_first(3)] == [2, 3]
    queue.close()


def test_first_delete_failure_propagates(tmp_path):
    store = OrderedStore(tmp_path / "pending.db")
    queue = PendingQueue(store)
    queue.put(_item(1))
    with patch.object(store, "delete", side_effect=StorageError("locked")):
        with pytest.raises(StorageError):
            queue.pop_first(1)
    assert len(queue) == 1
    queue.close()
