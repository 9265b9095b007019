from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from polite_crawler.config import CrawlConfig, RobotsConfig
from polite_crawler.docids import DocumentIdRegistry
from polite_crawler.frontier import CrawlFrontier, PendingQueue
from polite_crawler.http_client import PoliteFetcher
from polite_crawler.page import Page, WorkItem
from polite_crawler.robots import RobotsDirectiveCache
from polite_crawler.store import OrderedStore
from polite_crawler.visitor import Visitor
from polite_crawler.worker import CrawlWorker

HTML = "text/html; charset=utf-8"


def fake_response(
    url: str,
    *,
    status: int = 200,
    body: bytes = b"",
    headers: dict[str, str] | None = None,
    effective_url: str | None = None,
) -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.reason = "OK" if status == 200 else "Error"
    resp.url = effective_url or url
    resp.headers = CaseInsensitiveDict(headers or {})
    resp.iter_content.side_effect = lambda chunk_size=1, **_: iter([body])
    return resp


@dataclass
class FakeSite:
    """url -> canned response for a mocked ``requests.Session``."""

    pages: dict[str, dict[str, Any]] = field(default_factory=dict)
    requested: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def html(self, url: str, body: str, **headers: str) -> None:
        self.pages[url] = {
            "body": body.encode("utf-8"),
            "headers": {"Content-Type": HTML, **headers},
        }

    def redirect(self, url: str, location: str, status: int = 301) -> None:
        self.pages[url] = {"status": status, "headers": {"Location": location}}

    def add(self, url: str, **kwargs: Any) -> None:
        self.pages[url] = kwargs

    def get(self, url: str, **_: Any) -> MagicMock:
        with self._lock:
            self.requested.append(url)
        spec = self.pages.get(url)
        if spec is None:
            return fake_response(url, status=404)
        return fake_response(url, **spec)

    def session(self) -> MagicMock:
        session = MagicMock(spec=requests.Session)
        session.get.side_effect = self.get
        return session


class RecordingVisitor(Visitor):
    def __init__(self, should_visit: Any = None) -> None:
        self._lock = threading.Lock()
        self._should_visit = should_visit
        self.visited: list[Page] = []
        self.statuses: list[tuple[str, int]] = []
        self.fetch_errors: list[str] = []
        self.parse_errors: list[str] = []
        self.started = False
        self.exited = False

    def on_start(self) -> None:
        self.started = True

    def on_before_exit(self) -> None:
        self.exited = True

    def handle_page_status_code(
        self, item: WorkItem, status_code: int, description: str
    ) -> None:
        with self._lock:
            self.statuses.append((item.url, status_code))

    def on_content_fetch_error(self, item: WorkItem) -> None:
        self.fetch_errors.append(item.url)

    def on_parse_error(self, item: WorkItem) -> None:
        self.parse_errors.append(item.url)

    def should_visit(self, item: WorkItem) -> bool:
        if self._should_visit is None:
            return True
        return bool(self._should_visit(item))

    def visit(self, page: Page) -> None:
        with self._lock:
            self.visited.append(page)

    @property
    def visited_urls(self) -> set[str]:
        with self._lock:
            return {p.url for p in self.visited}


@dataclass
class Engine:
    config: CrawlConfig
    site: FakeSite
    fetcher: PoliteFetcher
    robots: RobotsDirectiveCache
    registry: DocumentIdRegistry
    frontier: CrawlFrontier
    visitor: RecordingVisitor
    worker: CrawlWorker

    def seed(self, url: str, **fields: Any) -> WorkItem:
        item = WorkItem.create(url, self.config.tld_list, **fields)
        item.docid = self.registry.assign_if_absent(url)
        return item


def make_config(storage: Path, **overrides: Any) -> CrawlConfig:
    values: dict[str, Any] = {
        "crawl_storage_folder": storage,
        "politeness_delay_ms": 0,
        "monitor_interval_s": 0.05,
    }
    values.update(overrides)
    return CrawlConfig(**values)


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def make_engine(tmp_path: Path, site: FakeSite):
    opened: list[Engine] = []

    def _make(
        *,
        robots_enabled: bool = False,
        visitor: RecordingVisitor | None = None,
        **overrides: Any,
    ) -> Engine:
        config = make_config(tmp_path, **overrides)
        fetcher = PoliteFetcher(config, session=site.session())
        robots = RobotsDirectiveCache(RobotsConfig(enabled=robots_enabled), fetcher)
        registry = DocumentIdRegistry(OrderedStore(tmp_path / "docids.db"))
        frontier = CrawlFrontier(
            PendingQueue(OrderedStore(tmp_path / "pending.db")),
            max_pages_to_fetch=config.max_pages_to_fetch,
        )
        visitor = visitor or RecordingVisitor()
        worker = CrawlWorker(
            1,
            visitor=visitor,
            config=config,
            frontier=frontier,
            registry=registry,
            fetcher=fetcher,
            robots=robots,
        )
        engine = Engine(
            config, site, fetcher, robots, registry, frontier, visitor, worker
        )
        opened.append(engine)
        return engine

    yield _make

    for engine in opened:
        engine.frontier.close()
        engine.registry.close()
