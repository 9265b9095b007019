"""polite-crawler core library.

A polite, resumable, multi-threaded web crawler. Seeds are expanded
breadth-first (with per-link priority overrides) through a durable frontier,
while a shared fetcher enforces a global politeness gap and per-host robots
directives decide what may be fetched at all.

Crawl policy lives in ``Visitor`` objects; the engine itself only fetches,
parses, deduplicates and schedules.
"""

from __future__ import annotations

from .config import CrawlConfig, RobotsConfig
from .controller import CrawlController
from .errors import ConfigError, CrawlerError, IdConflict, StorageError
from .page import Page, WorkItem
from .visitor import Visitor

__all__ = [
    "ConfigError",
    "CrawlConfig",
    "CrawlController",
    "CrawlerError",
    "IdConflict",
    "Page",
    "RobotsConfig",
    "StorageError",
    "Visitor",
    "WorkItem",
    "__version__",
]

__version__ = "0.1.0"
