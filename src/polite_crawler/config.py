from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .urls import TldList

DEFAULT_USER_AGENT = "polite-crawler/0.1 (+https://github.com/polite-crawler)"

MAX_CRAWL_DEPTH = 32767


@dataclass
class RobotsConfig:
    enabled: bool = True
    user_agent_name: str = "polite-crawler"
    # Maximum number of hosts whose robots.txt directives are cached.
    cache_size: int = 500


@dataclass
class CrawlConfig:
    crawl_storage_folder: Path | None = None

    max_depth_of_crawling: int = -1
    max_pages_to_fetch: int = -1

    user_agent: str = DEFAULT_USER_AGENT
    politeness_delay_ms: int = 200

    include_https_pages: bool = True
    include_binary_content: bool = False

    max_connections_per_host: int = 100
    max_total_connections: int = 100

    socket_timeout_ms: int = 20000
    connection_timeout_ms: int = 30000

    max_outgoing_links_per_page: int = 5000
    max_download_size_bytes: int = 1048576

    follow_redirects: bool = True

    proxy_host: str | None = None
    proxy_port: int = 80
    proxy_username: str | None = None
    proxy_password: str | None = None

    tld_list_path: Path | None = None

    # Keep the frontier and id registry from a previous run instead of
    # wiping the storage folder.
    resumable: bool = False

    monitor_interval_s: float = 5.0

    tld_list: TldList = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.crawl_storage_folder is not None:
            self.crawl_storage_folder = Path(self.crawl_storage_folder)
        self.tld_list = TldList.from_file(self.tld_list_path)

    def validate(self) -> None:
        if self.crawl_storage_folder is None:
            raise ConfigError("Crawl storage folder is not set in the CrawlConfig.")
        if self.politeness_delay_ms < 0:
            raise ConfigError(
                f"Invalid value for politeness delay: {self.politeness_delay_ms}"
            )
        if self.max_depth_of_crawling < -1:
            raise ConfigError(
                "Maximum crawl depth should be either a positive number "
                "or -1 for unlimited depth."
            )
        if self.max_depth_of_crawling > MAX_CRAWL_DEPTH:
            raise ConfigError(f"Maximum value for crawl depth is {MAX_CRAWL_DEPTH}")
        if self.monitor_interval_s <= 0:
            raise ConfigError(
                f"Invalid value for monitor interval: {self.monitor_interval_s}"
            )

    @property
    def politeness_delay_s(self) -> float:
        return self.politeness_delay_ms / 1000.0

    @property
    def timeouts_s(self) -> tuple[float, float]:
        """(connect, read) timeouts in seconds, as ``requests`` expects."""
        return (self.connection_timeout_ms / 1000.0, self.socket_timeout_ms / 1000.0)

    def summary(self) -> dict[str, Any]:
        return {
            "crawl_storage_folder": str(self.crawl_storage_folder),
            "max_depth_of_crawling": self.max_depth_of_crawling,
            "max_pages_to_fetch": self.max_pages_to_fetch,
            "user_agent": self.user_agent,
            "politeness_delay_ms": self.politeness_delay_ms,
            "include_https_pages": self.include_https_pages,
            "include_binary_content": self.include_binary_content,
            "max_connections_per_host": self.max_connections_per_host,
            "max_total_connections": self.max_total_connections,
            "socket_timeout_ms": self.socket_timeout_ms,
            "connection_timeout_ms": self.connection_timeout_ms,
            "max_outgoing_links_per_page": self.max_outgoing_links_per_page,
            "max_download_size_bytes": self.max_download_size_bytes,
            "follow_redirects": self.follow_redirects,
            "proxy_host": self.proxy_host,
            "proxy_port": self.proxy_port,
            "proxy_username": self.proxy_username,
            "proxy_password": "***" if self.proxy_password else None,
            "tld_suffixes": len(self.tld_list),
            "resumable": self.resumable,
        }
