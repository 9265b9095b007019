from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from http import HTTPStatus
from urllib.parse import quote, urlsplit

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from .config import CrawlConfig
from .page import Page, WorkItem
from .urls import canonicalize_url

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class FetchStatus(IntEnum):
    """HTTP status codes the engine branches on, plus its own failure codes."""

    OK = 200
    MOVED_PERMANENTLY = 301
    MOVED_TEMPORARILY = 302
    NOT_FOUND = 404
    PAGE_TOO_BIG = 1001
    FATAL_TRANSPORT_ERROR = 1005
    UNKNOWN_ERROR = 1006


_CUSTOM_DESCRIPTIONS = {
    FetchStatus.PAGE_TOO_BIG: "Page size was too big",
    FetchStatus.FATAL_TRANSPORT_ERROR: "Fatal transport error",
    FetchStatus.UNKNOWN_ERROR: "Unknown error",
}


def status_description(status_code: int) -> str:
    try:
        return _CUSTOM_DESCRIPTIONS[FetchStatus(status_code)]
    except (KeyError, ValueError):
        pass
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return f"Status {status_code}"


class PageTooBig(Exception):
    pass


@dataclass
class FetchResult:
    url: str
    status_code: int = FetchStatus.UNKNOWN_ERROR
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    fetched_url: str | None = None
    moved_to_url: str | None = None
    response: requests.Response | None = field(default=None, repr=False)
    max_download_size: int = -1
    _consumed: bool = field(default=False, repr=False)

    @property
    def url_changed(self) -> bool:
        """True when a 200 was served from a different URL than requested."""
        return self.fetched_url is not None and self.fetched_url != self.url

    def _read_body(self, response: requests.Response) -> bytes:
        chunks: list[bytes] = []
        size = 0
        # iter_content lets urllib3 undo Content-Encoding: gzip as it reads.
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            size += len(chunk)
            if 0 <= self.max_download_size < size:
                raise PageTooBig(f"body exceeds {self.max_download_size} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    def fetch_content(self, page: Page) -> bool:
        """Load the body into ``page``; only valid after a passing header."""
        if self.response is None or self.status_code != FetchStatus.OK:
            return False
        try:
            page.content_data = self._read_body(self.response)
        except (requests.RequestException, OSError, PageTooBig) as e:
            logger.info("Exception while fetching content for: %s [%s]", page.url, e)
            return False
        finally:
            self._consumed = True
            self.response.close()

        content_type = self.headers.get("Content-Type")
        page.content_type = content_type
        page.content_encoding = self.headers.get("Content-Encoding")
        page.content_charset = None
        if content_type and "charset" in content_type.lower():
            page.content_charset = get_encoding_from_headers(
                {"content-type": content_type}
            )
        page.response_headers = dict(self.headers)
        return True

    def discard_content_if_not_consumed(self) -> None:
        if self.response is None or self._consumed:
            return
        self._consumed = True
        self.response.close()


def _proxy_url(config: CrawlConfig) -> str | None:
    if not config.proxy_host:
        return None
    auth = ""
    if config.proxy_username:
        auth = quote(config.proxy_username, safe="")
        if config.proxy_password:
            auth += ":" + quote(config.proxy_password, safe="")
        auth += "@"
    return f"http://{auth}{config.proxy_host}:{config.proxy_port}"


def build_session(config: CrawlConfig) -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=max(1, config.max_total_connections),
        pool_maxsize=max(1, config.max_connections_per_host),
        max_retries=0,
    )
    session.mount("http://", adapter)
    if config.include_https_pages:
        session.mount("https://", adapter)
    session.headers.update(
        {"User-Agent": config.user_agent, "Accept-Encoding": "gzip"}
    )
    proxy = _proxy_url(config)
    if proxy is not None:
        session.proxies = {"http": proxy, "https": proxy}
    return session


class PoliteFetcher:
    """Shared page fetcher with a global politeness gap.

    One ``last_fetch_time`` guarded by one lock is shared by every worker, so
    the politeness delay limits the aggregate request rate, not a per-host
    rate.
    """

    def __init__(
        self,
        config: CrawlConfig,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.session = session if session is not None else build_session(config)
        self._mutex = threading.Lock()
        self._last_fetch_time: float | None = None
        self._closed = False

    def _wait_for_fetch_start(self) -> None:
        with self._mutex:
            delay = self.config.politeness_delay_s
            if self._last_fetch_time is not None:
                elapsed = time.monotonic() - self._last_fetch_time
                if elapsed < delay:
                    time.sleep(delay - elapsed)
            self._last_fetch_time = time.monotonic()

    def _check_header(
        self,
        result: FetchResult,
        response: requests.Response,
        url: str,
    ) -> bool:
        status = int(response.status_code)
        result.status_code = status
        if status != FetchStatus.OK:
            if status in {
                FetchStatus.MOVED_PERMANENTLY,
                FetchStatus.MOVED_TEMPORARILY,
            }:
                location = response.headers.get("Location")
                if location:
                    result.moved_to_url = canonicalize_url(location, url)
            if status != FetchStatus.NOT_FOUND:
                logger.info(
                    "Failed: %s %s, while fetching %s",
                    status,
                    response.reason or status_description(status),
                    url,
                )
            return False

        result.fetched_url = url
        effective = str(response.url or url)
        if effective != url:
            canonical = canonicalize_url(effective)
            if canonical is not None and canonical != url:
                result.fetched_url = canonical
        return True

    def _check_body(self, result: FetchResult, response: requests.Response) -> bool:
        size = -1
        length = response.headers.get("Content-Length")
        if length is not None:
            try:
                size = int(length)
            except ValueError:
                size = -1

        if size > self.config.max_download_size_bytes:
            result.status_code = FetchStatus.PAGE_TOO_BIG
            return False
        result.status_code = FetchStatus.OK
        return True

    def fetch_header(self, item: WorkItem) -> FetchResult:
        url = item.url
        result = FetchResult(
            url=url, max_download_size=self.config.max_download_size_bytes
        )

        scheme = urlsplit(url).scheme.lower()
        if scheme == "https" and not self.config.include_https_pages:
            logger.debug("Skipping https url (https disabled): %s", url)
            return result

        self._wait_for_fetch_start()
        try:
            response = self.session.get(
                url,
                stream=True,
                allow_redirects=False,
                timeout=self.config.timeouts_s,
            )
        except requests.RequestException as e:
            logger.error(
                "Fatal transport error: %s while fetching %s (link found in doc #%s)",
                e,
                url,
                item.parent_docid,
            )
            result.status_code = FetchStatus.FATAL_TRANSPORT_ERROR
            return result
        except (ValueError, OSError) as e:
            logger.error("%s while fetching %s", e, url)
            return result

        result.response = response
        result.headers = CaseInsensitiveDict(
            {k: str(v) for k, v in response.headers.items()}
        )

        if not (
            self._check_header(result, response, url)
            and self._check_body(result, response)
        ):
            result.discard_content_if_not_consumed()
        return result

    def shutdown(self) -> None:
        with self._mutex:
            if self._closed:
                return
            self._closed = True
        self.session.close()
