from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from .urls import TldList, split_domain, url_path

UNASSIGNED_DOCID = -1

# Depth given to a discovered link whose URL already has a document id: it is
# attributed to its parent but is not a new frontier admission.
NOT_ADMITTED_DEPTH = -1

DEFAULT_PRIORITY = 0


@dataclass
class WorkItem:
    """A crawlable URL and its place in the crawl graph."""

    url: str
    docid: int = UNASSIGNED_DOCID
    parent_docid: int = 0
    parent_url: str | None = None
    depth: int = 0
    anchor: str = ""
    priority: int = DEFAULT_PRIORITY
    domain: str = ""
    subdomain: str = ""
    path: str = "/"

    @classmethod
    def create(
        cls,
        url: str,
        tld_list: TldList | None = None,
        **fields: Any,
    ) -> WorkItem:
        item = cls(url=url, **fields)
        item.set_url(url, tld_list)
        return item

    def set_url(self, url: str, tld_list: TldList | None = None) -> None:
        self.url = url
        host = urlsplit(url).hostname or ""
        self.domain, self.subdomain = split_domain(host, tld_list)
        self.path = url_path(url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "docid": self.docid,
            "parent_docid": self.parent_docid,
            "parent_url": self.parent_url,
            "depth": self.depth,
            "anchor": self.anchor,
            "priority": self.priority,
            "domain": self.domain,
            "subdomain": self.subdomain,
            "path": self.path,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> WorkItem:
        return cls(**json.loads(data.decode("utf-8")))

    def __str__(self) -> str:
        return self.url


@dataclass
class HtmlContent:
    text: str = ""
    html: str = ""
    title: str = ""
    outgoing_urls: list[WorkItem] = field(default_factory=list)


@dataclass
class TextContent:
    text: str = ""


@dataclass
class BinaryContent:
    pass


ParseData = HtmlContent | TextContent | BinaryContent


@dataclass
class Page:
    """A fetched document: raw bytes, response metadata and parse results."""

    item: WorkItem
    content_data: bytes = b""
    content_type: str | None = None
    content_encoding: str | None = None
    content_charset: str | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    parse_data: ParseData | None = None

    @property
    def url(self) -> str:
        return self.item.url
