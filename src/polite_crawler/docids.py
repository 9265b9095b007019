from __future__ import annotations

import logging
import struct
import threading

from .errors import IdConflict, StorageError
from .store import OrderedStore

logger = logging.getLogger(__name__)

_DOCID = struct.Struct(">I")


def encode_docid(docid: int) -> bytes:
    return _DOCID.pack(docid)


def decode_docid(data: bytes) -> int:
    return _DOCID.unpack(data[:4])[0]


class DocumentIdRegistry:
    """Durable canonical URL -> document id map; the crawl's dedup oracle.

    Ids are strictly increasing and never reused. Every operation runs under
    one registry-wide lock because this is the only allocator of ids.
    """

    def __init__(self, store: OrderedStore) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._last_docid = 0
        for _key, value in store.cursor():
            self._last_docid = max(self._last_docid, decode_docid(value))
        if self._last_docid:
            logger.info(
                "Resumed id registry: %d urls, last id %d",
                store.count(),
                self._last_docid,
            )

    @property
    def last_assigned_id(self) -> int:
        with self._lock:
            return self._last_docid

    def lookup(self, url: str) -> int | None:
        with self._lock:
            value = self._store.get(url.encode("utf-8"))
        if not value:
            return None
        return decode_docid(value)

    def is_seen(self, url: str) -> bool:
        return self.lookup(url) is not None

    def assign_if_absent(self, url: str) -> int:
        with self._lock:
            docid = self.lookup(url)
            if docid is not None:
                return docid

            docid = self._last_docid + 1
            self._store.put(url.encode("utf-8"), encode_docid(docid))
            self._last_docid = docid
            return docid

    def assign_new(self, url: str) -> int | None:
        """Allocate an id for an unseen ``url``; None if it already has one.

        Only the caller that gets an id back may enqueue the url.
        """
        with self._lock:
            if self.lookup(url) is not None:
                return None
            return self.assign_if_absent(url)

    def reserve(self, url: str, docid: int) -> None:
        """Record ``url`` under a caller-chosen id (pre-existing seeds)."""
        with self._lock:
            prev = self.lookup(url)
            if prev is not None and prev == docid:
                return
            if docid <= self._last_docid:
                raise IdConflict(
                    f"Requested doc id: {docid} is not larger than: {self._last_docid}"
                )
            if prev is not None:
                raise IdConflict(f"Doc id: {prev} is already assigned to URL: {url}")

            self._store.put(url.encode("utf-8"), encode_docid(docid))
            self._last_docid = docid

    def count(self) -> int:
        try:
            return self._store.count()
        except StorageError as e:
            logger.error("Could not count document ids: %s", e)
            return -1

    def sync(self) -> None:
        try:
            self._store.sync()
        except StorageError as e:
            logger.error("Could not sync id registry: %s", e)

    def close(self) -> None:
        self._store.close()
