from __future__ import annotations


class CrawlerError(Exception):
    """Base class for errors raised by the crawl engine."""


class ConfigError(CrawlerError):
    """Invalid configuration or startup state; fatal for the run."""


class IdConflict(CrawlerError):
    """A document id reservation clashes with the registry's history."""


class StorageError(CrawlerError):
    """The durable ordered store failed to read or persist an entry."""


class ParseError(CrawlerError):
    """A fetched document could not be parsed."""
