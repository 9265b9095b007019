from __future__ import annotations

from enum import Enum


class ContentKind(str, Enum):
    HTML = "html"
    XML = "xml"
    TEXT = "text"
    BINARY = "binary"


_BINARY_FAMILIES = ("image", "audio", "video", "application")

_MARKUP_APPLICATION_TYPES = {
    "application/xhtml+xml",
    "application/xml",
    "application/rss+xml",
    "application/atom+xml",
    "application/rdf+xml",
}


def _mime(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_plain_text(content_type: str | None) -> bool:
    return "text/plain" in (content_type or "").lower()


def looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip()
    return head.startswith(b"<") and (
        b"<html" in head.lower()
        or b"<!doctype" in head.lower()
        or b"<head" in head.lower()
    )


def classify(content_type: str | None, body: bytes = b"") -> ContentKind:
    """Classify a response conservatively from its declared content type.

    Rules:
    - Markup application types (xhtml, rss, atom...) are XML, not binary.
    - image/audio/video/application types are BINARY.
    - text/plain is TEXT unless the body is obviously an HTML document.
    - Anything else, including a missing type, is treated as HTML.
    """

    mime = _mime(content_type)
    if mime in _MARKUP_APPLICATION_TYPES or mime.endswith("+xml"):
        return ContentKind.XML
    if mime in {"text/xml"}:
        return ContentKind.XML
    if any(mime.startswith(family + "/") for family in _BINARY_FAMILIES):
        return ContentKind.BINARY
    if mime == "text/plain":
        if looks_like_html(body):
            return ContentKind.HTML
        return ContentKind.TEXT
    return ContentKind.HTML
