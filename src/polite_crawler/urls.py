from __future__ import annotations

import logging
import re
import string
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}
_PCT_ESCAPE = re.compile(r"%([0-9A-Fa-f]{2})")
_UNRESERVED = frozenset(string.ascii_letters + string.digits + "-._~")
_PATH_SAFE = "/:@!$&'()*+,;=-._~%"
_QUERY_SAFE = "/?:@!$&'()*+,;=-._~%"


def _normalize_escapes(text: str, *, safe: str) -> str:
    def _repl(m: re.Match[str]) -> str:
        ch = chr(int(m.group(1), 16))
        if ch in _UNRESERVED:
            return ch
        return "%" + m.group(1).upper()

    return quote(_PCT_ESCAPE.sub(_repl, text), safe=safe)


def _remove_dot_segments(path: str) -> str:
    segments = path.split("/")
    out: list[str] = []
    for seg in segments:
        if seg == ".":
            continue
        if seg == "..":
            if len(out) > 1:
                out.pop()
            continue
        out.append(seg)

    result = "/".join(out)
    if segments[-1] in {".", ".."}:
        result += "/"
    if not result.startswith("/"):
        result = "/" + result
    return result


def _normalize_query(query: str) -> str:
    params = [p for p in query.split("&") if p]
    params = [_normalize_escapes(p, safe=_QUERY_SAFE) for p in params]
    return "&".join(sorted(params))


def canonicalize_url(href: str, context: str | None = None) -> str | None:
    """Return the canonical form of ``href`` (resolved against ``context``).

    - Only http/https URLs survive; anything else yields None.
    - Lowercases scheme + hostname, drops default ports, userinfo and
      fragments.
    - Removes dot segments, normalizes percent-escapes, sorts query params.
    """

    href = (href or "").strip()
    if not href:
        return None

    try:
        absolute = urljoin(context, href) if context else href
        parsed = urlsplit(absolute)
        port = parsed.port
    except ValueError:
        return None

    scheme = (parsed.scheme or "").lower()
    if scheme not in _DEFAULT_PORTS:
        return None

    host = (parsed.hostname or "").lower().rstrip(".")
    if not host:
        return None
    if ":" in host:
        host = f"[{host}]"

    netloc = host
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = _remove_dot_segments(_normalize_escapes(parsed.path, safe=_PATH_SAFE))
    query = _normalize_query(parsed.query)
    return urlunsplit((scheme, netloc, path, query, ""))


def url_path(url: str) -> str:
    """Path component of ``url`` without the query string."""
    return urlsplit(url).path or "/"


@dataclass(frozen=True)
class TldList:
    """Multi-label public suffixes (``co.uk``, ``com.au``...).

    Only used to decide how many trailing host labels form the registered
    domain.
    """

    suffixes: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_file(cls, path: Path | None) -> TldList:
        if path is None:
            return cls()
        try:
            lines = Path(path).read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning("Could not read TLD list %s: %s", path, e)
            return cls()

        suffixes = set()
        for line in lines:
            line = line.strip()
            if not line or line.startswith("//"):
                continue
            suffixes.add(line.lower())
        return cls(frozenset(suffixes))

    def __contains__(self, suffix: object) -> bool:
        return suffix in self.suffixes

    def __len__(self) -> int:
        return len(self.suffixes)


def split_domain(host: str, tld_list: TldList | None = None) -> tuple[str, str]:
    """Split ``host`` into (registered domain, subdomain)."""

    host = (host or "").lower()
    parts = host.split(".")
    if len(parts) <= 2:
        return host, ""

    limit = 2
    domain = ".".join(parts[-2:])
    if tld_list is not None and domain in tld_list:
        limit = 3
        domain = ".".join(parts[-3:])
    return domain, ".".join(parts[:-limit])


_ASSET_EXTS = {
    ".css",
    ".js",
    ".mjs",
    ".map",
    ".bmp",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".tif",
    ".tiff",
    ".webp",
    ".svg",
    ".ico",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".eot",
    ".mid",
    ".mp2",
    ".mp3",
    ".mp4",
    ".m4v",
    ".wav",
    ".wma",
    ".wmv",
    ".avi",
    ".mov",
    ".mpeg",
    ".ram",
    ".rm",
    ".smil",
    ".swf",
    ".pdf",
    ".zip",
    ".rar",
    ".gz",
    ".tgz",
}


def is_asset_intent_url(url: str) -> bool:
    path = urlsplit(url).path.lower()
    return any(path.endswith(ext) for ext in _ASSET_EXTS)


def safe_filename_piece(text: str, *, max_len: int = 80) -> str:
    text = text.strip()
    text = re.sub(r"\s+", "-", text)
    text = re.sub(r"[^A-Za-z0-9._-]+", "-", text)
    text = re.sub(r"-+", "-", text).strip("-")
    if not text:
        return "untitled"
    return text[:max_len]
