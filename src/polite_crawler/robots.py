from __future__ import annotations

import bisect
import itertools
import logging
import threading
import time
from typing import TYPE_CHECKING, Iterable, Iterator
from urllib.parse import unquote, urlsplit

import requests

from .config import RobotsConfig
from .content import is_plain_text
from .page import Page, WorkItem

if TYPE_CHECKING:
    from .http_client import PoliteFetcher

logger = logging.getLogger(__name__)

_ACCESS_SEQ = itertools.count()


class RuleSet:
    """Sorted set of path prefixes with redundant-prefix elimination.

    A rule that already has a stored prefix is not added; adding a rule
    removes every stored rule it is a prefix of. So at most one stored rule
    can be a prefix of any given path.
    """

    def __init__(self, rules: Iterable[str] = ()) -> None:
        self._rules: list[str] = []
        for rule in rules:
            self.add(rule)

    def add(self, rule: str) -> bool:
        idx = bisect.bisect_left(self._rules, rule)
        if idx < len(self._rules) and self._rules[idx] == rule:
            return False
        if idx > 0 and rule.startswith(self._rules[idx - 1]):
            return False

        self._rules.insert(idx, rule)
        nxt = idx + 1
        while nxt < len(self._rules) and self._rules[nxt].startswith(rule):
            del self._rules[nxt]
        return True

    def prefix_of(self, path: str) -> str | None:
        """The stored rule that is a prefix of ``path``, if any."""
        idx = bisect.bisect_right(self._rules, path)
        if idx > 0 and path.startswith(self._rules[idx - 1]):
            return self._rules[idx - 1]
        return None

    def contains_prefix_of(self, path: str) -> bool:
        return self.prefix_of(path) is not None

    def __contains__(self, rule: object) -> bool:
        if not isinstance(rule, str):
            return False
        idx = bisect.bisect_left(self._rules, rule)
        return idx < len(self._rules) and self._rules[idx] == rule

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._rules))

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({self._rules!r})"


class HostDirectives:
    def __init__(self) -> None:
        self.disallows = RuleSet()
        self.allows_rules = RuleSet()
        self.last_fetch_time = time.time()
        self.last_access_time = self.last_fetch_time
        self._access_seq = next(_ACCESS_SEQ)

    def touch(self) -> None:
        self.last_access_time = time.time()
        self._access_seq = next(_ACCESS_SEQ)

    @property
    def access_order(self) -> tuple[float, int]:
        return (self.last_access_time, self._access_seq)

    def needs_refetch(self) -> bool:
        # Directives are only dropped through cache eviction.
        return False

    def allows(self, path: str) -> bool:
        """Longest matching prefix wins; allow wins a tie."""
        self.touch()
        path = path or "/"
        disallow = self.disallows.prefix_of(path)
        if disallow is None:
            return True
        allow = self.allows_rules.prefix_of(path)
        return allow is not None and len(allow) >= len(disallow)

    def add_disallow(self, path: str) -> None:
        self.disallows.add(path)

    def add_allow(self, path: str) -> None:
        self.allows_rules.add(path)


def _agent_matches(agent: str, user_agent_name: str) -> bool:
    agent = agent.strip().lower()
    name = user_agent_name.strip().lower()
    if agent == "*":
        return True
    if not agent or not name:
        return False
    return agent in name or name in agent


def _rule_path(value: str) -> str:
    value = value.strip()
    if value.endswith("$"):
        value = value[:-1]
    if value.endswith("*"):
        value = value[:-1]
    return unquote(value.strip())


def parse_robots_txt(raw_text: str, user_agent_name: str) -> HostDirectives:
    """Small robots.txt parser.

    Keeps Allow/Disallow rules from groups addressed to ``*`` or to our
    user agent. Consecutive User-agent lines share one group.
    """

    directives = HostDirectives()
    in_matching_group = False
    previous_was_agent = False

    for line in raw_text.splitlines():
        if "#" in line:
            line = line.split("#", 1)[0]
        line = line.strip()
        if not line:
            continue

        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            if not previous_was_agent:
                in_matching_group = False
            in_matching_group = in_matching_group or _agent_matches(
                value, user_agent_name
            )
            previous_was_agent = True
            continue
        previous_was_agent = False

        if not in_matching_group:
            continue

        if key == "disallow":
            path = _rule_path(value)
            if path:
                directives.add_disallow(path)
        elif key == "allow":
            path = _rule_path(value)
            if path:
                directives.add_allow(path)

    return directives


def robots_txt_url(url: str) -> str | None:
    parsed = urlsplit(url)
    host = (parsed.hostname or "").lower()
    if not host:
        return None
    default_port = {"http": 80, "https": 443}.get(parsed.scheme.lower())
    port = parsed.port
    port_part = "" if port is None or port == default_port else f":{port}"
    return f"http://{host}{port_part}/robots.txt"


class RobotsDirectiveCache:
    """Per-host robots.txt directives with least-recently-accessed eviction."""

    def __init__(self, config: RobotsConfig, fetcher: PoliteFetcher) -> None:
        self.config = config
        self.fetcher = fetcher
        self._lock = threading.Lock()
        self._cache: dict[str, HostDirectives] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def cached_hosts(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    def get(self, host: str) -> HostDirectives | None:
        with self._lock:
            return self._cache.get(host)

    def is_allowed(self, target: WorkItem | str) -> bool:
        if not self.config.enabled:
            return True
        url = target.url if isinstance(target, WorkItem) else target
        try:
            parsed = urlsplit(url)
            host = (parsed.hostname or "").lower()
            path = unquote(parsed.path) or "/"
            _ = parsed.port
        except ValueError as e:
            logger.debug("Cannot check robots for %s: %s", url, e)
            return True
        if not host:
            return True

        with self._lock:
            directives = self._cache.get(host)
            if directives is not None and directives.needs_refetch():
                del self._cache[host]
                directives = None

        if directives is None:
            directives = self._fetch_directives(url, host)
        return directives.allows(path)

    def _fetch_directives(self, url: str, host: str) -> HostDirectives:
        directives: HostDirectives | None = None
        robots_url = robots_txt_url(url)
        result = None
        try:
            if robots_url is not None:
                item = WorkItem(url=robots_url)
                result = self.fetcher.fetch_header(item)
                if result.status_code == 200:
                    page = Page(item)
                    if result.fetch_content(page) and is_plain_text(
                        page.content_type
                    ):
                        text = page.content_data.decode(
                            page.content_charset or "utf-8", errors="replace"
                        )
                        directives = parse_robots_txt(
                            text, self.config.user_agent_name
                        )
                else:
                    logger.debug(
                        "robots.txt for %s returned %s; allowing all",
                        host,
                        result.status_code,
                    )
        except (LookupError, ValueError, OSError, requests.RequestException) as e:
            logger.warning("Failed to read robots.txt for %s: %s", host, e)
        finally:
            if result is not None:
                result.discard_content_if_not_consumed()

        if directives is None:
            directives = HostDirectives()
        self._insert(host, directives)
        return directives

    def _insert(self, host: str, directives: HostDirectives) -> None:
        with self._lock:
            if self.config.cache_size <= 0:
                return
            if host not in self._cache and len(self._cache) >= self.config.cache_size:
                oldest = min(self._cache, key=lambda h: self._cache[h].access_order)
                del self._cache[oldest]
            self._cache[host] = directives
