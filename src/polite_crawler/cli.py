from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from tqdm import tqdm

from .config import DEFAULT_USER_AGENT, CrawlConfig, RobotsConfig
from .controller import CrawlController
from .errors import ConfigError
from .export import ExportVisitor
from .http_client import PoliteFetcher
from .manifest import ManifestWriter
from .robots import RobotsDirectiveCache
from .urls import canonicalize_url
from .visitor import Visitor
from .visitors import FeedFinderVisitor, SameSiteVisitor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def _add_common_crawl_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--seed",
        action="append",
        required=True,
        help="Repeatable; e.g. --seed http://example.com/",
    )
    p.add_argument("--storage", type=Path, required=True)
    p.add_argument("--workers", type=int, default=1)
    p.add_argument("--max-depth", type=int, default=-1)
    p.add_argument("--max-pages", type=int, default=-1)
    p.add_argument("--delay-ms", type=int, default=200)
    p.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    p.add_argument("--max-download-size", type=int, default=1048576)
    p.add_argument("--no-redirects", action="store_true")
    p.add_argument("--include-binary", action="store_true")
    p.add_argument("--no-https", action="store_true")
    p.add_argument("--no-robots", action="store_true")
    p.add_argument("--tld-list", type=Path, default=None)
    p.add_argument(
        "--monitor-interval",
        type=float,
        default=5.0,
        help="Seconds between completion checks",
    )
    p.add_argument(
        "--resume",
        action="store_true",
        help="Keep the frontier and seen urls of a previous run in --storage",
    )
    p.add_argument("-v", "--verbose", action="store_true")
    p.add_argument("-q", "--quiet", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="polite-crawler")
    sub = parser.add_subparsers(dest="cmd", required=True)

    crawl_p = sub.add_parser(
        "crawl",
        help="Crawl from the seeds, staying under the first seed's URL",
    )
    _add_common_crawl_args(crawl_p)
    crawl_p.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Write visited pages as Markdown plus manifest.jsonl here",
    )

    feeds_p = sub.add_parser(
        "feeds",
        help="Crawl a site preferring feed-looking links and list live RSS/Atom feeds",
    )
    _add_common_crawl_args(feeds_p)
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )


def config_from_args(args: argparse.Namespace) -> CrawlConfig:
    return CrawlConfig(
        crawl_storage_folder=args.storage,
        max_depth_of_crawling=int(args.max_depth),
        max_pages_to_fetch=int(args.max_pages),
        user_agent=args.user_agent,
        politeness_delay_ms=int(args.delay_ms),
        include_https_pages=not bool(args.no_https),
        include_binary_content=bool(args.include_binary),
        max_download_size_bytes=int(args.max_download_size),
        follow_redirects=not bool(args.no_redirects),
        tld_list_path=args.tld_list,
        resumable=bool(args.resume),
        monitor_interval_s=float(args.monitor_interval),
    )


def _run(
    controller: CrawlController,
    visitors: list[Visitor],
    seeds: list[str],
) -> int:
    controller.start(visitors, seeds, blocking=False)
    try:
        controller.wait_until_finish()
    except KeyboardInterrupt:
        print("Interrupted; finishing in-flight pages...", file=sys.stderr)
        controller.shutdown()
        controller.wait_until_finish()
        return EXIT_INTERRUPTED
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    if args.workers < 1:
        print("--workers must be at least 1", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    base_url = canonicalize_url(args.seed[0])
    if base_url is None:
        print(f"Invalid seed URL: {args.seed[0]}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        config = config_from_args(args)
        fetcher = PoliteFetcher(config)
        robots = RobotsDirectiveCache(
            RobotsConfig(
                enabled=not bool(args.no_robots),
                user_agent_name=config.user_agent.split("/", 1)[0],
            ),
            fetcher,
        )
        controller = CrawlController(config, fetcher, robots)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    logger.info("Crawl config: %s", config.summary())

    if args.cmd == "crawl":
        if args.out is None:
            visitors: list[Visitor] = [
                SameSiteVisitor(base_url) for _ in range(args.workers)
            ]
            return _run(controller, visitors, args.seed)

        manifest = ManifestWriter(args.out)
        with tqdm(desc="crawl", unit="page", disable=bool(args.quiet)) as progress:
            visitors = [
                ExportVisitor(args.out, base_url, manifest=manifest, progress=progress)
                for _ in range(args.workers)
            ]
            code = _run(controller, visitors, args.seed)
        print(f"crawl: {controller.statistics()} out={args.out}")
        return code

    if args.cmd == "feeds":
        finders = [FeedFinderVisitor(base_url) for _ in range(args.workers)]
        code = _run(controller, list(finders), args.seed)
        feeds = sorted({url for f in finders for url in f.feeds})
        stale = sorted({url for f in finders for url in f.stale_feeds})
        for url in feeds:
            print(url)
        print(f"feeds: live={len(feeds)} stale={len(stale)}", file=sys.stderr)
        return code

    return EXIT_CONFIG_ERROR
