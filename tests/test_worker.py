from __future__ import annotations

from unittest.mock import patch

from polite_crawler.http_client import FetchStatus
from polite_crawler.page import NOT_ADMITTED_DEPTH
from polite_crawler.visitor import Visitor


def test_redirect_schedules_target_and_abandons_item(make_engine, site):
    site.redirect("http://x.test/", "http://x.test/home")
    engine = make_engine()
    seed = engine.seed("http://x.test/", anchor="start", priority=3)

    engine.worker.process_item(seed)

    assert engine.frontier.queue_length() == 1
    [target] = engine.frontier.take(10)
    assert target.url == "http://x.test/home"
    assert target.depth == 0
    assert target.anchor == "start"
    assert target.priority == 3
    assert target.docid == 2
    assert engine.visitor.visited == []
    assert engine.frontier.processed_count == 1
    assert ("http://x.test/", 301) in engine.visitor.statuses


def test_redirect_to_seen_url_is_dropped(make_engine, site):
    site.redirect("http://x.test/", "/home")
    engine = make_engine()
    engine.registry.assign_if_absent("http://x.test/home")
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert engine.frontier.queue_length() == 0


def test_redirects_not_followed_when_disabled(make_engine, site):
    site.redirect("http://x.test/", "/home")
    engine = make_engine(follow_redirects=False)
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert engine.frontier.queue_length() == 0
    assert not engine.registry.is_seen("http://x.test/home")


def test_known_link_is_attributed_but_not_enqueued(make_engine, site):
    site.html(
        "http://x.test/",
        '<html><body><a href="/known">k</a><a href="/new">n</a></body></html>',
    )
    engine = make_engine()
    known_id = engine.registry.assign_if_absent("http://x.test/known")
    seed = engine.seed("http://x.test/")

    engine.worker.process_item(seed)

    assert engine.frontier.scheduled_count == 1
    [queued] = engine.frontier.take(10)
    assert queued.url == "http://x.test/new"
    assert queued.depth == 1
    assert queued.parent_docid == seed.docid
    assert queued.parent_url == "http://x.test/"

    [page] = engine.visitor.visited
    known = next(i for i in page.parse_data.outgoing_urls if i.url.endswith("/known"))
    assert known.depth == NOT_ADMITTED_DEPTH
    assert known.docid == known_id
    assert known.parent_docid == seed.docid


def test_page_too_big_never_fetches_content(make_engine, site):
    site.add(
        "http://x.test/",
        body=b"<html></html>",
        headers={"Content-Type": "text/html", "Content-Length": "5000"},
    )
    engine = make_engine(max_download_size_bytes=1000)

    with patch("polite_crawler.http_client.FetchResult.fetch_content") as fetch_content:
        engine.worker.process_item(engine.seed("http://x.test/"))

    fetch_content.assert_not_called()
    assert ("http://x.test/", FetchStatus.PAGE_TOO_BIG) in engine.visitor.statuses
    assert engine.visitor.visited == []
    assert engine.frontier.processed_count == 1


def test_depth_limit_stops_link_admission(make_engine, site):
    site.html("http://x.test/", '<a href="/a">a</a><a href="/b">b</a>')
    engine = make_engine(max_depth_of_crawling=0)
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert engine.frontier.queue_length() == 0
    assert len(engine.visitor.visited) == 1
    assert not engine.registry.is_seen("http://x.test/a")


def test_should_visit_and_priority_hooks(make_engine, site):
    class OnlyA(Visitor):
        def should_visit(self, item):
            return item.url.endswith("/a")

        def priority(self, item):
            return 7

    site.html("http://x.test/", '<a href="/a">a</a><a href="/b">b</a>')
    engine = make_engine()
    engine.worker.visitor = OnlyA()
    engine.worker.process_item(engine.seed("http://x.test/"))

    [queued] = engine.frontier.take(10)
    assert queued.url == "http://x.test/a"
    assert queued.priority == 7
    assert not engine.registry.is_seen("http://x.test/b")


def test_robots_disallow_blocks_links(make_engine, site):
    site.add(
        "http://x.test/robots.txt",
        body=b"User-agent: *\nDisallow: /private\n",
        headers={"Content-Type": "text/plain"},
    )
    site.html("http://x.test/", '<a href="/private/x">p</a><a href="/open">o</a>')
    engine = make_engine(robots_enabled=True)
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert [i.url for i in engine.frontier.take(10)] == ["http://x.test/open"]


def test_duplicate_links_on_a_page_are_enqueued_once(make_engine, site):
    site.html("http://x.test/", '<a href="/a">1</a><a href="/a#top">2</a>')
    engine = make_engine()
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert engine.frontier.scheduled_count == 1


def test_content_fetch_error_is_reported(make_engine, site):
    site.add("http://x.test/", body=b"x" * 50, headers={"Content-Type": "text/html"})
    engine = make_engine(max_download_size_bytes=10)
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert engine.visitor.fetch_errors == ["http://x.test/"]
    assert engine.visitor.visited == []


def test_parse_error_is_reported(make_engine, site):
    site.add("http://x.test/", body=b"no markup", headers={"Content-Type": "text/html"})
    engine = make_engine()
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert engine.visitor.parse_errors == ["http://x.test/"]
    assert engine.frontier.processed_count == 1


def test_effective_url_rekeys_item(make_engine, site):
    site.add(
        "http://x.test/a",
        body=b"<html><body>moved</body></html>",
        headers={"Content-Type": "text/html"},
        effective_url="http://x.test/b",
    )
    engine = make_engine()
    engine.worker.process_item(engine.seed("http://x.test/a"))
    [page] = engine.visitor.visited
    assert page.url == "http://x.test/b"
    assert page.item.docid == engine.registry.lookup("http://x.test/b")


def test_effective_url_already_seen_is_abandoned(make_engine, site):
    site.add(
        "http://x.test/a",
        body=b"<html></html>",
        headers={"Content-Type": "text/html"},
        effective_url="http://x.test/b",
    )
    engine = make_engine()
    engine.registry.assign_if_absent("http://x.test/b")
    engine.worker.process_item(engine.seed("http://x.test/a"))
    assert engine.visitor.visited == []


def test_visitor_exception_does_not_escape(make_engine, site):
    class Exploding(Visitor):
        def visit(self, page):
            raise RuntimeError("visitor bug")

    site.html("http://x.test/", "<p>x</p>")
    engine = make_engine()
    engine.worker.visitor = Exploding()
    engine.worker.process_item(engine.seed("http://x.test/"))
    assert engine.frontier.processed_count == 1
