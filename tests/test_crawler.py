import asyncio

import aiohttp
import pytest

from conftest import SITE, make_response
from staticgen.cache import PageCache
from staticgen.crawler import ParallelCrawler, SequentialCrawler, build_crawler, is_local_host
from staticgen.errors import RunCancelled
from staticgen.models import PageUnit
from staticgen.transformer import PageTransformer


HTML = '<html><body><a href="https://example.com/about/">About</a></body></html>'


def crawl(crawler, units):
    async def collect():
        async with crawler:
            return [page async for page in crawler.crawl(units)]
    return asyncio.run(collect())


@pytest.fixture
def transformer():
    return PageTransformer(SITE, SITE)


def test_build_crawler_picks_strategy(make_settings, transformer, log, fake_http):
    sequential = build_crawler(make_settings(), transformer=transformer, progress=log, http=fake_http)
    parallel = build_crawler(
        make_settings(crawl={"parallel": True}), transformer=transformer, progress=log, http=fake_http
    )
    assert isinstance(sequential, SequentialCrawler)
    assert isinstance(parallel, ParallelCrawler)


def test_is_local_host():
    assert is_local_host("http://localhost:8080/x/")
    assert is_local_host("http://127.0.0.1/")
    assert not is_local_host(SITE)


def test_fetch_transforms_and_maps_paths(make_settings, transformer, log, fake_http):
    fake_http.add("GET", f"{SITE}about/", make_response(200, body=HTML))
    crawler = SequentialCrawler(make_settings(), transformer, log, http=fake_http)

    pages = crawl(crawler, [PageUnit(url=f"{SITE}about/", discovered_from="entity")])

    assert len(pages) == 1
    assert pages[0].path == "about/index.html"
    assert 'href="/about/"' in pages[0].body
    assert crawler.stats == {"cached": 0, "fetched": 1, "failed": 0}
    assert fake_http.closed == 1


def test_fetch_failures_are_logged_and_skipped(make_settings, transformer, log, fake_http):
    fake_http.add("GET", f"{SITE}ok/", make_response(200, body=HTML))
    fake_http.add("GET", f"{SITE}empty/", make_response(200, body=""))
    fake_http.add("GET", f"{SITE}down/", aiohttp.ClientConnectionError("refused"))
    units = [
        PageUnit(url=f"{SITE}{slug}/", discovered_from="entity")
        for slug in ("ok", "missing", "empty", "down")
    ]
    crawler = SequentialCrawler(make_settings(), transformer, log, http=fake_http)

    pages = crawl(crawler, units)

    assert [p.url for p in pages] == [f"{SITE}ok/"]
    assert crawler.stats["failed"] == 3
    assert any("HTTP 404" in e for e in log.errors)
    assert any("Empty response" in e for e in log.errors)
    assert any("ClientConnectionError" in e for e in log.errors)


def test_cache_hit_then_refetch_after_modification(make_settings, transformer, log, fake_http, source, tmp_path):
    url = f"{SITE}2024/05/first/"
    fake_http.add("GET", url, make_response(200, body=HTML))
    cache = PageCache(tmp_path / "cache", source.modified_time, clock=lambda: 1000.0)
    settings = make_settings()
    units = [PageUnit(url=url, discovered_from="entity", content_id=1)]

    first = SequentialCrawler(settings, transformer, log, cache=cache, http=fake_http)
    crawl(first, units)
    second = SequentialCrawler(settings, transformer, log, cache=cache, http=fake_http)
    pages = crawl(second, units)

    assert len(fake_http.calls_to("GET", url)) == 1
    assert pages[0].from_cache
    assert second.stats["cached"] == 1

    source.set_modified(1, 2000.0)
    third = SequentialCrawler(settings, transformer, log, cache=cache, http=fake_http)
    pages = crawl(third, units)

    assert len(fake_http.calls_to("GET", url)) == 2
    assert not pages[0].from_cache


def test_cache_ignored_when_disabled(make_settings, transformer, log, fake_http, source, tmp_path):
    url = f"{SITE}about/"
    fake_http.add("GET", url, make_response(200, body=HTML))
    cache = PageCache(tmp_path / "cache", source.modified_time)
    crawler = SequentialCrawler(
        make_settings(run={"cache_enabled": False}), transformer, log, cache=cache, http=fake_http
    )

    crawl(crawler, [PageUnit(url=url, discovered_from="entity", content_id=10)])

    assert crawler.cache is None
    assert cache.stats()["count"] == 0


def test_parallel_crawler_fetches_all_and_reports_progress(make_settings, transformer, log, fake_http):
    units = []
    for i in range(7):
        url = f"{SITE}p{i}/"
        fake_http.add("GET", url, make_response(200, body=HTML))
        units.append(PageUnit(url=url, discovered_from="entity"))
    settings = make_settings(crawl={"parallel": True, "concurrency": 3, "batch_size": 3})
    crawler = ParallelCrawler(settings, transformer, log, http=fake_http)

    pages = crawl(crawler, units)

    assert sorted(p.url for p in pages) == sorted(u.url for u in units)
    assert [p[0] for p in log.progress] == [34, 68, 80]


def test_crawl_stops_when_cancelled(make_settings, transformer, log, fake_http):
    async def stop():
        return True

    fake_http.add("GET", f"{SITE}a/", make_response(200, body=HTML))
    crawler = SequentialCrawler(make_settings(), transformer, log, http=fake_http, should_stop=stop)

    with pytest.raises(RunCancelled):
        crawl(crawler, [PageUnit(url=f"{SITE}a/", discovered_from="entity")])
    assert fake_http.calls == []
