"""
Page crawling: fetch each enumerated URL from the live site.

Two interchangeable strategies share the fetch/cache/transform step:
:class:`SequentialCrawler` walks the URLs one by one and
:class:`ParallelCrawler` fans out in bounded batches.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import aiohttp

from .cache import PageCache
from .config import Settings
from .errors import FetchError, RunCancelled
from .infra.http import HttpClient
from .interfaces import ProgressSink
from .models import FetchedPage, PageUnit
from .transformer import PageTransformer, url_to_path


logger = logging.getLogger(__name__)

USER_AGENT = "staticgen/1.0"
LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")

# share of the run's progress bar taken by page generation
PAGE_PROGRESS_SPAN = 80

StopCheck = Callable[[], Awaitable[bool]]


def is_local_host(url: str) -> bool:
    return (urlsplit(url).hostname or "") in LOCAL_HOSTS


class BaseCrawler:
    """Shared fetch behaviour for both strategies."""

    name = "BaseCrawler"

    def __init__(
        self,
        settings: Settings,
        transformer: PageTransformer,
        progress: ProgressSink,
        cache: Optional[PageCache] = None,
        url_to_content_id: Optional[Dict[str, int]] = None,
        http: Optional[HttpClient] = None,
        should_stop: Optional[StopCheck] = None,
    ):
        self.settings = settings
        self.transformer = transformer
        self.progress = progress
        self.cache = cache if settings.run.cache_enabled else None
        self.url_to_content_id = url_to_content_id or {}
        self.http = http or HttpClient(default_headers={"User-Agent": USER_AGENT})
        self.should_stop = should_stop
        self.timeout = settings.run.timeout
        self.stats = {"cached": 0, "fetched": 0, "failed": 0}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.http.close()

    # ---------------------------------------------- #
    # Fetch
    def _request_kwargs(self, url: str) -> Dict:
        kwargs = {
            "headers": {"User-Agent": USER_AGENT},
            "timeout": self.timeout,
            "allow_redirects": True,
            "max_redirects": self.settings.crawl.max_redirects,
            "max_retries": 1,
        }
        if is_local_host(url):
            kwargs["ssl"] = False
        auth = self.settings.crawl.auth
        if auth:
            kwargs["auth"] = aiohttp.BasicAuth(auth.username, auth.password)
        return kwargs

    async def fetch(self, url: str) -> str:
        """GET one URL. Raises FetchError for anything but a non-empty 200."""
        try:
            resp = await self.http.request("GET", url, **self._request_kwargs(url))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(url, f"Request failed ({type(e).__name__}: {e})") from e

        if resp.status != 200:
            raise FetchError(url, f"HTTP {resp.status}")
        body = resp.text
        if not body:
            raise FetchError(url, "Empty response")

        logger.debug(f"Fetched {url} - {len(resp.body):,} bytes")
        return body

    async def process(self, unit: PageUnit) -> Optional[FetchedPage]:
        """Produce the staged page for ``unit``, from cache or the live site."""
        url = unit.url
        content_id = self.url_to_content_id.get(url, unit.content_id)
        path = url_to_path(url)

        if self.cache and self.cache.is_valid(url, content_id):
            body = self.cache.get(url)
            if body is not None:
                self.stats["cached"] += 1
                self.progress.log(f"Cache hit: {url}", "debug")
                return FetchedPage(url=url, path=path, body=body, from_cache=True, content_id=content_id)

        try:
            raw = await self.fetch(url)
        except FetchError as e:
            self.stats["failed"] += 1
            self.progress.log(str(e), "error")
            return None

        body, warnings = self.transformer.transform(url, raw)
        for warning in warnings:
            self.progress.log(warning, "warning")

        self.stats["fetched"] += 1
        if self.cache:
            self.cache.set(url, body, content_id)
        return FetchedPage(url=url, path=path, body=body, content_id=content_id)

    def _report(self, done: int, total: int) -> None:
        step = int(done * PAGE_PROGRESS_SPAN / max(1, total))
        self.progress.update_progress(step, 100, f"Generating pages: {done} / {total}")

    async def _check_stop(self) -> None:
        if self.should_stop and await self.should_stop():
            raise RunCancelled("Cancelled during page generation")


class SequentialCrawler(BaseCrawler):
    """Fetches one URL at a time."""

    name = "SequentialCrawler"

    async def crawl(self, units: List[PageUnit]) -> AsyncIterator[FetchedPage]:
        total = len(units)
        interval = max(1, total // 20)

        for index, unit in enumerate(units):
            if index % interval == 0 or index == total - 1:
                self._report(index + 1, total)
                await self._check_stop()

            page = await self.process(unit)
            if page is not None:
                yield page


class ParallelCrawler(BaseCrawler):
    """Fetches URLs in batches, each batch concurrently under a semaphore."""

    name = "ParallelCrawler"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.concurrency = max(1, min(10, int(self.settings.crawl.concurrency)))
        self.batch_size = max(1, int(self.settings.crawl.batch_size))
        self.timeout = max(10, self.settings.run.timeout)

    async def crawl(self, units: List[PageUnit]) -> AsyncIterator[FetchedPage]:
        total = len(units)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(unit: PageUnit) -> Optional[FetchedPage]:
            async with semaphore:
                return await self.process(unit)

        done = 0
        for start in range(0, total, self.batch_size):
            await self._check_stop()
            batch = units[start:start + self.batch_size]
            done += len(batch)
            self._report(done, total)

            results = await asyncio.gather(*(bounded(unit) for unit in batch))
            for page in results:
                if page is not None:
                    yield page


def build_crawler(settings: Settings, **kwargs) -> BaseCrawler:
    crawler_cls = ParallelCrawler if settings.crawl.parallel else SequentialCrawler
    return crawler_cls(settings, **kwargs)
