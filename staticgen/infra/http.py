"""
Shared aiohttp client for crawling the site and talking to publisher APIs.

Responses are read fully and returned as ``HttpResponse``; 4xx answers are
data, not exceptions. 429 and 5xx answers and connection errors are retried
with exponential back-off and jitter, or after ``Retry-After`` when the
server sends one.
"""

from __future__ import annotations

import asyncio
import json as jsonlib
import logging
import random
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

RETRY_STATUSES: tuple[int, ...] = (429, 500, 502, 503, 504)


@dataclass
class HttpResponse:
    """Fully read response; the connection is already released."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if not self.body:
            return None
        try:
            return jsonlib.loads(self.body)
        except ValueError:
            return None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Seconds to wait for a ``Retry-After`` value given as a delay or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        return max(0.0, parsedate_to_datetime(value).timestamp() - time.time())
    except (TypeError, ValueError):
        return None


def _short_error(e: BaseException) -> str:
    text = str(e)
    return text.splitlines()[0] if text else type(e).__name__


class HttpClient:
    """One lazily opened ``aiohttp.ClientSession`` plus the retry policy.

    The session is recreated on demand after :meth:`close`, so a client can be
    shared by the crawler and the publishers of one run.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_retries: int = 5,
        backoff_base: float = 1.0,
        backoff_cap: float = 60.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.default_headers: Dict[str, str] = dict(default_headers or {})
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpClient":
        await self._open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _open(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        if retry_after is not None:
            return retry_after
        delay = min(self.backoff_base * 2 ** (attempt - 1), self.backoff_cap)
        return delay + random.uniform(0, self.backoff_base)

    # ---------------------------------------------- #
    # Requests
    async def request(
        self,
        method: str,
        url: str,
        *,
        max_retries: Optional[int] = None,
        **kwargs,
    ) -> HttpResponse:
        """Send one request, retrying transient failures.

        ``max_retries`` overrides the client default for callers that run their
        own retry policy. Connection errors propagate once attempts run out; the
        last retryable response is returned as is.
        """
        session = await self._open()
        attempts = max(1, self.max_retries if max_retries is None else max_retries)
        kwargs["headers"] = {**self.default_headers, **(kwargs.get("headers") or {})}
        if isinstance(kwargs.get("timeout"), (int, float)):
            kwargs["timeout"] = aiohttp.ClientTimeout(total=kwargs["timeout"])

        for attempt in range(1, attempts + 1):
            last = attempt == attempts
            try:
                async with session.request(method, url, **kwargs) as resp:
                    response = HttpResponse(
                        status=resp.status,
                        headers=dict(resp.headers),
                        body=await resp.read(),
                        url=str(resp.url),
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if last:
                    logger.error(f"{method} {url} failed after {attempt} attempts: {_short_error(e)}")
                    raise
                delay = self._delay(attempt)
                logger.warning(f"{method} {url} failed ({_short_error(e)}), retry {attempt}/{attempts - 1} in {delay:.1f}s")
            else:
                if response.status not in RETRY_STATUSES or last:
                    return response
                delay = self._delay(attempt, retry_after_seconds(response.header("Retry-After")))
                logger.warning(f"{method} {url} returned {response.status}, retry {attempt}/{attempts - 1} in {delay:.1f}s")
            await asyncio.sleep(delay)

        raise RuntimeError("retry loop exited without a response")

    async def get(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("DELETE", url, **kwargs)
