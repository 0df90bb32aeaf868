from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from http.client import HTTPException
from typing import Any, Callable
from urllib.error import HTTPError
from urllib.parse import urlsplit, urlunsplit
from urllib.request import Request, urlopen

from .errors import ClientError, FormatError, NetworkError
from .models import Feed, FetchResult
from .parser import parse_feed
from .utils import log_event, utc_now

logger = logging.getLogger("feedlibrary.fetcher")

CACHE_TTL_SECONDS = 15 * 60
DEFAULT_USER_AGENT = "feedlibrary/0.1 (Personal Library)"
ACCEPT_HEADER = "application/rss+xml, application/atom+xml, application/xml, text/xml"


@dataclass(frozen=True)
class _CacheEntry:
    feed: Feed
    fetched_at: datetime
    stored_at: float


class Fetcher:
    """Fetches feeds with a shared rate limit, linear backoff and a short-lived cache.

    One instance owns its own last-fetch time and cache. It is not thread
    safe; callers fetch sequentially.
    """

    def __init__(
        self,
        delay_seconds: float = 1.0,
        retries: int = 3,
        timeout_seconds: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        cache_ttl_seconds: float = CACHE_TTL_SECONDS,
        opener: Callable[..., Any] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.delay_seconds = delay_seconds
        self.retries = max(1, retries)
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self.cache_ttl_seconds = cache_ttl_seconds
        self._opener = opener or urlopen
        self._sleep = sleep
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._last_fetch: float | None = None

    def fetch(self, feed_url: str) -> FetchResult:
        cached = self._cache.get(feed_url)
        if cached and self._clock() - cached.stored_at < self.cache_ttl_seconds:
            log_event(logger, logging.DEBUG, "feed_fetch_cached", url=feed_url)
            return FetchResult(
                success=True, feed=cached.feed, cached=True, fetched_at=cached.fetched_at
            )

        last_error: Exception | None = None
        http_status: int | None = None
        for attempt in range(1, self.retries + 1):
            self._wait_for_rate_limit()
            try:
                http_status, body = self._request(feed_url)
                fetched_at = utc_now()
                feed = parse_feed(body, feed_url, fetched_at)
            except ClientError as exc:
                last_error = exc
                http_status = exc.status
                break
            except FormatError as exc:
                last_error = exc
                break
            except NetworkError as exc:
                last_error = exc
                http_status = exc.status
            else:
                self._cache[feed_url] = _CacheEntry(feed, fetched_at, self._clock())
                log_event(
                    logger,
                    logging.INFO,
                    "feed_fetched",
                    url=feed_url,
                    attempt=attempt,
                    items=len(feed.items),
                )
                return FetchResult(
                    success=True,
                    feed=feed,
                    cached=False,
                    fetched_at=fetched_at,
                    http_status=http_status,
                )

            log_event(
                logger,
                logging.WARNING,
                "feed_fetch_attempt_failed",
                url=feed_url,
                attempt=attempt,
                error=last_error,
            )
            if attempt < self.retries:
                self._sleep(self.delay_seconds * attempt)

        log_event(logger, logging.ERROR, "feed_fetch_failed", url=feed_url, error=last_error)
        return FetchResult(
            success=False,
            error=str(last_error) if last_error else "Unknown error",
            fetched_at=utc_now(),
            http_status=http_status,
        )

    def fetch_many(
        self,
        feed_urls: list[str],
        on_progress: Callable[[int, int, str], None] | None = None,
    ) -> dict[str, FetchResult]:
        results: dict[str, FetchResult] = {}
        total = len(feed_urls)
        for index, url in enumerate(feed_urls):
            if on_progress:
                on_progress(index, total, url)
            results[url] = self.fetch(url)
        if on_progress:
            on_progress(total, total, "done")
        return results

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, object]:
        return {"size": len(self._cache), "urls": list(self._cache)}

    def _wait_for_rate_limit(self) -> None:
        if self._last_fetch is not None:
            elapsed = self._clock() - self._last_fetch
            if elapsed < self.delay_seconds:
                self._sleep(self.delay_seconds - elapsed)
        self._last_fetch = self._clock()

    def _request(self, url: str) -> tuple[int | None, bytes]:
        try:
            request = Request(
                url, headers={"User-Agent": self.user_agent, "Accept": ACCEPT_HEADER}
            )
        except ValueError as exc:
            raise ClientError(f"Invalid feed URL: {exc}") from exc
        started = self._clock()
        try:
            # urlopen's timeout bounds each socket operation, not the whole call
            with self._opener(request, timeout=self.timeout_seconds) as response:
                status = response.getcode()
                content = response.read()
        except HTTPError as exc:
            raise _status_error(exc.code, exc.reason) from exc
        except (OSError, HTTPException) as exc:
            raise NetworkError(str(exc) or exc.__class__.__name__) from exc
        elapsed = self._clock() - started
        if elapsed > self.timeout_seconds:
            raise NetworkError(f"Timed out after {elapsed:.1f}s")
        if status is not None and not 200 <= status < 300:
            raise _status_error(status, "unexpected status")
        return status, content


def _status_error(status: int, reason: Any) -> NetworkError:
    message = f"HTTP {status}: {reason}"
    if 400 <= status < 500:
        return ClientError(message, status)
    return NetworkError(message, status)


def feed_url_for(slug_or_url: str) -> str:
    if slug_or_url.startswith("http"):
        split = urlsplit(slug_or_url)
        path = split.path if split.path.endswith("/feed") else "/feed"
        return urlunsplit((split.scheme, split.netloc, path, split.query, ""))
    return f"https://{slug_or_url}.substack.com/feed"
