"""
Catalog Fetcher Module
======================

Issues paginated HTTP GET requests to an upstream catalog API while
respecting a request-per-window quota, the server's "too many requests"
signal and a fixed courtesy delay between pages.

All waiting goes through a ``Clock`` so the limiter and backoff can be
tested without real delays.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from flourish.ingestion.registry import SourceConfig

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429

# Longest single sleep while a cancel token is attached; cancellation is
# noticed at least this often.
SLEEP_SLICE_SECONDS = 1.0


class FetchFailed(Exception):
    """Raised when a request ends in a status other than 200 (or no response at all)."""

    def __init__(self, status_code: int | None, url: str, reason: str = "") -> None:
        message = f"Fetch of {url} failed"
        if status_code is not None:
            message += f" with status {status_code}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.reason = reason


class TransportFailed(FetchFailed):
    """Raised when no response was received at all (connect error, timeout)."""

    def __init__(self, url: str, reason: str = "") -> None:
        super().__init__(None, url, reason)


class RunCancelled(Exception):
    """Raised when a run is cancelled or its deadline has passed."""


class Clock(Protocol):
    """Time source used for rate limiting and backoff."""

    def now(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Monotonic wall clock with real sleeping."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class CancelToken:
    """
    External stop signal for a sync run.

    Can be cancelled explicitly (from another thread) and/or carry a
    deadline measured on the run's clock.
    """

    def __init__(self, deadline: float | None = None, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()
        self.deadline = deadline
        self._event = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float, clock: Clock | None = None) -> CancelToken:
        clock = clock or SystemClock()
        return cls(deadline=clock.now() + seconds, clock=clock)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and self.clock.now() >= self.deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock.now())

    def check(self) -> None:
        """Raise RunCancelled if the run should stop."""
        if self._event.is_set():
            raise RunCancelled("Run cancelled")
        if self.deadline is not None and self.clock.now() >= self.deadline:
            raise RunCancelled("Run deadline exceeded")


class SlidingWindowLimiter:
    """
    Request quota over a sliding time window.

    Keeps the issue time of every request in the last ``window_seconds``.
    Before a request that would exceed ``threshold`` it sleeps until the
    oldest request leaves the window, then drops it from the count.
    """

    def __init__(
        self,
        threshold: int,
        window_seconds: float,
        clock: Clock,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if threshold < 1:
            raise ValueError(f"threshold must be at least 1, got {threshold}")
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.clock = clock
        self._sleep = sleep or clock.sleep
        self._issued: deque[float] = deque()

    def _evict(self, now: float) -> None:
        while self._issued and self._issued[0] + self.window_seconds <= now:
            self._issued.popleft()

    @property
    def requests_in_window(self) -> int:
        self._evict(self.clock.now())
        return len(self._issued)

    @property
    def window_start(self) -> float | None:
        """Issue time of the oldest request still counted."""
        self._evict(self.clock.now())
        return self._issued[0] if self._issued else None

    def acquire(self) -> float:
        """
        Wait until a request may be issued, then count it.

        Returns:
            Seconds spent waiting.
        """
        now = self.clock.now()
        self._evict(now)
        waited = 0.0
        if len(self._issued) >= self.threshold:
            boundary = self._issued[0] + self.window_seconds
            waited = boundary - now
            logger.info(f"Rate limit of {self.threshold} requests reached; sleeping {waited:.1f}s")
            self._sleep(waited)
            now = max(self.clock.now(), boundary)
            self._evict(now)
        self._issued.append(now)
        return waited


@dataclass
class Page:
    """One page of a catalog list response."""

    url: str
    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    current_page: int | None = None
    last_page: int | None = None


@dataclass
class RawResponse:
    """Body of a successful (200) request, not yet decoded."""

    url: str
    status_code: int
    text: str
    content_type: str = ""

    def json(self) -> Any:
        """Decode the body as JSON. Raises ValueError on malformed content."""
        return json.loads(self.text)


def redact(url: str, param: str) -> str:
    """Hide the API token in a URL before logging it."""
    parsed = httpx.URL(url)
    if param not in parsed.params:
        return url
    return str(parsed.copy_set_param(param, "***"))


class RateLimitedFetcher:
    """
    HTTP client for one catalog source.

    Features:
    - Sliding-window request quota
    - Fixed cooldown and retry on HTTP 429, outside the quota
    - Next-link resolution with the API token re-attached
    - Courtesy delay after every page
    """

    def __init__(
        self,
        source: SourceConfig,
        client: httpx.Client | None = None,
        clock: Clock | None = None,
        cancel_token: CancelToken | None = None,
        user_agent: str = "Flourish/0.1",
        timeout: float = 10.0,
    ) -> None:
        self.source = source
        self.clock = clock or SystemClock()
        self.cancel_token = cancel_token
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )
        self.limiter = SlidingWindowLimiter(
            threshold=source.rate_limit.requests_per_window,
            window_seconds=source.rate_limit.window_seconds,
            clock=self.clock,
            sleep=self.pause,
        )
        self.requests_issued = 0
        self.throttled_responses = 0

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> RateLimitedFetcher:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _check_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.check()

    def pause(self, seconds: float) -> None:
        """Sleep on the clock, waking up regularly to honour the cancel token."""
        if self.cancel_token is None:
            self.clock.sleep(seconds)
            return
        remaining = seconds
        while remaining > 0:
            self.cancel_token.check()
            step = min(remaining, SLEEP_SLICE_SECONDS)
            self.clock.sleep(step)
            remaining -= step
        self.cancel_token.check()

    def _redact(self, url: str) -> str:
        return redact(url, self.source.token_param)

    def _get(self, url: str) -> httpx.Response:
        """GET a URL under the quota, retrying after 429 until the server relents."""
        self._check_cancelled()
        self.limiter.acquire()
        while True:
            self._check_cancelled()
            try:
                response = self._client.get(url)
            except httpx.TransportError as e:
                raise TransportFailed(self._redact(url), str(e)) from e
            self.requests_issued += 1

            if response.status_code != TOO_MANY_REQUESTS:
                return response

            self.throttled_responses += 1
            cooldown = self.source.rate_limit.cooldown_seconds
            logger.warning(f"Too many requests for {self._redact(url)}; sleeping {cooldown:.0f}s")
            self.pause(cooldown)

    def first_page_url(self) -> str:
        url = httpx.URL(self.source.list_url).copy_merge_params(
            {self.source.token_param: self.source.api_token, "page": self.source.first_page}
        )
        return str(url)

    def ensure_token(self, url: str) -> str:
        """Add the API token to a URL's query string if it is missing."""
        parsed = httpx.URL(url)
        if self.source.token_param in parsed.params:
            return url
        return str(parsed.copy_add_param(self.source.token_param, self.source.api_token))

    def resolve_next(self, body: dict[str, Any], current_url: str) -> str | None:
        """
        Work out the URL of the page after ``current_url``.

        Understands ``links.next`` (absolute or relative to the base URL)
        and ``current_page``/``last_page`` counters. Returns None when
        there is no further page.
        """
        links = body.get("links")
        if isinstance(links, dict):
            next_link = links.get("next")
            if not next_link or not isinstance(next_link, str):
                return None
            if not next_link.startswith("http"):
                next_link = str(httpx.URL(self.source.base_url).join(next_link))
            return self.ensure_token(next_link)

        current_page = body.get("current_page")
        last_page = body.get("last_page")
        if isinstance(current_page, int) and isinstance(last_page, int) and current_page < last_page:
            return str(httpx.URL(current_url).copy_set_param("page", current_page + 1))
        return None

    def fetch_page(self, cursor: str | None = None) -> Page:
        """
        Fetch one page of the list collection.

        Args:
            cursor: URL of the page to fetch; None for the first page.

        Returns:
            Page with its items and the cursor of the next page.

        Raises:
            FetchFailed: On a non-200 status, a transport error or a body
                that is not a JSON object.
            RunCancelled: If the cancel token fired.
        """
        url = cursor or self.first_page_url()
        response = self._get(url)
        if response.status_code != 200:
            raise FetchFailed(response.status_code, self._redact(url))

        try:
            body = response.json()
        except ValueError as e:
            raise FetchFailed(response.status_code, self._redact(url), f"invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise FetchFailed(response.status_code, self._redact(url), "expected a JSON object")

        data = body.get("data")
        items = [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []
        page = Page(
            url=url,
            items=items,
            next_cursor=self.resolve_next(body, url),
            current_page=body.get("current_page") if isinstance(body.get("current_page"), int) else None,
            last_page=body.get("last_page") if isinstance(body.get("last_page"), int) else None,
        )
        logger.info(f"Fetched {len(items)} items from {self._redact(url)}")

        self.pause(self.source.rate_limit.page_delay_seconds)
        return page

    def fetch_raw(self, url: str) -> RawResponse:
        """
        Fetch a single resource without decoding it.

        Raises:
            FetchFailed: On a non-200 status or a transport error.
            RunCancelled: If the cancel token fired.
        """
        response = self._get(url)
        if response.status_code != 200:
            raise FetchFailed(response.status_code, self._redact(url))
        return RawResponse(
            url=url,
            status_code=response.status_code,
            text=response.text,
            content_type=response.headers.get("content-type", "").split(";")[0].strip(),
        )
