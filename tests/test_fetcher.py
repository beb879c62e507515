"""Tests for the rate-limited catalog fetcher."""

import httpx
import pytest

from flourish.ingestion.fetcher import (
    CancelToken,
    FetchFailed,
    RateLimitedFetcher,
    RunCancelled,
    SlidingWindowLimiter,
    TransportFailed,
    redact,
)
from flourish.ingestion.registry import SourceConfig


def _fetcher(source: SourceConfig, handler, clock, cancel_token=None) -> RateLimitedFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RateLimitedFetcher(source, client=client, clock=clock, cancel_token=cancel_token)


def _items(start: int, stop: int) -> list[dict]:
    return [{"id": i, "common_name": f"Plant {i}"} for i in range(start, stop + 1)]


class TestSlidingWindowLimiter:
    """Tests for the request quota."""

    def test_under_threshold_does_not_wait(self, clock) -> None:
        """Test requests below the threshold go straight through."""
        limiter = SlidingWindowLimiter(threshold=3, window_seconds=60, clock=clock)
        waits = [limiter.acquire() for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        assert clock.sleeps == []
        assert limiter.requests_in_window == 3

    def test_waits_until_window_boundary(self, clock) -> None:
        """Test the request over the threshold sleeps until the oldest one expires."""
        limiter = SlidingWindowLimiter(threshold=3, window_seconds=60, clock=clock)
        start = clock.now()
        for _ in range(3):
            limiter.acquire()
            clock.advance(5)

        waited = limiter.acquire()

        assert waited == pytest.approx(45.0)
        assert clock.now() == pytest.approx(start + 60)
        assert limiter.requests_in_window == 3

    def test_no_rolling_window_exceeds_threshold(self, clock) -> None:
        """Test no window of window_seconds ever holds more than threshold requests."""
        threshold, window = 10, 60.0
        limiter = SlidingWindowLimiter(threshold=threshold, window_seconds=window, clock=clock)
        issued = []
        for i in range(250):
            limiter.acquire()
            issued.append(clock.now())
            clock.advance(0.7 if i % 3 else 2.3)

        for i in range(len(issued) - threshold):
            assert issued[i + threshold] - issued[i] >= window - 1e-6

    def test_window_expires(self, clock) -> None:
        """Test old requests stop counting once the window has passed."""
        limiter = SlidingWindowLimiter(threshold=2, window_seconds=60, clock=clock)
        limiter.acquire()
        limiter.acquire()
        clock.advance(61)

        assert limiter.requests_in_window == 0
        assert limiter.acquire() == 0.0

    def test_invalid_threshold(self, clock) -> None:
        """Test the threshold must be positive."""
        with pytest.raises(ValueError):
            SlidingWindowLimiter(threshold=0, window_seconds=60, clock=clock)


class TestFetchPage:
    """Tests for page fetching and pagination."""

    def test_first_page_carries_token(self, trefle_source, clock) -> None:
        """Test the first page request has the token and page number."""
        seen: list[httpx.URL] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, json={"data": _items(1, 2), "links": {"next": None}})

        page = _fetcher(trefle_source, handler, clock).fetch_page(None)

        assert seen[0].params["token"] == "secret"
        assert seen[0].params["page"] == "1"
        assert seen[0].path == "/api/v1/plants"
        assert [item["id"] for item in page.items] == [1, 2]
        assert page.next_cursor is None

    def test_relative_next_link_resolved_with_token(self, trefle_source, clock) -> None:
        """Test a relative next link is joined to the base URL and gets the token."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"data": _items(1, 2), "links": {"next": "/api/v1/plants?page=2"}}
            )

        page = _fetcher(trefle_source, handler, clock).fetch_page(None)

        next_url = httpx.URL(page.next_cursor)
        assert next_url.host == "trefle.test"
        assert next_url.path == "/api/v1/plants"
        assert next_url.params["page"] == "2"
        assert next_url.params["token"] == "secret"

    def test_absolute_next_link_keeps_existing_token(self, trefle_source, clock) -> None:
        """Test a token already on the next link is not duplicated."""
        next_link = "https://trefle.test/api/v1/plants?page=3&token=secret"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [], "links": {"next": next_link}})

        page = _fetcher(trefle_source, handler, clock).fetch_page("https://trefle.test/api/v1/plants?page=2&token=secret")

        assert httpx.URL(page.next_cursor).params.get_list("token") == ["secret"]

    @pytest.mark.parametrize("links", [{"next": None}, {"next": ""}, {}, {"self": "/api/v1/plants"}])
    def test_missing_next_link_ends_pagination(self, trefle_source, clock, links) -> None:
        """Test absent, null or empty next links end pagination."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": _items(1, 1), "links": links})

        assert _fetcher(trefle_source, handler, clock).fetch_page(None).next_cursor is None

    def test_page_counters_pagination(self, perenual_source, clock) -> None:
        """Test current_page/last_page bodies page until the last page."""

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            return httpx.Response(
                200, json={"data": _items(page, page), "current_page": page, "last_page": 2}
            )

        fetcher = _fetcher(perenual_source, handler, clock)
        first = fetcher.fetch_page(None)
        second = fetcher.fetch_page(first.next_cursor)

        assert httpx.URL(first.next_cursor).params["page"] == "2"
        assert httpx.URL(first.next_cursor).params["key"] == "k3y"
        assert second.current_page == 2
        assert second.next_cursor is None

    def test_page_delay_after_success(self, trefle_source, clock) -> None:
        """Test every successful page is followed by the courtesy delay."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": []})

        _fetcher(trefle_source, handler, clock).fetch_page(None)
        assert clock.sleeps == [1.0]

    def test_non_dict_items_dropped(self, trefle_source, clock) -> None:
        """Test items that are not objects are ignored."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"id": 1}, "junk", 3, None]})

        assert _fetcher(trefle_source, handler, clock).fetch_page(None).items == [{"id": 1}]


class TestErrors:
    """Tests for throttling and failure handling."""

    def test_429_cools_down_and_retries(self, trefle_source, clock) -> None:
        """Test a 429 sleeps the cooldown and retries outside the quota."""
        responses = [429, 429, 200]

        def handler(request: httpx.Request) -> httpx.Response:
            status = responses.pop(0)
            if status == 429:
                return httpx.Response(429)
            return httpx.Response(200, json={"data": _items(1, 3)})

        fetcher = _fetcher(trefle_source, handler, clock)
        page = fetcher.fetch_page(None)

        assert len(page.items) == 3
        assert clock.sleeps == [10.0, 10.0, 1.0]
        assert fetcher.requests_issued == 3
        assert fetcher.throttled_responses == 2
        assert fetcher.limiter.requests_in_window == 1

    @pytest.mark.parametrize("status", [400, 401, 404, 500, 503])
    def test_non_200_raises(self, trefle_source, clock, status) -> None:
        """Test statuses other than 200 and 429 raise FetchFailed."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status)

        with pytest.raises(FetchFailed) as exc_info:
            _fetcher(trefle_source, handler, clock).fetch_page(None)

        assert exc_info.value.status_code == status
        assert "secret" not in str(exc_info.value)
        assert clock.sleeps == []

    def test_transport_error(self, trefle_source, clock) -> None:
        """Test connection errors surface as TransportFailed without a status."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportFailed) as exc_info:
            _fetcher(trefle_source, handler, clock).fetch_page(None)

        assert isinstance(exc_info.value, FetchFailed)
        assert exc_info.value.status_code is None

    def test_invalid_json(self, trefle_source, clock) -> None:
        """Test a 200 with a non-JSON body fails the page."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(FetchFailed):
            _fetcher(trefle_source, handler, clock).fetch_page(None)

    def test_fetch_raw_keeps_body(self, trefle_source, clock) -> None:
        """Test fetch_raw returns the body without decoding it."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json", headers={"content-type": "text/plain; charset=utf-8"})

        raw = _fetcher(trefle_source, handler, clock).fetch_raw(trefle_source.details_url(5))

        assert raw.text == "not json"
        assert raw.content_type == "text/plain"
        assert clock.sleeps == []

    def test_details_token_with_reserved_characters(self, perenual_source, clock) -> None:
        """Test a token containing query delimiters reaches the server intact."""
        perenual_source.api_token = "a&b=c+d#e"
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request.url.params)
            return httpx.Response(200, text="{}")

        _fetcher(perenual_source, handler, clock).fetch_raw(perenual_source.details_url(5))

        assert received[0]["key"] == "a&b=c+d#e"
        assert list(received[0].keys()) == ["key"]


class TestCancellation:
    """Tests for cancel tokens."""

    def test_cancelled_before_request(self, trefle_source, clock) -> None:
        """Test a cancelled token stops the fetcher before any request."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"data": []})

        token = CancelToken(clock=clock)
        token.cancel()

        with pytest.raises(RunCancelled):
            _fetcher(trefle_source, handler, clock, cancel_token=token).fetch_page(None)
        assert calls == []

    def test_deadline_interrupts_cooldown(self, trefle_source, clock) -> None:
        """Test a deadline passing during a cooldown stops the fetcher."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429)

        token = CancelToken.with_timeout(5, clock=clock)

        with pytest.raises(RunCancelled):
            _fetcher(trefle_source, handler, clock, cancel_token=token).fetch_page(None)
        assert clock.now() - 1000.0 == pytest.approx(5.0)

    def test_remaining(self, clock) -> None:
        """Test remaining time counts down on the clock."""
        token = CancelToken.with_timeout(30, clock=clock)
        clock.advance(10)
        assert token.remaining() == pytest.approx(20)
        assert not token.cancelled
        clock.advance(25)
        assert token.cancelled


class TestRedact:
    """Tests for token redaction."""

    def test_hides_token(self) -> None:
        """Test the token value is removed from the URL."""
        assert "secret" not in redact("https://x.test/a?token=secret&page=2", "token")

    def test_url_without_token_unchanged(self) -> None:
        """Test URLs without the token pass through."""
        assert redact("https://x.test/a?page=2", "token") == "https://x.test/a?page=2"
