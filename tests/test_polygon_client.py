"""Tests for the Polygon options client."""

import asyncio
import threading

import pytest
import requests

from conftest import FakeResponse, make_raw_contract, sequence_handler, ticker_of
from optscan.clients.polygon import TICKER_HINT_KEY
from optscan.exceptions import CredentialError, HttpError, ScanError


def test_authenticate_appends_api_key(make_client):
    """Test the key is appended once, with the right separator."""
    client = make_client(sequence_handler(FakeResponse()))
    assert client._authenticate("https://x/a") == "https://x/a?apiKey=test-key"
    assert client._authenticate("https://x/a?limit=1") == "https://x/a?limit=1&apiKey=test-key"
    assert client._authenticate("https://x/a?apiKey=k") == "https://x/a?apiKey=k"


def test_build_options_url(make_client):
    """Test server-side filters map to query parameters."""
    client = make_client(sequence_handler(FakeResponse()), page_limit=250)
    url = client.build_options_url(
        "XOM",
        {"contract_kind": "call", "expiration_gte": "2026-01-01", "expiration_lte": None},
    )
    assert url.startswith("https://api.polygon.io/v3/snapshot/options/XOM?")
    assert "contract_type=call" in url
    assert "expiration_date.gte=2026-01-01" in url
    assert "expiration_date.lte" not in url
    assert "limit=250" in url


def test_rate_limit_retries_then_succeeds(make_client, recorded_sleeps):
    """Test 429, 429, 200 makes three requests with growing backoff."""
    client = make_client(
        sequence_handler(
            FakeResponse(429, reason="Too Many Requests"),
            FakeResponse(429, reason="Too Many Requests"),
            FakeResponse(200, {"results": [1]}),
        ),
        max_retries=3,
        retry_delay_ms=1000,
    )

    body = asyncio.run(client.fetch_with_retry("https://api.polygon.io/v3/x"))

    assert body == {"results": [1]}
    assert len(client.session.calls) == 3
    assert recorded_sleeps == [2000, 4000]


def test_credential_error_is_not_retried(make_client, recorded_sleeps):
    """Test 401 raises immediately after one request."""
    client = make_client(sequence_handler(FakeResponse(401, reason="Unauthorized")), max_retries=3)

    with pytest.raises(CredentialError) as exc_info:
        asyncio.run(client.fetch_with_retry("https://api.polygon.io/v3/x"))

    assert exc_info.value.status == 401
    assert len(client.session.calls) == 1
    assert recorded_sleeps == []


def test_server_error_exhausts_retries(make_client, recorded_sleeps):
    """Test 5xx is retried with exponential backoff and no sleep after the last try."""
    client = make_client(
        sequence_handler(FakeResponse(503, reason="Service Unavailable")),
        max_retries=3,
        retry_delay_ms=100,
    )

    with pytest.raises(HttpError) as exc_info:
        asyncio.run(client.fetch_with_retry("https://api.polygon.io/v3/x"))

    assert exc_info.value.status == 503
    assert len(client.session.calls) == 3
    assert recorded_sleeps == [100, 200]


def test_client_error_fails_fast(make_client, recorded_sleeps):
    """Test non-retryable statuses raise on the first attempt."""
    client = make_client(sequence_handler(FakeResponse(404, reason="Not Found")), max_retries=3)

    with pytest.raises(HttpError):
        asyncio.run(client.fetch_with_retry("https://api.polygon.io/v3/x"))

    assert len(client.session.calls) == 1


def test_connection_error_is_retried(make_client, recorded_sleeps):
    """Test network failures are retried like server errors."""
    client = make_client(
        sequence_handler(
            requests.exceptions.ConnectionError("reset"),
            FakeResponse(200, {"results": []}),
        ),
        retry_delay_ms=50,
    )

    body = asyncio.run(client.fetch_with_retry("https://api.polygon.io/v3/x"))

    assert body == {"results": []}
    assert recorded_sleeps == [50]


def test_fetch_all_pages_follows_cursor(make_client):
    """Test results from every page are concatenated in order."""
    def handler(url):
        if "cursor=page2" in url:
            return FakeResponse(200, {"results": [{"n": 3}]})
        return FakeResponse(200, {
            "results": [{"n": 1}, {"n": 2}],
            "next_url": "https://api.polygon.io/v3/snapshot/options/XOM?cursor=page2",
        })

    client = make_client(handler)
    results = asyncio.run(client.fetch_all_pages("https://api.polygon.io/v3/snapshot/options/XOM"))

    assert [r["n"] for r in results] == [1, 2, 3]
    assert len(client.session.calls) == 2
    assert all("apiKey=test-key" in call for call in client.session.calls)


def test_get_options_chain_tags_ticker(make_client):
    """Test records carry the requested ticker as a hint."""
    client = make_client(sequence_handler(FakeResponse(200, {"results": [{"details": {}}]})))
    results = asyncio.run(client.get_options_chain("CVX"))
    assert results[0][TICKER_HINT_KEY] == "CVX"


def test_fetch_for_tickers_isolates_failures(make_client):
    """Test one failing ticker does not affect the others."""
    def handler(url):
        ticker = ticker_of(url)
        if ticker == "BAD":
            raise requests.exceptions.ConnectionError("unreachable")
        return FakeResponse(200, {"results": [make_raw_contract(ticker)]})

    client = make_client(handler, concurrency=5, max_retries=1)
    result = asyncio.run(client.fetch_for_tickers(["XOM", "CVX", "BAD", "SLB", "HAL"]))

    assert result.succeeded == ["XOM", "CVX", "SLB", "HAL"]
    assert result.failed_tickers == ["BAD"]
    assert len(result.contracts) == 4


def test_fetch_for_tickers_aborts_on_credential_error(make_client):
    """Test a rejected key stops the fetch after the current batch."""
    client = make_client(sequence_handler(FakeResponse(403, reason="Forbidden")), concurrency=2)

    with pytest.raises(CredentialError):
        asyncio.run(client.fetch_for_tickers(["XOM", "CVX", "SLB", "HAL"]))

    # Only the first batch was attempted
    assert len(client.session.calls) == 2


def test_fetch_for_tickers_reports_progress(make_client):
    """Test progress events for every ticker with monotone completed counts."""
    client = make_client(sequence_handler(FakeResponse(200, {"results": []})), concurrency=2)
    events = []

    asyncio.run(client.fetch_for_tickers(
        ["XOM", "CVX", "SLB"],
        on_progress=lambda ticker, done, total, status: events.append((ticker, done, total, status)),
    ))

    completed = [e for e in events if e[3] == "complete"]
    assert [e[1] for e in completed] == [1, 2, 3]
    assert all(e[2] == 3 for e in events)
    assert {e[0] for e in events if e[3] == "fetching"} == {"XOM", "CVX", "SLB"}


def test_fetch_for_tickers_cancelled(make_client):
    """Test a set cancel event stops before the next batch."""
    client = make_client(sequence_handler(FakeResponse(200, {"results": []})))
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(ScanError):
        asyncio.run(client.fetch_for_tickers(["XOM"], cancel_event=cancel))

    assert client.session.calls == []


def test_test_connection(make_client):
    """Test the connectivity check reports success and failure."""
    ok_client = make_client(sequence_handler(FakeResponse(200, {"results": []})))
    bad_client = make_client(sequence_handler(FakeResponse(401)))

    assert asyncio.run(ok_client.test_connection()) is True
    assert asyncio.run(bad_client.test_connection()) is False
    assert ok_client.get_stats()["request_count"] == 1


def test_delay_between_batches_only(make_client, recorded_sleeps):
    """Test the request delay separates batches, never follows the last one."""
    client = make_client(
        sequence_handler(FakeResponse(200, {"results": []})),
        concurrency=2,
        request_delay_ms=350,
    )

    asyncio.run(client.fetch_for_tickers(["XOM", "CVX", "SLB", "HAL", "ET"]))

    assert len(client.session.calls) == 5
    assert recorded_sleeps == [350, 350]


def test_delay_between_pages(make_client, recorded_sleeps):
    """Test a two-page chain sleeps once, between the pages."""
    def handler(url):
        if "cursor=page2" in url:
            return FakeResponse(200, {"results": [{"n": 2}]})
        return FakeResponse(200, {
            "results": [{"n": 1}],
            "next_url": "https://api.polygon.io/v3/snapshot/options/XOM?cursor=page2",
        })

    client = make_client(handler, request_delay_ms=350)
    results = asyncio.run(client.fetch_all_pages("https://api.polygon.io/v3/snapshot/options/XOM"))

    assert len(results) == 2
    assert recorded_sleeps == [350]


def test_get_ticker_details(make_client):
    """Test reference details are unwrapped from the results key."""
    details = {"ticker": "XOM", "name": "Exxon Mobil Corp", "market_cap": 4.5e11}

    def handler(url):
        assert "/v3/reference/tickers/XOM" in url
        return FakeResponse(200, {"status": "OK", "results": details})

    client = make_client(handler)
    assert asyncio.run(client.get_ticker_details("XOM")) == details


def test_get_ticker_details_missing_results(make_client):
    """Test an empty reference response gives an empty dict."""
    client = make_client(sequence_handler(FakeResponse(200, {"status": "OK"})))
    assert asyncio.run(client.get_ticker_details("ZZZ")) == {}
