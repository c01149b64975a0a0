"""Shared fixtures: a fake HTTP session and raw snapshot records."""

import re
import threading
from datetime import date

import pytest

from optscan.clients.polygon import PolygonClient

TODAY = date(2026, 1, 1)

SNAPSHOT_PATH = re.compile(r"/v3/snapshot/options/([^?]+)")


class FakeResponse:
    """Enough of requests.Response for the client."""

    def __init__(self, status_code=200, payload=None, reason=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self.reason = reason
        self._payload = payload if payload is not None else {}

    def json(self):
        return self._payload


class FakeSession:
    """
    Records every GET and answers through ``handler(url)``.

    The handler returns a FakeResponse or raises (e.g. ConnectionError).
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def get(self, url, timeout=None):
        with self._lock:
            self.calls.append(url)
        return self.handler(url)

    def close(self):
        self.closed = True


def sequence_handler(*responses):
    """Handler returning the given responses in order, repeating the last."""
    queue = list(responses)

    def handler(url):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    return handler


def ticker_of(url):
    match = SNAPSHOT_PATH.search(url)
    return match.group(1) if match else None


def make_raw_contract(
    ticker="XOM",
    strike=120.0,
    expiration="2026-01-16",
    kind="call",
    bid=0.10,
    ask=0.20,
    last=0.15,
    midpoint=None,
    open_interest=100,
    volume=10,
    delta=0.25,
    iv=0.35,
    underlying_price=110.0,
):
    """Build a provider snapshot record."""
    occ = f"O:{ticker}{expiration[2:4]}{expiration[5:7]}{expiration[8:10]}" \
          f"{'C' if kind == 'call' else 'P'}{int(strike * 1000):08d}"
    quote = {"bid": bid, "ask": ask}
    if midpoint is not None:
        quote["midpoint"] = midpoint
    return {
        "details": {
            "ticker": occ,
            "underlying_ticker": ticker,
            "contract_type": kind,
            "strike_price": strike,
            "expiration_date": expiration,
        },
        "last_quote": quote,
        "last_trade": {"price": last},
        "day": {"volume": volume},
        "greeks": {"delta": delta, "gamma": 0.02, "theta": -0.01, "vega": 0.05},
        "implied_volatility": iv,
        "open_interest": open_interest,
        "underlying_asset": {"ticker": ticker, "price": underlying_price},
        "break_even_price": strike + ask if ask is not None else None,
    }


@pytest.fixture
def make_client():
    """Build a PolygonClient around a FakeSession with no delays."""

    def factory(handler, **kwargs):
        options = {
            "api_key": "test-key",
            "base_url": "https://api.polygon.io",
            "concurrency": 2,
            "request_delay_ms": 0,
            "retry_delay_ms": 0,
        }
        options.update(kwargs)
        return PolygonClient(session=FakeSession(handler), **options)

    return factory


@pytest.fixture
def recorded_sleeps(monkeypatch):
    """Replace the client's sleep with a recorder; returns the list of delays."""
    delays = []

    async def fake_sleep_ms(ms):
        delays.append(ms)

    monkeypatch.setattr("optscan.clients.polygon.sleep_ms", fake_sleep_ms)
    return delays
