"""Market-data API clients."""

from .polygon import ChainFetchResult, PolygonClient, TickerError

__all__ = ["ChainFetchResult", "PolygonClient", "TickerError"]
