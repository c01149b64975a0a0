"""
Polygon.io (Massive.com) options API client.

Provides authenticated access to the options snapshot endpoint with retry,
pagination and batched multi-ticker fetching.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import requests

from .. import config
from ..exceptions import CredentialError, HttpError, ScanError
from ..utils import chunk, sleep_ms, utc_now

logger = logging.getLogger(__name__)

# (ticker, completed_count, total_count, phase) where phase is "fetching" or "complete"
TickerProgressCallback = Callable[[str, int, int, str], None]

TICKER_HINT_KEY = "_ticker"


@dataclass
class TickerError:
    """A ticker whose chain could not be fetched."""
    ticker: str
    error: str
    status: Optional[int] = None


@dataclass
class ChainFetchResult:
    """Raw contracts for a set of tickers plus the per-ticker failures."""
    contracts: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[TickerError] = field(default_factory=list)
    succeeded: List[str] = field(default_factory=list)

    @property
    def failed_tickers(self) -> List[str]:
        return [e.ticker for e in self.errors]


class PolygonClient:
    """
    Client for the Polygon options snapshot API.

    Blocking ``requests`` calls run in the default executor so that the
    tickers of one batch are fetched concurrently. Batches run one after
    another with ``request_delay_ms`` between them.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = config.POLYGON_API_BASE,
        concurrency: int = config.DEFAULT_CONCURRENCY,
        request_delay_ms: float = config.REQUEST_DELAY_MS,
        max_retries: int = config.RETRY_ATTEMPTS,
        retry_delay_ms: float = config.RETRY_BACKOFF_BASE_MS,
        page_limit: int = config.PAGE_LIMIT,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize Polygon API client.

        Args:
            api_key: API key appended to every request (defaults to POLYGON_API_KEY)
            base_url: Base URL for the API
            concurrency: Tickers fetched in parallel per batch
            request_delay_ms: Delay between pages and between batches
            max_retries: Total attempts per request
            retry_delay_ms: Base delay for exponential backoff
            page_limit: Results per page
            timeout: Per-request timeout in seconds
            session: Pre-built session (mainly for tests)
        """
        self.api_key = api_key if api_key is not None else config.API_KEY
        self.base_url = base_url.rstrip("/")
        self.concurrency = max(1, concurrency)
        self.request_delay_ms = request_delay_ms
        self.max_retries = max(1, max_retries)
        self.retry_delay_ms = retry_delay_ms
        self.page_limit = page_limit
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            session.headers.update({
                "User-Agent": "optscan/0.1.0",
                "Accept": "application/json",
            })
        self.session = session

        # Request tracking for diagnostics
        self.request_count = 0
        self.last_request_time: Optional[datetime] = None

        if not self.api_key:
            logger.warning("No Polygon API key configured; requests will be rejected")

    def _authenticate(self, url: str) -> str:
        if "apiKey=" in url:
            return url
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{urlencode({'apiKey': self.api_key})}"

    async def fetch_page(self, url: str) -> Dict[str, Any]:
        """
        Make a single authenticated GET request.

        Args:
            url: Full URL without credentials

        Returns:
            Decoded JSON body

        Raises:
            CredentialError: On HTTP 401/403
            HttpError: On any other non-2xx status
        """
        self.request_count += 1
        self.last_request_time = utc_now()
        logger.debug(f"GET {url}")

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            functools.partial(self.session.get, self._authenticate(url), timeout=self.timeout),
        )

        if not response.ok:
            status = response.status_code
            reason = getattr(response, "reason", "") or ""
            if status in (401, 403):
                raise CredentialError(status, url, reason)
            raise HttpError(status, url, reason)

        return response.json()

    async def fetch_with_retry(
        self,
        url: str,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Make a request with exponential backoff retry logic.

        Credential errors and non-retryable statuses fail immediately.
        HTTP 429 waits ``base * 2**(attempt+1)``; HTTP 5xx and connection
        failures wait ``base * 2**attempt``.

        Args:
            url: Full URL without credentials
            max_retries: Total attempts (defaults to the client setting)
            base_delay_ms: Backoff base (defaults to the client setting)

        Returns:
            Decoded JSON body

        Raises:
            HttpError: When the request fails permanently or retries run out
            requests.RequestException: When the connection keeps failing
        """
        attempts = max(1, max_retries if max_retries is not None else self.max_retries)
        base = self.retry_delay_ms if base_delay_ms is None else base_delay_ms

        for attempt in range(attempts):
            try:
                return await self.fetch_page(url)

            except CredentialError:
                raise

            except HttpError as e:
                if not e.retryable or attempt >= attempts - 1:
                    logger.error(f"HTTP error {e.status} for {url}")
                    raise

                if e.status == 429:
                    delay = base * (2 ** (attempt + 1))
                    logger.warning(
                        f"Rate limited, retrying in {delay:.0f}ms "
                        f"(attempt {attempt + 1}/{attempts})"
                    )
                else:
                    delay = base * (2 ** attempt)
                    logger.warning(
                        f"Server error {e.status}, retrying in {delay:.0f}ms "
                        f"(attempt {attempt + 1}/{attempts})"
                    )
                await sleep_ms(delay)

            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                if attempt >= attempts - 1:
                    logger.error(f"Request failed after {attempts} attempts: {e}")
                    raise

                delay = base * (2 ** attempt)
                logger.warning(
                    f"Request failed: {e}, retrying in {delay:.0f}ms "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                await sleep_ms(delay)

        raise HttpError(0, url, "All retry attempts exhausted")

    async def fetch_all_pages(self, initial_url: str) -> List[Dict[str, Any]]:
        """
        Follow ``next_url`` cursors and concatenate every page's results.

        Args:
            initial_url: First page URL

        Returns:
            All results in receipt order
        """
        all_results: List[Dict[str, Any]] = []
        url: Optional[str] = initial_url
        page_count = 0

        while url:
            page_count += 1
            response = await self.fetch_with_retry(url)

            results = response.get("results") if isinstance(response, dict) else None
            if isinstance(results, list):
                all_results.extend(results)

            url = response.get("next_url") if isinstance(response, dict) else None

            if url:
                await sleep_ms(self.request_delay_ms)

        logger.debug(f"Fetched {len(all_results)} results over {page_count} page(s)")
        return all_results

    def build_options_url(self, ticker: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Build the options snapshot URL for one underlying.

        Args:
            ticker: Underlying ticker symbol
            params: Server-side filters: contract_kind, expiration_gte,
                expiration_lte, strike_gte, strike_lte

        Returns:
            URL with query string (no credentials)
        """
        params = params or {}
        query = {}

        if params.get("contract_kind"):
            query["contract_type"] = params["contract_kind"]
        if params.get("expiration_gte"):
            query["expiration_date.gte"] = params["expiration_gte"]
        if params.get("expiration_lte"):
            query["expiration_date.lte"] = params["expiration_lte"]
        if params.get("strike_gte") is not None:
            query["strike_price.gte"] = params["strike_gte"]
        if params.get("strike_lte") is not None:
            query["strike_price.lte"] = params["strike_lte"]

        query["limit"] = self.page_limit

        return f"{self.base_url}/v3/snapshot/options/{ticker}?{urlencode(query)}"

    async def get_options_chain(
        self,
        ticker: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get the full options chain for a single ticker.

        Each record is tagged with the requested ticker unless it already
        carries one, so the normalizer has a last-resort ticker hint.
        """
        results = await self.fetch_all_pages(self.build_options_url(ticker, params))
        for record in results:
            if isinstance(record, dict) and not record.get(TICKER_HINT_KEY):
                record[TICKER_HINT_KEY] = ticker
        return results

    async def fetch_for_tickers(
        self,
        tickers: Sequence[str],
        shared_params: Optional[Dict[str, Any]] = None,
        on_progress: Optional[TickerProgressCallback] = None,
        cancel_event: Any = None,
    ) -> ChainFetchResult:
        """
        Get options chains for many tickers in concurrent batches.

        A failing ticker is recorded and contributes no contracts. A
        credential error is raised once its batch has settled.

        Args:
            tickers: Ticker symbols in scan order
            shared_params: Server-side filters applied to every ticker
            on_progress: Called as each ticker starts and finishes
            cancel_event: Object with ``is_set()``; checked before each batch

        Returns:
            ChainFetchResult with contracts in ticker order

        Raises:
            CredentialError: If the API key was rejected
            ScanError: If cancelled between batches
        """
        result = ChainFetchResult()
        total = len(tickers)
        batches = chunk(list(tickers), self.concurrency)
        processed = 0

        for index, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                raise ScanError("Scan cancelled", phase="fetching")

            async def fetch_one(ticker: str, completed: int) -> List[Dict[str, Any]]:
                if on_progress:
                    on_progress(ticker, completed, total, "fetching")
                return await self.get_options_chain(ticker, shared_params)

            outcomes = await asyncio.gather(
                *(fetch_one(ticker, processed) for ticker in batch),
                return_exceptions=True,
            )

            credential_error: Optional[CredentialError] = None
            for ticker, outcome in zip(batch, outcomes):
                if isinstance(outcome, CredentialError):
                    credential_error = credential_error or outcome
                    result.errors.append(TickerError(ticker, str(outcome), outcome.status))
                elif isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.warning(f"Error fetching options for {ticker}: {outcome}")
                    result.errors.append(
                        TickerError(ticker, str(outcome), getattr(outcome, "status", None))
                    )
                else:
                    result.contracts.extend(outcome)
                    result.succeeded.append(ticker)

                processed += 1
                if on_progress:
                    on_progress(ticker, processed, total, "complete")

            if credential_error is not None:
                logger.error(f"API key rejected ({credential_error.status}); aborting fetch")
                raise credential_error

            if index < len(batches) - 1:
                await sleep_ms(self.request_delay_ms)

        logger.info(
            f"Fetched {len(result.contracts)} contracts from "
            f"{len(result.succeeded)}/{total} tickers"
        )
        if result.errors:
            logger.warning(f"Failed tickers: {', '.join(result.failed_tickers)}")

        return result

    async def get_ticker_details(self, ticker: str) -> Dict[str, Any]:
        """
        Get reference details (name, SIC code, market cap) for a ticker.
        """
        response = await self.fetch_with_retry(f"{self.base_url}/v3/reference/tickers/{ticker}")
        return response.get("results") or {}

    async def test_connection(self) -> bool:
        """
        Check API connectivity and key validity with a lightweight request.

        Returns:
            True if the request succeeded
        """
        try:
            await self.fetch_page(f"{self.base_url}/v3/reference/tickers?limit=1")
            return True
        except (HttpError, requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"API connection test failed: {e}")
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Request counter and last request time."""
        return {
            "request_count": self.request_count,
            "last_request_time": self.last_request_time,
        }

    def close(self) -> None:
        self.session.close()
