"""
Options scanner orchestration.

Fetches chains for the universe, normalizes and filters contracts, sorts
the result, and keeps the last scan for re-filtering without a refetch.
"""

import logging
import time
from dataclasses import fields
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from .clients.polygon import PolygonClient
from .exceptions import CredentialError, ScanError
from .filters import allow_list, apply_filters, create_filter_chain, log_filter_diagnostics
from .models import (
    FIELD_ALIASES,
    METADATA_FIELDS,
    NormalizedContract,
    ScanParameters,
    ScanPhase,
    ScanResult,
    SummaryStats,
    UniverseEntry,
)
from .normalize import build_universe_map, normalize_contracts
from .universe import DEFAULT_UNIVERSE
from .utils import isoformat_utc

logger = logging.getLogger(__name__)

# (phase, message, progress_percent)
ProgressCallback = Callable[[str, str, int], None]

# Share of the progress bar covered by the fetch phase
FETCH_PROGRESS_SHARE = 90

# Scalar contract fields, their aliases and metadata keys
SORTABLE_FIELDS = frozenset(
    [f.name for f in fields(NormalizedContract) if f.name != "metadata"]
    + list(FIELD_ALIASES)
    + list(METADATA_FIELDS)
)

SORT_DIRECTIONS = ("asc", "desc")


class ProgressReporter:
    """Forwards progress to a callback, never letting the percentage go down."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.percent = 0

    def emit(self, phase: ScanPhase, message: str, percent: Optional[int] = None) -> None:
        if percent is not None:
            self.percent = max(self.percent, min(100, int(percent)))
        logger.debug(f"[{phase.value}] {self.percent}% {message}")
        if self.callback:
            self.callback(phase.value, message, self.percent)


def _sort_key(value: Any):
    if isinstance(value, str):
        return (1, value)
    return (0, value)


def sort_contracts(
    contracts: Sequence[NormalizedContract],
    field: str = "ask",
    direction: str = "asc",
) -> List[NormalizedContract]:
    """
    Sort contracts by a field.

    Missing values always go last, whatever the direction. Strings compare
    lexicographically and numbers numerically. The sort is stable.

    Args:
        contracts: Contracts to sort
        field: Attribute name, alias (e.g. "last", "iv") or metadata key
        direction: "asc" or "desc"

    Returns:
        New sorted list
    """
    present = [c for c in contracts if c.get(field) is not None]
    missing = [c for c in contracts if c.get(field) is None]
    reverse = str(direction).lower() == "desc"
    present.sort(key=lambda c: _sort_key(c.get(field)), reverse=reverse)
    return present + missing


def validate_sort(params: ScanParameters) -> None:
    """
    Reject a sort field or direction that cannot order contracts.

    Raises:
        ScanError: If sort_by is not a scalar contract field, alias or
            metadata key, or sort_dir is not "asc" or "desc"
    """
    if params.sort_by is not None and params.sort_by not in SORTABLE_FIELDS:
        raise ScanError(f"Cannot sort by '{params.sort_by}'", phase=ScanPhase.INIT.value)
    if params.sort_dir is not None and str(params.sort_dir).lower() not in SORT_DIRECTIONS:
        raise ScanError(
            f"Sort direction must be asc or desc, got '{params.sort_dir}'",
            phase=ScanPhase.INIT.value,
        )


class OptionsScanner:
    """
    Scan session.

    Owns the universe, the scan phase, and the last result together with
    its pre-filter contracts.
    """

    def __init__(
        self,
        client: PolygonClient,
        universe: Optional[Sequence[UniverseEntry]] = None,
        defaults: Optional[ScanParameters] = None,
    ):
        """
        Initialize scanner.

        Args:
            client: Configured API client
            universe: Ticker universe (defaults to the energy universe)
            defaults: Parameter defaults merged under every scan
        """
        self.client = client
        self._universe: List[UniverseEntry] = list(
            universe if universe is not None else DEFAULT_UNIVERSE
        )
        self.defaults = defaults or ScanParameters.defaults()
        self.phase = ScanPhase.IDLE
        self.last_result: Optional[ScanResult] = None
        self.last_normalized: List[NormalizedContract] = []

    def merge_params(self, params: Optional[ScanParameters] = None) -> ScanParameters:
        """
        Lay explicitly set parameters over the defaults.

        Raises:
            ScanError: If the sort field or direction is invalid
        """
        merged = (params or ScanParameters()).merged_over(self.defaults)
        if not merged.tickers:
            merged.tickers = None
        validate_sort(merged)
        return merged

    def resolve_tickers(self, params: ScanParameters) -> List[str]:
        """Explicit ticker override if given, else the whole universe; each ticker once."""
        if params.tickers:
            tickers = params.tickers
        else:
            tickers = [entry.ticker for entry in self._universe]
        return list(dict.fromkeys(tickers))

    async def scan(
        self,
        params: Optional[ScanParameters] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Any = None,
        today: Optional[date] = None,
    ) -> ScanResult:
        """
        Run a scan.

        Args:
            params: Scan parameters; unset fields fall back to defaults
            on_progress: Called with (phase, message, percent)
            cancel_event: Object with ``is_set()`` checked between batches
            today: Reference date for days-to-expiration

        Returns:
            ScanResult with sorted, filtered contracts

        Raises:
            ScanError: On an invalid sort field (before any request), a
                rejected API key, when every ticker fails, on cancellation,
                or on any unexpected failure
        """
        start = time.monotonic()
        reporter = ProgressReporter(on_progress)

        self.phase = ScanPhase.INIT
        reporter.emit(ScanPhase.INIT, "Preparing scan...", 0)

        try:
            merged = self.merge_params(params)
            tickers = self.resolve_tickers(merged)
            logger.info(f"Starting scan of {len(tickers)} tickers")

            # Only these are filtered server-side
            api_params: Dict[str, Any] = {
                "contract_kind": merged.contract_kind,
                "expiration_gte": merged.expiration_gte,
                "expiration_lte": merged.expiration_lte,
            }

            self.phase = ScanPhase.FETCHING
            reporter.emit(ScanPhase.FETCHING, "Fetching options data...", 0)

            def on_ticker(ticker: str, completed: int, total: int, status: str) -> None:
                percent = round(completed / total * FETCH_PROGRESS_SHARE) if total else 0
                verb = "Fetching" if status == "fetching" else "Fetched"
                reporter.emit(
                    ScanPhase.FETCHING,
                    f"{verb} {ticker}... ({completed}/{total})",
                    percent,
                )

            fetched = await self.client.fetch_for_tickers(
                tickers, api_params, on_ticker, cancel_event
            )

            if tickers and not fetched.succeeded:
                raise ScanError(
                    f"All {len(tickers)} ticker fetches failed; check connectivity",
                    phase=ScanPhase.FETCHING.value,
                )

            self.phase = ScanPhase.PROCESSING
            reporter.emit(
                ScanPhase.PROCESSING,
                f"Processing {len(fetched.contracts)} contracts...",
                FETCH_PROGRESS_SHARE,
            )

            universe_map = build_universe_map(self._universe)
            normalized = normalize_contracts(fetched.contracts, universe_map, today)

            chain = create_filter_chain(merged)
            log_filter_diagnostics(normalized, chain)
            filtered = apply_filters(normalized, chain)
            contracts = sort_contracts(filtered, merged.sort_by or "ask", merged.sort_dir or "asc")

            stats = SummaryStats(
                total_fetched=len(fetched.contracts),
                after_filters=len(contracts),
                tickers_scanned=len(tickers),
                scan_duration_ms=int((time.monotonic() - start) * 1000),
                timestamp=isoformat_utc(),
                tickers_failed=len(fetched.errors),
                failed_tickers=fetched.failed_tickers,
            )
            result = ScanResult(contracts=contracts, stats=stats, params=merged)

        except ScanError as e:
            self._fail(reporter, str(e))
            raise

        except CredentialError as e:
            self._fail(reporter, f"API key rejected ({e.status})")
            raise ScanError(
                f"API key rejected ({e.status}); check POLYGON_API_KEY",
                phase=ScanPhase.FETCHING.value,
            ) from e

        except Exception as e:
            failed_phase = self.phase.value
            logger.exception("Scan failed")
            self._fail(reporter, f"Scan failed: {e}")
            raise ScanError(f"Scan failed: {e}", phase=failed_phase) from e

        self.last_result = result
        self.last_normalized = normalized
        self.phase = ScanPhase.COMPLETE
        logger.info(
            f"Scan complete: {stats.after_filters}/{stats.total_fetched} contracts "
            f"from {stats.tickers_scanned - stats.tickers_failed}/{stats.tickers_scanned} tickers "
            f"in {stats.scan_duration_ms}ms"
        )
        reporter.emit(ScanPhase.COMPLETE, f"Found {len(contracts)} contracts", 100)
        return result

    def _fail(self, reporter: ProgressReporter, message: str) -> None:
        self.phase = ScanPhase.ERROR
        logger.error(message)
        reporter.emit(ScanPhase.ERROR, message)

    def refilter(self, overrides: Optional[ScanParameters] = None) -> ScanResult:
        """
        Re-filter the last scan's contracts without fetching.

        Set fields of ``overrides`` replace the last scan's parameters. Use 0
        rather than None to relax a numeric minimum. Contract kind and
        expiration bounds are tested client-side here; a ticker list narrows
        the result to those underlyings.

        Args:
            overrides: Parameters to change

        Returns:
            New ScanResult (also stored as the last result)

        Raises:
            ScanError: If no scan has completed yet, or the sort is invalid
        """
        if self.last_result is None:
            raise ScanError("No previous scan results to filter")

        start = time.monotonic()
        previous = self.last_result
        params = overrides.merged_over(previous.params) if overrides else previous.params
        validate_sort(params)

        chain = create_filter_chain(params, include_server_side=True)
        if overrides is not None and overrides.tickers:
            chain.append(allow_list("underlying_ticker", overrides.tickers, label="tickers"))

        log_filter_diagnostics(self.last_normalized, chain)
        filtered = apply_filters(self.last_normalized, chain)
        contracts = sort_contracts(filtered, params.sort_by or "ask", params.sort_dir or "asc")

        stats = SummaryStats(
            total_fetched=previous.stats.total_fetched,
            after_filters=len(contracts),
            tickers_scanned=previous.stats.tickers_scanned,
            scan_duration_ms=int((time.monotonic() - start) * 1000),
            timestamp=isoformat_utc(),
            tickers_failed=previous.stats.tickers_failed,
            failed_tickers=list(previous.stats.failed_tickers),
        )
        result = ScanResult(contracts=contracts, stats=stats, params=params)
        self.last_result = result
        logger.info(f"Re-filtered {len(self.last_normalized)} contracts -> {len(contracts)}")
        return result

    def get_universe(self) -> List[UniverseEntry]:
        return list(self._universe)

    def set_universe(self, universe: Sequence[UniverseEntry]) -> None:
        self._universe = list(universe)

    def add_to_universe(self, entries: Sequence[UniverseEntry]) -> None:
        """Append entries whose ticker is not already present."""
        existing = {entry.ticker for entry in self._universe}
        additions = []
        for entry in entries:
            if entry.ticker not in existing:
                additions.append(entry)
                existing.add(entry.ticker)
        self._universe = self._universe + additions

    def remove_from_universe(self, tickers: Sequence[str]) -> None:
        to_remove = set(tickers)
        self._universe = [entry for entry in self._universe if entry.ticker not in to_remove]

    def get_industries(self) -> List[str]:
        return sorted({entry.industry for entry in self._universe if entry.industry})

    def get_countries(self) -> List[str]:
        return sorted({entry.country for entry in self._universe if entry.country})
