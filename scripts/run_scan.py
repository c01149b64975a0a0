#!/usr/bin/env python3
"""
Options scan script.

Runs a scan over the default universe (or the given tickers), saves it to
the local scan cache and prints the top contracts.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from optscan import config
from optscan.analytics import aggregate_by_ticker
from optscan.cache import ScanCache
from optscan.clients import PolygonClient
from optscan.exceptions import ScanError
from optscan.models import ScanParameters
from optscan.scanner import SORTABLE_FIELDS, OptionsScanner
from optscan.universe import INDUSTRIES
from optscan.utils import ensure_directories, setup_logging


def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Scan Polygon options chains for cheap, liquid contracts"
    )

    parser.add_argument(
        "--tickers",
        help="Comma-separated tickers to scan instead of the default universe"
    )

    parser.add_argument(
        "--type",
        dest="contract_kind",
        choices=["call", "put"],
        default=config.DEFAULT_CONTRACT_KIND,
        help=f"Contract type (default: {config.DEFAULT_CONTRACT_KIND})"
    )

    parser.add_argument(
        "--exp-from",
        default=config.DEFAULT_EXPIRATION_GTE,
        help=f"Earliest expiration YYYY-MM-DD (default: {config.DEFAULT_EXPIRATION_GTE})"
    )

    parser.add_argument(
        "--exp-to",
        default=config.DEFAULT_EXPIRATION_LTE,
        help="Latest expiration YYYY-MM-DD (default: none)"
    )

    parser.add_argument(
        "--price-min",
        type=float,
        default=config.DEFAULT_PRICE_MIN,
        help=f"Minimum price (default: {config.DEFAULT_PRICE_MIN})"
    )

    parser.add_argument(
        "--price-max",
        type=float,
        default=config.DEFAULT_PRICE_MAX,
        help=f"Maximum price (default: {config.DEFAULT_PRICE_MAX})"
    )

    parser.add_argument(
        "--price-field",
        choices=["bid", "ask", "mid", "last"],
        default=config.DEFAULT_PRICE_FIELD,
        help=f"Price used by the price filter (default: {config.DEFAULT_PRICE_FIELD})"
    )

    parser.add_argument(
        "--min-oi",
        type=int,
        default=config.DEFAULT_MIN_OPEN_INTEREST,
        help=f"Minimum open interest (default: {config.DEFAULT_MIN_OPEN_INTEREST})"
    )

    parser.add_argument(
        "--industries",
        help=f"Comma-separated industries to keep (known: {'; '.join(INDUSTRIES)})"
    )

    parser.add_argument(
        "--sort",
        default=config.DEFAULT_SORT_BY,
        choices=sorted(SORTABLE_FIELDS),
        metavar="FIELD",
        help=f"Sort field (default: {config.DEFAULT_SORT_BY})"
    )

    parser.add_argument(
        "--top",
        type=int,
        default=20,
        help="Number of contracts to print (default: 20)"
    )

    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Do not save the scan to the local cache"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging (includes filter diagnostics)"
    )

    return parser.parse_args()


def print_progress(phase: str, message: str, percent: int) -> None:
    print(f"\r[{percent:3d}%] {message:<60}", end="", flush=True)
    if phase in ("complete", "error"):
        print()


def main():
    """Main entry point for a scan."""
    args = parse_args()

    logger = setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if not config.API_KEY:
        logger.error("POLYGON_API_KEY is not set")
        return 1

    params = ScanParameters(
        contract_kind=args.contract_kind,
        expiration_gte=args.exp_from,
        expiration_lte=args.exp_to,
        price_min=args.price_min,
        price_max=args.price_max,
        price_field=args.price_field,
        min_open_interest=args.min_oi,
        sort_by=args.sort,
    )
    if args.tickers:
        params.tickers = [t.strip().upper() for t in args.tickers.split(",") if t.strip()]
    if args.industries:
        industries = [i.strip() for i in args.industries.split(",") if i.strip()]
        unknown = [i for i in industries if i not in INDUSTRIES]
        if unknown:
            logger.error(f"Unknown industries: {', '.join(unknown)}")
            return 1
        params.industries = industries

    client = PolygonClient()
    scanner = OptionsScanner(client)

    try:
        result = asyncio.run(scanner.scan(params, on_progress=print_progress))
    except ScanError as e:
        logger.error(f"Scan failed: {e}")
        return 1
    finally:
        client.close()

    if not args.no_cache:
        ensure_directories()
        cache = ScanCache()
        if cache.initialize():
            cache.save_result(result, scanner.resolve_tickers(result.params))

    stats = result.stats

    # Print summary
    print("\n" + "=" * 60)
    print("SCAN SUMMARY")
    print("=" * 60)
    print(f"Tickers scanned: {stats.tickers_scanned} ({stats.tickers_failed} failed)")
    print(f"Contracts fetched: {stats.total_fetched}")
    print(f"After filters: {stats.after_filters}")
    print(f"Duration: {stats.scan_duration_ms / 1000:.1f}s")
    if stats.failed_tickers:
        print(f"Failed: {', '.join(stats.failed_tickers)}")

    if result.contracts:
        print("\n" + "=" * 60)
        print(f"TOP {min(args.top, len(result.contracts))} CONTRACTS")
        print("=" * 60)
        for c in result.contracts[:args.top]:
            print(
                f"{c.contract_id:<24} {c.underlying_ticker:<6} "
                f"strike={c.strike_price} exp={c.expiration_date} "
                f"bid={c.bid} ask={c.ask} last={c.last_trade_price} "
                f"oi={c.open_interest} {c.moneyness.value}"
            )

        print("\n" + "=" * 60)
        print("VOLUME / OPEN INTEREST BY TICKER")
        print("=" * 60)
        print(aggregate_by_ticker(result.contracts).head(10).to_string(index=False))

    return 0


if __name__ == "__main__":
    sys.exit(main())
