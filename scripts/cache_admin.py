#!/usr/bin/env python3
"""
Scan cache administration.

List, inspect, delete and prune cached scans.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from optscan import config
from optscan.analytics import contracts_to_frame
from optscan.cache import ScanCache
from optscan.utils import format_bytes, setup_logging


def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Manage the local options scan cache")

    parser.add_argument(
        "--cache-dir",
        default=str(config.CACHE_DIR),
        help=f"Cache directory (default: {config.CACHE_DIR})"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List cached scans, newest first")

    show = subparsers.add_parser("show", help="Show the contracts of one scan")
    show.add_argument("scan_id", nargs="?", type=int, help="Scan id (default: latest)")
    show.add_argument("--top", type=int, default=20, help="Rows to print (default: 20)")

    delete = subparsers.add_parser("delete", help="Delete one scan")
    delete.add_argument("scan_id", type=int)

    subparsers.add_parser("clear", help="Delete every cached scan")
    subparsers.add_parser("prune", help="Delete expired scans")
    subparsers.add_parser("stats", help="Show cache usage")

    return parser.parse_args()


def main():
    """Main entry point for cache administration."""
    args = parse_args()
    logger = setup_logging()

    cache = ScanCache(base_dir=Path(args.cache_dir))
    if not cache.initialize():
        logger.error(f"Cache not available at {args.cache_dir}")
        return 1

    if args.command == "list":
        scans = cache.list_scans()
        if not scans:
            print("No cached scans")
        for info in scans:
            print(f"{info}  ({info.contract_count} contracts, {format_bytes(info.size_bytes)})")

    elif args.command == "show":
        snapshot = cache.load_scan(args.scan_id) if args.scan_id is not None else cache.get_latest_scan()
        if snapshot is None:
            logger.error("Scan not found")
            return 1
        print(f"{snapshot.label} ({snapshot.created_at})")
        print(f"Tickers: {', '.join(snapshot.universe_tickers)}")
        df = contracts_to_frame(snapshot.contracts)
        if df.empty:
            print("No contracts")
        else:
            columns = ["contract_id", "underlying_ticker", "strike_price", "expiration_date",
                       "bid", "ask", "last_trade_price", "open_interest", "moneyness"]
            print(df[columns].head(args.top).to_string(index=False))

    elif args.command == "delete":
        if not cache.delete_scan(args.scan_id):
            return 1
        print(f"Deleted scan {args.scan_id}")

    elif args.command == "clear":
        if not cache.clear_all():
            return 1
        print("Cache cleared")

    elif args.command == "prune":
        removed = cache.prune_expired()
        print(f"Removed {removed} expired scans")

    elif args.command == "stats":
        stats = cache.get_stats()
        print(f"Scans: {stats['scan_count']}/{stats['max_scans']}")
        print(f"Size: {stats['total_size']} of {format_bytes(stats['max_size_bytes'])}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
