"""
Tabular views of scan results.

Flattens contracts into DataFrames and aggregates volume and open interest
per underlying.
"""

import logging
from typing import Sequence

import pandas as pd

from .models import METADATA_FIELDS, NormalizedContract

logger = logging.getLogger(__name__)

AGGREGATE_COLUMNS = ["ticker", "industry", "total_volume", "total_oi", "contract_count", "ratio"]


def contracts_to_frame(contracts: Sequence[NormalizedContract]) -> pd.DataFrame:
    """
    Convert contracts to a flat DataFrame.

    Metadata fields become top-level columns; enums become their string values.

    Args:
        contracts: Normalized contracts

    Returns:
        DataFrame with one row per contract (empty if no contracts)
    """
    if not contracts:
        return pd.DataFrame()

    rows = []
    for contract in contracts:
        row = contract.to_dict()
        metadata = row.pop("metadata") or {}
        for key in METADATA_FIELDS:
            row[key] = metadata.get(key) or None
        rows.append(row)

    df = pd.DataFrame(rows)
    if "expiration_date" in df.columns:
        df["expiration_date"] = pd.to_datetime(df["expiration_date"], errors="coerce")
    return df


def aggregate_by_ticker(contracts: Sequence[NormalizedContract]) -> pd.DataFrame:
    """
    Total volume and open interest per underlying.

    Missing volume or open interest counts as zero. The ratio is volume over
    open interest, 0 when there is no open interest.

    Args:
        contracts: Normalized contracts

    Returns:
        DataFrame with ticker, industry, total_volume, total_oi,
        contract_count and ratio, sorted by ratio descending
    """
    if not contracts:
        return pd.DataFrame(columns=AGGREGATE_COLUMNS)

    df = pd.DataFrame(
        {
            "ticker": [c.underlying_ticker for c in contracts],
            "industry": [c.metadata.industry or "Unknown" for c in contracts],
            "volume": [c.volume or 0 for c in contracts],
            "open_interest": [c.open_interest or 0 for c in contracts],
        }
    )

    grouped = (
        df.groupby("ticker", sort=False)
        .agg(
            industry=("industry", "first"),
            total_volume=("volume", "sum"),
            total_oi=("open_interest", "sum"),
            contract_count=("volume", "size"),
        )
        .reset_index()
    )

    grouped["ratio"] = [
        volume / oi if oi > 0 else 0.0
        for volume, oi in zip(grouped["total_volume"], grouped["total_oi"])
    ]

    grouped = grouped.sort_values("ratio", ascending=False, kind="stable").reset_index(drop=True)
    logger.debug(f"Aggregated {len(contracts)} contracts into {len(grouped)} tickers")
    return grouped[AGGREGATE_COLUMNS]
