"""
Contract normalization module.

Maps raw, loosely-structured snapshot records from the provider into flat
NormalizedContract records enriched with universe metadata.
"""

import logging
import math
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from . import config
from .clients.polygon import TICKER_HINT_KEY
from .models import (
    ContractKind,
    ContractMetadata,
    Moneyness,
    NormalizedContract,
    UniverseEntry,
)
from .utils import parse_date, utc_now

logger = logging.getLogger(__name__)

# O:XOM260116C00120000 -> underlying, YYMMDD, C/P, strike * 1000
OPTION_TICKER_PATTERN = re.compile(r"^([A-Z.\-]+?)(\d{6})([CP])(\d{8})$")


def _as_float(value: Any) -> Optional[float]:
    """Coerce a payload value to float; None for anything unreadable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def _as_int(value: Any) -> Optional[int]:
    result = _as_float(value)
    return int(result) if result is not None else None


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def parse_option_ticker(ticker: Optional[str]) -> Dict[str, Any]:
    """
    Parse an OCC-style option ticker.

    Args:
        ticker: e.g. "O:AAPL230616C00150000"

    Returns:
        Dict with underlying, expiration (YYYY-MM-DD), kind and strike.
        All values are None if the ticker does not match.
    """
    parsed = {"underlying": None, "expiration": None, "kind": None, "strike": None}
    if not ticker or not isinstance(ticker, str):
        return parsed

    clean = ticker[2:] if ticker.startswith("O:") else ticker
    match = OPTION_TICKER_PATTERN.match(clean)
    if not match:
        return parsed

    underlying, date_str, kind_char, strike_str = match.groups()
    parsed["underlying"] = underlying
    parsed["expiration"] = f"20{date_str[0:2]}-{date_str[2:4]}-{date_str[4:6]}"
    parsed["kind"] = ContractKind.CALL if kind_char == "C" else ContractKind.PUT
    parsed["strike"] = int(strike_str) / 1000
    return parsed


def calculate_dte(expiration_date: Optional[str], today: Optional[date] = None) -> Optional[int]:
    """
    Whole days from today (UTC) to the expiration date.

    Negative for contracts that have already expired.

    Args:
        expiration_date: Date in YYYY-MM-DD format
        today: Reference date (defaults to the current UTC date)

    Returns:
        Days to expiration, or None if the date cannot be parsed
    """
    expiry = parse_date(expiration_date)
    if expiry is None:
        return None
    today = today or utc_now().date()
    return (expiry - today).days


def get_moneyness(
    strike: Optional[float],
    underlying_price: Optional[float],
    contract_kind: Optional[ContractKind],
) -> Moneyness:
    """
    Classify a strike relative to the underlying price.

    Within ATM_THRESHOLD (relative) of the underlying is ATM. Calls are OTM
    above the underlying; puts are OTM below it. Contracts of unknown kind
    use the put comparison.

    Args:
        strike: Strike price
        underlying_price: Current underlying price
        contract_kind: call or put

    Returns:
        ITM, ATM, OTM, or UNKNOWN when a price is missing
    """
    if strike is None or underlying_price is None or underlying_price <= 0:
        return Moneyness.UNKNOWN

    pct_diff = (strike - underlying_price) / underlying_price

    if abs(pct_diff) <= config.ATM_THRESHOLD:
        return Moneyness.ATM

    if contract_kind == ContractKind.CALL:
        return Moneyness.OTM if pct_diff > 0 else Moneyness.ITM
    return Moneyness.OTM if pct_diff < 0 else Moneyness.ITM


def build_universe_map(universe: Iterable[UniverseEntry]) -> Dict[str, UniverseEntry]:
    """Index universe entries by ticker. Later duplicates win."""
    return {entry.ticker: entry for entry in universe}


def _parse_kind(value: Any) -> Optional[ContractKind]:
    if isinstance(value, str):
        try:
            return ContractKind(value.strip().lower())
        except ValueError:
            return None
    return None


def normalize_contract(
    raw: Dict[str, Any],
    universe_map: Dict[str, UniverseEntry],
    today: Optional[date] = None,
) -> NormalizedContract:
    """
    Normalize a raw snapshot record.

    Never raises on missing or malformed sub-objects; absent values become
    None. A record without a resolvable ticker still yields a contract with
    an empty underlying ticker.

    Args:
        raw: Snapshot record (details, greeks, last_quote, last_trade, day,
            underlying_asset, implied_volatility, open_interest, ...)
        universe_map: Ticker -> UniverseEntry lookup
        today: Reference date for days-to-expiration

    Returns:
        NormalizedContract
    """
    if not isinstance(raw, dict):
        raw = {}

    details = _section(raw, "details")
    greeks = _section(raw, "greeks")
    last_quote = _section(raw, "last_quote")
    last_trade = _section(raw, "last_trade")
    day = _section(raw, "day")
    underlying = _section(raw, "underlying_asset")

    contract_id = details.get("ticker") or raw.get("ticker") or ""
    if not isinstance(contract_id, str):
        contract_id = str(contract_id)
    from_ticker = parse_option_ticker(contract_id)

    underlying_ticker = (
        details.get("underlying_ticker")
        or underlying.get("ticker")
        or raw.get(TICKER_HINT_KEY)
        or from_ticker["underlying"]
        or ""
    )
    underlying_ticker = str(underlying_ticker)

    kind = _parse_kind(details.get("contract_type")) or from_ticker["kind"]

    expiration = details.get("expiration_date") or from_ticker["expiration"]
    if expiration is not None and not isinstance(expiration, str):
        expiration = str(expiration)
    dte = calculate_dte(expiration, today) if expiration else None

    strike = _as_float(details.get("strike_price"))
    if strike is None:
        strike = from_ticker["strike"]

    bid = _as_float(last_quote.get("bid"))
    ask = _as_float(last_quote.get("ask"))
    mid = _as_float(last_quote.get("midpoint"))
    if mid is None and bid is not None and ask is not None:
        mid = (bid + ask) / 2

    spread = None
    spread_pct = None
    if bid is not None and ask is not None and mid is not None and mid > 0:
        spread = ask - bid
        spread_pct = (spread / mid) * 100

    underlying_price = _as_float(underlying.get("price"))

    meta = universe_map.get(underlying_ticker)
    metadata = ContractMetadata(
        company=meta.company if meta else "",
        industry=meta.industry if meta else "",
        country=meta.country if meta else "",
    )

    return NormalizedContract(
        contract_id=contract_id,
        underlying_ticker=underlying_ticker,
        contract_kind=kind,
        strike_price=strike,
        expiration_date=expiration or None,
        days_to_expiration=dte,
        bid=bid,
        ask=ask,
        mid=mid,
        last_trade_price=_as_float(last_trade.get("price")),
        bid_ask_spread=spread,
        bid_ask_spread_pct=spread_pct,
        implied_volatility=_as_float(raw.get("implied_volatility")),
        delta=_as_float(greeks.get("delta")),
        gamma=_as_float(greeks.get("gamma")),
        theta=_as_float(greeks.get("theta")),
        vega=_as_float(greeks.get("vega")),
        volume=_as_int(day.get("volume")),
        open_interest=_as_int(raw.get("open_interest")),
        underlying_price=underlying_price,
        break_even_price=_as_float(raw.get("break_even_price")),
        moneyness=get_moneyness(strike, underlying_price, kind),
        metadata=metadata,
    )


def normalize_contracts(
    raw_contracts: Iterable[Dict[str, Any]],
    universe_map: Dict[str, UniverseEntry],
    today: Optional[date] = None,
) -> List[NormalizedContract]:
    """Normalize a batch of raw records, preserving order."""
    today = today or utc_now().date()
    normalized = [normalize_contract(raw, universe_map, today) for raw in raw_contracts]
    missing_ticker = sum(1 for c in normalized if not c.underlying_ticker)
    if missing_ticker:
        logger.warning(f"{missing_ticker} contract(s) have no resolvable underlying ticker")
    return normalized
