"""Tests for contract normalization."""

from datetime import date

import pytest

from conftest import TODAY, make_raw_contract
from optscan.models import ContractKind, Moneyness, NormalizedContract, UniverseEntry
from optscan.normalize import (
    build_universe_map,
    calculate_dte,
    get_moneyness,
    normalize_contract,
    normalize_contracts,
    parse_option_ticker,
)

UNIVERSE_MAP = build_universe_map([
    UniverseEntry("XOM", "Exxon Mobil Corp", "Oil & Gas Integrated", "USA"),
])


def test_normalize_full_record():
    """Test a complete record maps every field."""
    contract = normalize_contract(make_raw_contract(), UNIVERSE_MAP, TODAY)

    assert contract.contract_id == "O:XOM260116C00120000"
    assert contract.underlying_ticker == "XOM"
    assert contract.contract_kind == ContractKind.CALL
    assert contract.strike_price == 120.0
    assert contract.expiration_date == "2026-01-16"
    assert contract.days_to_expiration == 15
    assert contract.mid == pytest.approx(0.15)
    assert contract.bid_ask_spread == pytest.approx(0.10)
    assert contract.bid_ask_spread_pct == pytest.approx(66.666, rel=1e-3)
    assert contract.last_trade_price == 0.15
    assert contract.open_interest == 100
    assert contract.volume == 10
    assert contract.delta == 0.25
    assert contract.implied_volatility == 0.35
    assert contract.moneyness == Moneyness.OTM
    assert contract.metadata.company == "Exxon Mobil Corp"
    assert contract.metadata.industry == "Oil & Gas Integrated"


def test_normalize_empty_record_never_raises():
    """Test a record with no sub-objects yields an all-null contract."""
    contract = normalize_contract({}, UNIVERSE_MAP, TODAY)

    assert contract.underlying_ticker == ""
    assert contract.contract_id == ""
    assert contract.bid is None
    assert contract.mid is None
    assert contract.bid_ask_spread is None
    assert contract.open_interest is None
    assert contract.moneyness == Moneyness.UNKNOWN
    assert contract.metadata.company == ""


def test_normalize_malformed_sub_objects():
    """Test non-dict sub-objects and junk values are treated as missing."""
    raw = {
        "details": "oops",
        "last_quote": None,
        "greeks": [],
        "open_interest": "n/a",
        "implied_volatility": float("nan"),
    }
    contract = normalize_contract(raw, UNIVERSE_MAP, TODAY)

    assert contract.open_interest is None
    assert contract.implied_volatility is None
    assert contract.delta is None


def test_underlying_ticker_priority():
    """Test details beats underlying_asset beats the fetch hint."""
    raw = {
        "details": {"underlying_ticker": "AAA"},
        "underlying_asset": {"ticker": "BBB"},
        "_ticker": "CCC",
    }
    assert normalize_contract(raw, {}, TODAY).underlying_ticker == "AAA"

    del raw["details"]["underlying_ticker"]
    assert normalize_contract(raw, {}, TODAY).underlying_ticker == "BBB"

    del raw["underlying_asset"]
    assert normalize_contract(raw, {}, TODAY).underlying_ticker == "CCC"


def test_fields_recovered_from_option_ticker():
    """Test kind, strike and expiration fall back to the OCC ticker."""
    raw = {"details": {"ticker": "O:CVX260320P00150000"}}
    contract = normalize_contract(raw, {}, TODAY)

    assert contract.underlying_ticker == "CVX"
    assert contract.contract_kind == ContractKind.PUT
    assert contract.strike_price == 150.0
    assert contract.expiration_date == "2026-03-20"


def test_provider_midpoint_preferred():
    """Test the provider midpoint wins over (bid + ask) / 2."""
    contract = normalize_contract(make_raw_contract(midpoint=0.12), UNIVERSE_MAP, TODAY)
    assert contract.mid == 0.12


def test_mid_requires_both_sides():
    """Test mid and spread stay null with a one-sided quote."""
    contract = normalize_contract(make_raw_contract(bid=None), UNIVERSE_MAP, TODAY)
    assert contract.mid is None
    assert contract.bid_ask_spread is None
    assert contract.bid_ask_spread_pct is None


def test_spread_requires_positive_mid():
    """Test a zero mid leaves the spread null."""
    contract = normalize_contract(make_raw_contract(bid=0, ask=0), UNIVERSE_MAP, TODAY)
    assert contract.mid == 0
    assert contract.bid_ask_spread is None


def test_missing_metadata_defaults_to_empty():
    """Test tickers outside the universe keep empty metadata."""
    contract = normalize_contract(make_raw_contract("ZZZ"), UNIVERSE_MAP, TODAY)
    assert contract.metadata.company == ""
    assert contract.get("company") is None


def test_calculate_dte():
    """Test days to expiration, including expired contracts."""
    assert calculate_dte("2026-01-16", TODAY) == 15
    assert calculate_dte("2026-01-01", TODAY) == 0
    assert calculate_dte("2025-12-25", TODAY) == -7
    assert calculate_dte("not-a-date", TODAY) is None
    assert calculate_dte(None, TODAY) is None


def test_moneyness_calls():
    """Test call moneyness around the underlying."""
    assert get_moneyness(120, 100, ContractKind.CALL) == Moneyness.OTM
    assert get_moneyness(80, 100, ContractKind.CALL) == Moneyness.ITM
    assert get_moneyness(101, 100, ContractKind.CALL) == Moneyness.ATM
    assert get_moneyness(102, 100, ContractKind.CALL) == Moneyness.ATM


def test_moneyness_puts_inverted():
    """Test put moneyness is the mirror of calls."""
    assert get_moneyness(80, 100, ContractKind.PUT) == Moneyness.OTM
    assert get_moneyness(120, 100, ContractKind.PUT) == Moneyness.ITM
    assert get_moneyness(99, 100, ContractKind.PUT) == Moneyness.ATM


def test_moneyness_unknown():
    """Test missing prices give UNKNOWN."""
    assert get_moneyness(None, 100, ContractKind.CALL) == Moneyness.UNKNOWN
    assert get_moneyness(100, None, ContractKind.CALL) == Moneyness.UNKNOWN
    assert get_moneyness(100, 0, ContractKind.CALL) == Moneyness.UNKNOWN


def test_parse_option_ticker():
    """Test OCC ticker parsing."""
    parsed = parse_option_ticker("O:AAPL230616C00150000")
    assert parsed["underlying"] == "AAPL"
    assert parsed["expiration"] == "2023-06-16"
    assert parsed["kind"] == ContractKind.CALL
    assert parsed["strike"] == 150.0

    assert parse_option_ticker("garbage")["underlying"] is None
    assert parse_option_ticker(None)["strike"] is None


def test_normalize_contracts_preserves_order():
    """Test batch normalization keeps input order."""
    raws = [make_raw_contract(strike=s) for s in (130.0, 110.0, 120.0)]
    contracts = normalize_contracts(raws, UNIVERSE_MAP, date(2026, 1, 1))
    assert [c.strike_price for c in contracts] == [130.0, 110.0, 120.0]


def test_contract_dict_round_trip_keeps_nulls():
    """Test to_dict/from_dict preserves None values and enums."""
    original = normalize_contract(make_raw_contract(bid=None, open_interest=None), UNIVERSE_MAP, TODAY)
    restored = NormalizedContract.from_dict(original.to_dict())

    assert restored == original
    assert restored.bid is None
    assert restored.open_interest is None
