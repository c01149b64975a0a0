"""
Filter functions for normalized option contracts.

Each factory returns a named FilterPredicate. Predicates are pure and
independent; a chain passes a contract only if every predicate passes.

Missing analytics (IV, delta, open interest, volume, spread, DTE, metadata)
never exclude a contract. Price predicates exclude on a missing price
because the price is what they test.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .models import Moneyness, NormalizedContract, ScanParameters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterPredicate:
    """A named, pure test on a NormalizedContract."""
    name: str
    kind: str
    evaluate: Callable[[NormalizedContract], bool] = field(compare=False, repr=False)
    params: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __call__(self, contract: NormalizedContract) -> bool:
        return bool(self.evaluate(contract))


@dataclass
class FilterDiagnostic:
    """How one predicate affected a contract set."""
    name: str
    passed_individually: int
    remaining: int
    removed: int


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        if math.isinf(value):
            return "inf"
        return f"{value:g}"
    return str(value)


def price_range(min_price: float, max_price: float, field_name: str = "ask") -> FilterPredicate:
    """Price on ``field_name`` within [min, max]; missing or non-positive fails."""
    def evaluate(contract: NormalizedContract) -> bool:
        price = contract.get(field_name)
        if price is None or price <= 0:
            return False
        return min_price <= price <= max_price

    return FilterPredicate(
        name=f"priceRange({_fmt(min_price)}-{_fmt(max_price)}, {field_name})",
        kind="priceRange",
        evaluate=evaluate,
        params={"min": min_price, "max": max_price, "field": field_name},
    )


def min_price(minimum: float, field_name: str = "ask") -> FilterPredicate:
    def evaluate(contract: NormalizedContract) -> bool:
        price = contract.get(field_name)
        return price is not None and price >= minimum

    return FilterPredicate(f"minPrice({_fmt(minimum)}, {field_name})", "minPrice", evaluate,
                           {"min": minimum, "field": field_name})


def max_price(maximum: float, field_name: str = "ask") -> FilterPredicate:
    def evaluate(contract: NormalizedContract) -> bool:
        price = contract.get(field_name)
        return price is not None and price <= maximum

    return FilterPredicate(f"maxPrice({_fmt(maximum)}, {field_name})", "maxPrice", evaluate,
                           {"max": maximum, "field": field_name})


def require_field(field_name: str) -> FilterPredicate:
    """Field must be present and greater than zero."""
    def evaluate(contract: NormalizedContract) -> bool:
        value = contract.get(field_name)
        return value is not None and value > 0

    return FilterPredicate(f"hasPrice({field_name})", "requireField", evaluate,
                           {"field": field_name})


def min_bound(field_name: str, minimum: float) -> FilterPredicate:
    """Value >= minimum; missing value passes."""
    def evaluate(contract: NormalizedContract) -> bool:
        value = contract.get(field_name)
        if value is None:
            return True
        return value >= minimum

    return FilterPredicate(f"min({field_name}, {_fmt(minimum)})", "minBound", evaluate,
                           {"field": field_name, "min": minimum})


def max_bound(field_name: str, maximum: float) -> FilterPredicate:
    """Value <= maximum; missing value passes."""
    def evaluate(contract: NormalizedContract) -> bool:
        value = contract.get(field_name)
        if value is None:
            return True
        return value <= maximum

    return FilterPredicate(f"max({field_name}, {_fmt(maximum)})", "maxBound", evaluate,
                           {"field": field_name, "max": maximum})


def iv_range(min_iv: float, max_iv: float) -> FilterPredicate:
    """Implied volatility (decimal fraction) within range; missing IV passes."""
    def evaluate(contract: NormalizedContract) -> bool:
        iv = contract.implied_volatility
        if iv is None:
            return True
        return min_iv <= iv <= max_iv

    return FilterPredicate(f"ivRange({_fmt(min_iv)}-{_fmt(max_iv)})", "ivRange", evaluate,
                           {"min": min_iv, "max": max_iv})


def delta_range(min_delta: float, max_delta: float) -> FilterPredicate:
    """Absolute delta within range; missing delta passes."""
    def evaluate(contract: NormalizedContract) -> bool:
        if contract.delta is None:
            return True
        return min_delta <= abs(contract.delta) <= max_delta

    return FilterPredicate(f"deltaRange({_fmt(min_delta)}-{_fmt(max_delta)})", "deltaRange",
                           evaluate, {"min": min_delta, "max": max_delta})


def min_open_interest(minimum: int) -> FilterPredicate:
    predicate = min_bound("open_interest", minimum)
    return FilterPredicate(f"minOpenInterest({minimum})", "minBound", predicate.evaluate,
                           predicate.params)


def min_volume(minimum: int) -> FilterPredicate:
    predicate = min_bound("volume", minimum)
    return FilterPredicate(f"minVolume({minimum})", "minBound", predicate.evaluate,
                           predicate.params)


def dte_range(min_dte: Optional[int] = None, max_dte: Optional[int] = None) -> FilterPredicate:
    """Days to expiration within the given bounds; missing DTE passes."""
    def evaluate(contract: NormalizedContract) -> bool:
        dte = contract.days_to_expiration
        if dte is None:
            return True
        if min_dte is not None and dte < min_dte:
            return False
        if max_dte is not None and dte > max_dte:
            return False
        return True

    low = "" if min_dte is None else min_dte
    high = "" if max_dte is None else max_dte
    return FilterPredicate(f"dteRange({low}-{high})", "dteRange", evaluate,
                           {"min": min_dte, "max": max_dte})


def expiration_range(gte: Optional[str] = None, lte: Optional[str] = None) -> FilterPredicate:
    """
    Expiration date (YYYY-MM-DD) within bounds; missing expiration passes.

    ISO dates compare correctly as strings.
    """
    def evaluate(contract: NormalizedContract) -> bool:
        expiration = contract.expiration_date
        if not expiration:
            return True
        if gte and expiration < gte:
            return False
        if lte and expiration > lte:
            return False
        return True

    return FilterPredicate(f"expiration({gte or ''}..{lte or ''})", "expirationRange",
                           evaluate, {"gte": gte, "lte": lte})


def max_spread(max_spread_pct: float) -> FilterPredicate:
    """Bid-ask spread percentage at most the limit; missing spread passes."""
    return FilterPredicate(f"maxSpread({_fmt(max_spread_pct)}%)", "maxBound",
                           max_bound("bid_ask_spread_pct", max_spread_pct).evaluate,
                           {"field": "bid_ask_spread_pct", "max": max_spread_pct})


def contract_kind(kind: str) -> FilterPredicate:
    """Contract kind match; contracts of unknown kind pass."""
    wanted = kind.lower()

    def evaluate(contract: NormalizedContract) -> bool:
        value = contract.get("contract_kind")
        return value is None or value == wanted

    return FilterPredicate(f"contractType({wanted})", "contractKind", evaluate, {"kind": wanted})


def allow_list(field_name: str, allowed: Iterable[str], label: Optional[str] = None) -> FilterPredicate:
    """Field must be in ``allowed``; missing or blank value passes."""
    allowed_set = frozenset(allowed)

    def evaluate(contract: NormalizedContract) -> bool:
        value = contract.get(field_name)
        if value is None or value == "":
            return True
        return value in allowed_set

    return FilterPredicate(
        f"{label or field_name}({','.join(sorted(allowed_set))})",
        "allowList",
        evaluate,
        {"field": field_name, "allowed": sorted(allowed_set)},
    )


def industry(industries: Iterable[str]) -> FilterPredicate:
    return allow_list("industry", industries, label="industry")


def country(countries: Iterable[str]) -> FilterPredicate:
    return allow_list("country", countries, label="country")


def moneyness(allowed: Iterable[str]) -> FilterPredicate:
    """Moneyness in ``allowed``; unclassified contracts pass."""
    allowed_set = frozenset(a.upper() for a in allowed)

    def evaluate(contract: NormalizedContract) -> bool:
        if contract.moneyness == Moneyness.UNKNOWN:
            return True
        return contract.moneyness.value in allowed_set

    return FilterPredicate(f"moneyness({','.join(sorted(allowed_set))})", "allowList", evaluate,
                           {"field": "moneyness", "allowed": sorted(allowed_set)})


def has_greeks() -> FilterPredicate:
    return FilterPredicate("hasGreeks", "requireField", lambda c: c.delta is not None,
                           {"field": "delta"})


def create_filter_chain(
    params: ScanParameters,
    include_server_side: bool = False,
) -> List[FilterPredicate]:
    """
    Build the predicate list for a set of scan parameters.

    Only parameters that are set produce a predicate. The order of the
    list determines diagnostics order only.

    Args:
        params: Merged scan parameters
        include_server_side: Also test contract kind and expiration bounds,
            which the provider normally applies before data arrives

    Returns:
        Ordered list of FilterPredicate
    """
    filters: List[FilterPredicate] = []
    price_field = params.price_field or "ask"

    if params.price_min is not None or params.price_max is not None:
        low = params.price_min if params.price_min is not None else 0.0
        high = params.price_max if params.price_max is not None else math.inf
        filters.append(price_range(low, high, price_field))

    if params.price_field:
        filters.append(require_field(params.price_field))

    if params.dte_min is not None or params.dte_max is not None:
        filters.append(dte_range(params.dte_min, params.dte_max))

    if params.iv_min is not None or params.iv_max is not None:
        low = params.iv_min if params.iv_min is not None else 0.0
        high = params.iv_max if params.iv_max is not None else math.inf
        filters.append(iv_range(low, high))

    if params.delta_min is not None or params.delta_max is not None:
        low = params.delta_min if params.delta_min is not None else 0.0
        high = params.delta_max if params.delta_max is not None else 1.0
        filters.append(delta_range(low, high))

    if params.min_open_interest is not None and params.min_open_interest > 0:
        filters.append(min_open_interest(params.min_open_interest))

    if params.min_volume is not None and params.min_volume > 0:
        filters.append(min_volume(params.min_volume))

    if params.max_spread_pct is not None:
        filters.append(max_spread(params.max_spread_pct))

    if include_server_side and params.contract_kind:
        filters.append(contract_kind(params.contract_kind))

    if include_server_side and (params.expiration_gte or params.expiration_lte):
        filters.append(expiration_range(params.expiration_gte, params.expiration_lte))

    if params.moneyness:
        filters.append(moneyness(params.moneyness))

    if params.industries:
        filters.append(industry(params.industries))

    if params.countries:
        filters.append(country(params.countries))

    return filters


def apply_filters(
    contracts: Iterable[NormalizedContract],
    predicates: Sequence[FilterPredicate],
) -> List[NormalizedContract]:
    """Keep contracts passing every predicate. An empty chain keeps all."""
    return [c for c in contracts if all(p(c) for p in predicates)]


def filter_diagnostics(
    contracts: Sequence[NormalizedContract],
    predicates: Sequence[FilterPredicate],
) -> List[FilterDiagnostic]:
    """
    Report, per predicate, how many contracts pass it on its own and how
    many it removes when applied in chain order.
    """
    diagnostics = []
    remaining = list(contracts)
    for predicate in predicates:
        passed = sum(1 for c in contracts if predicate(c))
        before = len(remaining)
        remaining = [c for c in remaining if predicate(c)]
        diagnostics.append(
            FilterDiagnostic(
                name=predicate.name,
                passed_individually=passed,
                remaining=len(remaining),
                removed=before - len(remaining),
            )
        )
    return diagnostics


def log_filter_diagnostics(
    contracts: Sequence[NormalizedContract],
    predicates: Sequence[FilterPredicate],
) -> None:
    """Log filter diagnostics at DEBUG level."""
    if not logger.isEnabledFor(logging.DEBUG) or not contracts:
        return

    total = len(contracts)
    logger.debug(f"Filter chain: {[p.name for p in predicates]}")
    for field_name in ("bid", "ask", "mid", "last"):
        has_value = sum(1 for c in contracts if (c.get(field_name) or 0) > 0)
        logger.debug(f"{field_name}: {has_value}/{total} have data")
    for diag in filter_diagnostics(contracts, predicates):
        pct = diag.passed_individually / total * 100
        logger.debug(
            f"{diag.name}: {diag.passed_individually}/{total} pass ({pct:.1f}%), "
            f"removed {diag.removed}, {diag.remaining} remaining"
        )
