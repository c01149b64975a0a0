"""
Data models for the options scanner.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from . import config


class ContractKind(str, Enum):
    CALL = "call"
    PUT = "put"


class Moneyness(str, Enum):
    ITM = "ITM"
    ATM = "ATM"
    OTM = "OTM"
    UNKNOWN = "unknown"


class ScanPhase(str, Enum):
    """Scan lifecycle: idle -> fetching -> processing -> complete, or error."""
    IDLE = "idle"
    INIT = "init"
    FETCHING = "fetching"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class UniverseEntry:
    """One underlying in the scan universe."""
    ticker: str
    company: str = ""
    industry: str = ""
    country: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UniverseEntry":
        return cls(
            ticker=str(data.get("ticker") or ""),
            company=str(data.get("company") or ""),
            industry=str(data.get("industry") or ""),
            country=str(data.get("country") or ""),
        )


@dataclass(frozen=True)
class ContractMetadata:
    """Descriptive data looked up from the universe by ticker."""
    company: str = ""
    industry: str = ""
    country: str = ""


# Short names accepted for sort and price fields
FIELD_ALIASES = {
    "last": "last_trade_price",
    "strike": "strike_price",
    "expiration": "expiration_date",
    "dte": "days_to_expiration",
    "iv": "implied_volatility",
    "oi": "open_interest",
    "spread": "bid_ask_spread",
    "spread_pct": "bid_ask_spread_pct",
    "underlying": "underlying_ticker",
    "type": "contract_kind",
    "break_even": "break_even_price",
}

METADATA_FIELDS = ("company", "industry", "country")


@dataclass(frozen=True)
class NormalizedContract:
    """
    Canonical contract record.

    Every field except the identifiers is nullable. A missing value stays
    None and is never coerced to zero.
    """
    contract_id: str
    underlying_ticker: str
    contract_kind: Optional[ContractKind] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[str] = None
    days_to_expiration: Optional[int] = None
    bid: Optional[float] = None
    ask: Optional[float] = None
    mid: Optional[float] = None
    last_trade_price: Optional[float] = None
    bid_ask_spread: Optional[float] = None
    bid_ask_spread_pct: Optional[float] = None
    implied_volatility: Optional[float] = None
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    volume: Optional[int] = None
    open_interest: Optional[int] = None
    underlying_price: Optional[float] = None
    break_even_price: Optional[float] = None
    moneyness: Moneyness = Moneyness.UNKNOWN
    metadata: ContractMetadata = field(default_factory=ContractMetadata)

    def get(self, name: str) -> Any:
        """
        Read a field by attribute name, alias or metadata key.

        Returns None for unknown names. Enum values are returned as their
        plain string value so they compare like strings.
        """
        name = FIELD_ALIASES.get(name, name)
        if name in METADATA_FIELDS:
            return getattr(self.metadata, name) or None
        value = getattr(self, name, None)
        if isinstance(value, Enum):
            return value.value
        return value

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["contract_kind"] = self.contract_kind.value if self.contract_kind else None
        data["moneyness"] = self.moneyness.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizedContract":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        kind = values.get("contract_kind")
        values["contract_kind"] = ContractKind(kind) if kind else None
        values["moneyness"] = Moneyness(values.get("moneyness") or Moneyness.UNKNOWN.value)
        values["metadata"] = ContractMetadata(**(values.get("metadata") or {}))
        return cls(**values)


@dataclass
class ScanParameters:
    """
    Scan configuration.

    Server-side: contract_kind, expiration_gte, expiration_lte.
    Everything else is enforced client-side by the filter chain.
    A None value means "no constraint".
    """
    contract_kind: Optional[str] = None
    expiration_gte: Optional[str] = None
    expiration_lte: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    price_field: Optional[str] = None
    delta_min: Optional[float] = None
    delta_max: Optional[float] = None
    iv_min: Optional[float] = None
    iv_max: Optional[float] = None
    min_open_interest: Optional[int] = None
    min_volume: Optional[int] = None
    dte_min: Optional[int] = None
    dte_max: Optional[int] = None
    max_spread_pct: Optional[float] = None
    moneyness: Optional[List[str]] = None
    industries: Optional[List[str]] = None
    countries: Optional[List[str]] = None
    tickers: Optional[List[str]] = None  # Overrides the universe
    sort_by: Optional[str] = None
    sort_dir: Optional[str] = None

    @classmethod
    def defaults(cls) -> "ScanParameters":
        return cls(
            contract_kind=config.DEFAULT_CONTRACT_KIND,
            expiration_gte=config.DEFAULT_EXPIRATION_GTE,
            expiration_lte=config.DEFAULT_EXPIRATION_LTE,
            price_min=config.DEFAULT_PRICE_MIN,
            price_max=config.DEFAULT_PRICE_MAX,
            price_field=config.DEFAULT_PRICE_FIELD,
            delta_min=config.DEFAULT_DELTA_MIN,
            delta_max=config.DEFAULT_DELTA_MAX,
            iv_min=config.DEFAULT_IV_MIN,
            iv_max=config.DEFAULT_IV_MAX,
            min_open_interest=config.DEFAULT_MIN_OPEN_INTEREST,
            min_volume=config.DEFAULT_MIN_VOLUME,
            sort_by=config.DEFAULT_SORT_BY,
            sort_dir=config.DEFAULT_SORT_DIR,
        )

    def merged_over(self, base: "ScanParameters") -> "ScanParameters":
        """Return ``base`` with every non-None field of self laid over it."""
        overrides = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }
        return replace(base, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanParameters":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SummaryStats:
    """Scan summary. tickers_scanned counts attempted tickers."""
    total_fetched: int
    after_filters: int
    tickers_scanned: int
    scan_duration_ms: int
    timestamp: str
    tickers_failed: int = 0
    failed_tickers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SummaryStats":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ScanResult:
    """Output of one scan: sorted contracts, stats and the merged parameters."""
    contracts: List[NormalizedContract]
    stats: SummaryStats
    params: ScanParameters


@dataclass
class ScanSnapshot:
    """Persisted scan. Read-only once written."""
    id: int
    created_at: str
    label: str
    scan_parameters: ScanParameters
    universe_tickers: List[str]
    contracts: List[NormalizedContract]
    summary_stats: SummaryStats
    size_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "label": self.label,
            "scan_parameters": self.scan_parameters.to_dict(),
            "universe_tickers": list(self.universe_tickers),
            "contracts": [c.to_dict() for c in self.contracts],
            "summary_stats": self.summary_stats.to_dict(),
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanSnapshot":
        return cls(
            id=int(data["id"]),
            created_at=data["created_at"],
            label=data.get("label", ""),
            scan_parameters=ScanParameters.from_dict(data.get("scan_parameters") or {}),
            universe_tickers=list(data.get("universe_tickers") or []),
            contracts=[NormalizedContract.from_dict(c) for c in data.get("contracts") or []],
            summary_stats=SummaryStats.from_dict(data["summary_stats"]),
            size_bytes=int(data.get("size_bytes") or 0),
        )


@dataclass
class SnapshotInfo:
    """Snapshot metadata for listings (no contracts)."""
    id: int
    created_at: str
    label: str
    contract_count: int
    size_bytes: int
    is_stale: bool
    is_expired: bool
    params: ScanParameters

    def __str__(self):
        flag = " [expired]" if self.is_expired else (" [stale]" if self.is_stale else "")
        return f"{self.id}  {self.created_at}  {self.label}{flag}"
