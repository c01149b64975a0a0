"""Options scanner core: Polygon client, normalizer, filters, scanner and scan cache."""

from .cache import ScanCache
from .clients import PolygonClient
from .exceptions import CredentialError, HttpError, OptionsScannerError, ScanError
from .models import NormalizedContract, ScanParameters, ScanResult, ScanSnapshot, SummaryStats
from .scanner import OptionsScanner

__version__ = "0.1.0"

__all__ = [
    "CredentialError",
    "HttpError",
    "NormalizedContract",
    "OptionsScanner",
    "OptionsScannerError",
    "PolygonClient",
    "ScanCache",
    "ScanError",
    "ScanParameters",
    "ScanResult",
    "ScanSnapshot",
    "SummaryStats",
]
