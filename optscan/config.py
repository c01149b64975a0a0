"""
Configuration module for the options scanner.

Contains API endpoints, rate limits, default scan parameters, cache limits,
and logging settings.
"""

import os
from pathlib import Path

# API Base URL (Polygon.io / Massive.com)
POLYGON_API_BASE = "https://api.polygon.io"
API_KEY = os.getenv("POLYGON_API_KEY", "")

# Rate limiting
DEFAULT_CONCURRENCY = 2  # Tickers fetched in parallel per batch
REQUEST_DELAY_MS = 350  # Delay between pages and between batches
RETRY_ATTEMPTS = 3  # Total attempts per request
RETRY_BACKOFF_BASE_MS = 1000  # Base delay for exponential backoff
PAGE_LIMIT = 250  # Max results per page (API max)
REQUEST_TIMEOUT_SECONDS = 30

# Default scan parameters
DEFAULT_CONTRACT_KIND = "call"
DEFAULT_EXPIRATION_GTE = "2026-01-01"
DEFAULT_EXPIRATION_LTE = None  # No upper bound
DEFAULT_PRICE_MIN = 0.05
DEFAULT_PRICE_MAX = 0.25
DEFAULT_PRICE_FIELD = "last"  # Illiquid options often lack quotes
DEFAULT_DELTA_MIN = 0.0
DEFAULT_DELTA_MAX = 0.40
DEFAULT_IV_MIN = 0.0
DEFAULT_IV_MAX = 1.0  # 100%
DEFAULT_MIN_OPEN_INTEREST = 50
DEFAULT_MIN_VOLUME = 0
DEFAULT_SORT_BY = "ask"
DEFAULT_SORT_DIR = "asc"

# Within 2% of the underlying price counts as at-the-money
ATM_THRESHOLD = 0.02

# Data directories (relative to project root)
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
CACHE_DIR = DATA_DIR / "cache"

# Scan cache limits
CACHE_MAX_SCANS = 10
CACHE_SOFT_EXPIRY_HOURS = 4  # Flag as stale
CACHE_HARD_EXPIRY_DAYS = 7  # Delete on prune
CACHE_MAX_SIZE_BYTES = 50 * 1024 * 1024

# Logging configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
