"""
Exception types raised by the options scanner.
"""

from typing import Optional

import requests


class OptionsScannerError(Exception):
    """Base class for scanner errors."""


class HttpError(OptionsScannerError, requests.HTTPError):
    """Non-2xx response from the market-data provider."""

    def __init__(self, status: int, url: str, reason: str = ""):
        self.status = status
        self.url = url
        message = f"API request failed: {status} {reason}".rstrip()
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class CredentialError(HttpError):
    """HTTP 401/403: the API key was rejected. Never retried."""


class ScanError(OptionsScannerError):
    """
    Unrecoverable scan failure.

    Attributes:
        phase: Scan phase the failure happened in
    """

    def __init__(self, message: str, phase: Optional[str] = None):
        self.phase = phase
        super().__init__(message)
