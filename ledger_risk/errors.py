"""
errors.py – Exception taxonomy shared by the data source, scorers and traversal.
"""
from __future__ import annotations


class LedgerRiskError(Exception):
    """Base class for every error raised by this package."""


class InvalidAddress(LedgerRiskError, ValueError):
    """Seed address is malformed. Raised before any ledger request is made."""

    def __init__(self, address: str):
        super().__init__(f"Invalid ledger address: {address!r}")
        self.address = address


class DataSourceError(LedgerRiskError):
    """A ledger request for a single address failed."""

    def __init__(self, message: str, address: str | None = None):
        super().__init__(message)
        self.address = address


class AccountNotFound(DataSourceError):
    """The ledger has no account object for the address (unfunded / deleted)."""


class LedgerUnavailable(DataSourceError):
    """Transport-level failure: retries exhausted, HTTP error or garbage response."""
