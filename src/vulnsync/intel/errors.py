# Intel Module - Exception Hierarchy

from typing import Optional


class VulnSyncError(Exception):
    """Base class for all vulnsync errors."""


class FeedFetchError(VulnSyncError):
    """Raised when a feed request fails (transport error, timeout, non-2xx
    status, or an unparseable body). Feed clients never retry."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class NormalizationError(VulnSyncError):
    """Raised when a raw feed record cannot be turned into a ThreatItem."""


class IngestionInProgressError(VulnSyncError):
    """Raised when an ingestion cycle is triggered while one is running."""

    def __init__(self, message: str = "Ingestion already in progress"):
        super().__init__(message)


class InventoryError(VulnSyncError):
    """Raised when a software inventory export cannot be read."""
