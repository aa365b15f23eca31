# vulnsync - Main Package
#
# Vulnerability intelligence sync: pulls recent CVE disclosures from NVD
# and the CISA Known Exploited Vulnerabilities catalogue, keeps them in a
# local threat store, and correlates them against each tenant's software
# inventory to produce per-tenant risk-scored correlations.

__version__ = "0.1.0"
__description__ = "Vulnerability feed ingestion and per-tenant correlation"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
    load_settings,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "load_settings",
]
