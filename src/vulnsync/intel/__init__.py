# Intel Module - Vulnerability Intelligence Pipeline
#
# Provides disclosure models, feed fetchers (NVD, CISA KEV), the
# normalizer and threat store, the ingestion orchestrator, and the
# per-tenant correlation engine with its risk scorer and fan-out.

from .errors import (
    VulnSyncError,
    FeedFetchError,
    NormalizationError,
    IngestionInProgressError,
    InventoryError,
)
from .models import (
    ThreatSeverity,
    ThreatSource,
    ThreatItem,
    ExploitationDetails,
    Correlation,
    ImpactedSoftware,
    RiskFactors,
    ThreatDetails,
    normalize_product_name,
    parse_cpe,
)
from .fetcher import IntelFetcher
from .nvd_fetcher import NVDFetcher
from .kev_fetcher import KEVFetcher
from .store import ThreatStore
from .correlation_store import CorrelationStore
from .normalizer import Normalizer, normalize_nvd_record, kev_entry_to_threat
from .inventory import (
    SoftwareEntry,
    DeviceScan,
    AssetFlags,
    SoftwareInventory,
    InMemoryInventory,
    JSONFileInventory,
    load_inventory,
)
from .matcher import InventoryIndex, build_inventory_index, is_product_match
from .risk import calculate_risk_score, build_risk_factors
from .correlation_engine import (
    CorrelationEngine,
    CorrelationRunResult,
    generate_action_recommendations,
)
from .fanout import FanOutCoordinator, FanOutReport
from .orchestrator import IngestionOrchestrator, IngestionReport, SourceResult

__all__ = [
    # Errors
    "VulnSyncError",
    "FeedFetchError",
    "NormalizationError",
    "IngestionInProgressError",
    "InventoryError",
    # Models
    "ThreatSeverity",
    "ThreatSource",
    "ThreatItem",
    "ExploitationDetails",
    "Correlation",
    "ImpactedSoftware",
    "RiskFactors",
    "ThreatDetails",
    "normalize_product_name",
    "parse_cpe",
    # Fetchers
    "IntelFetcher",
    "NVDFetcher",
    "KEVFetcher",
    # Storage
    "ThreatStore",
    "CorrelationStore",
    # Normalization
    "Normalizer",
    "normalize_nvd_record",
    "kev_entry_to_threat",
    # Inventory
    "SoftwareEntry",
    "DeviceScan",
    "AssetFlags",
    "SoftwareInventory",
    "InMemoryInventory",
    "JSONFileInventory",
    "load_inventory",
    # Correlation
    "InventoryIndex",
    "build_inventory_index",
    "is_product_match",
    "calculate_risk_score",
    "build_risk_factors",
    "CorrelationEngine",
    "CorrelationRunResult",
    "generate_action_recommendations",
    "FanOutCoordinator",
    "FanOutReport",
    # Orchestration
    "IngestionOrchestrator",
    "IngestionReport",
    "SourceResult",
]
