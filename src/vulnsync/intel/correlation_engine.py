# Intel Module - Correlation Engine
#
# For one tenant:
#   1. Index the software reported by the tenant's newest scans
#      (normalized name -> devices).
#   2. Load every ThreatItem published within the recency window.
#   3. Match each affected product against each inventory key.
#   4. For a threat with at least one match, score it and upsert a
#      Correlation carrying the impacted endpoints and software.
#
# Threats with no match produce no write. A failure on one threat is
# logged and the tenant run continues with the next one.

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .correlation_store import CorrelationStore
from .inventory import SoftwareInventory
from .matcher import InventoryIndex, build_inventory_index, is_product_match
from .models import (
    Correlation,
    ImpactedSoftware,
    ThreatDetails,
    ThreatItem,
    ThreatSeverity,
    normalize_product_name,
    to_iso,
    utcnow,
)
from .risk import build_risk_factors, calculate_risk_score
from .store import ThreatStore

logger = logging.getLogger(__name__)

DEFAULT_SCAN_LIMIT = 10
DEFAULT_THREAT_WINDOW_DAYS = 30
WIDE_IMPACT_THRESHOLD = 5


def generate_action_recommendations(threat: ThreatItem, endpoint_count: int) -> List[str]:
    """Rule-based guidance attached to each correlation."""
    recommendations: List[str] = []

    if threat.exploited:
        recommendations.append("URGENT: This vulnerability is actively exploited in the wild")
        recommendations.append("Apply security patches immediately")
        recommendations.append("Monitor affected systems for signs of compromise")
    else:
        recommendations.append("Apply security patches as soon as possible")
        recommendations.append("Monitor vendor security advisories")

    if threat.severity == ThreatSeverity.CRITICAL:
        recommendations.append("Prioritize patching - Critical severity")

    if endpoint_count > WIDE_IMPACT_THRESHOLD:
        recommendations.append(f"High impact: {endpoint_count} endpoints affected")
        recommendations.append("Consider staged deployment of patches")

    recommendations.append("Review vendor security documentation")
    return recommendations


@dataclass
class CorrelationRunResult:
    """Outcome of correlating one tenant."""

    tenant_id: str
    threats_checked: int = 0
    inventory_size: int = 0
    device_count: int = 0
    correlations_written: int = 0
    threat_errors: int = 0
    skipped: bool = False  # tenant has no scans
    matched: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class CorrelationEngine:
    """Matches the ThreatStore against each tenant's software inventory.

    Args:
        threat_store: Source of ThreatItems.
        correlation_store: Destination of Correlations (sole writer).
        inventory: Read-only software inventory collaborator.
        scan_limit: Number of newest scans indexed per tenant.
        threat_window_days: Only threats published this recently are
            (re-)correlated.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        threat_store: ThreatStore,
        correlation_store: CorrelationStore,
        inventory: SoftwareInventory,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
        threat_window_days: int = DEFAULT_THREAT_WINDOW_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._threats = threat_store
        self._correlations = correlation_store
        self._inventory = inventory
        self._scan_limit = scan_limit
        self._window = timedelta(days=threat_window_days)
        self._clock = clock or utcnow

    def correlate_tenant(self, tenant_id: str) -> CorrelationRunResult:
        """Recompute every Correlation for one tenant."""
        result = CorrelationRunResult(tenant_id=tenant_id)

        scans = self._inventory.recent_scans(tenant_id, limit=self._scan_limit)
        if not scans:
            logger.info("No scans found for tenant %s", tenant_id)
            result.skipped = True
            return result

        index = build_inventory_index(scans)
        result.inventory_size = len(index)
        result.device_count = len(index.devices)

        now = self._clock()
        threats = self._threats.recent(now - self._window)
        result.threats_checked = len(threats)
        logger.debug(
            "Checking %d threats against %d software items for tenant %s",
            len(threats), len(index), tenant_id,
        )

        for threat in threats:
            try:
                correlation = self.correlate_threat(threat, tenant_id, index, now)
            except Exception:
                result.threat_errors += 1
                logger.exception(
                    "Failed to correlate %s for tenant %s", threat.cve_id, tenant_id
                )
                continue
            if correlation is None:
                continue
            self._correlations.upsert(correlation)
            result.correlations_written += 1
            result.matched.append(threat.cve_id)

        logger.info(
            "Wrote %d threat correlations for tenant %s",
            result.correlations_written, tenant_id,
        )
        return result

    def correlate_threat(
        self,
        threat: ThreatItem,
        tenant_id: str,
        index: InventoryIndex,
        now: Optional[datetime] = None,
    ) -> Optional[Correlation]:
        """Build the Correlation for one threat, or None when nothing matches."""
        endpoints, software = self._find_impact(threat, index)
        if not endpoints:
            return None

        exposed = False
        critical = False
        for device_id in endpoints:
            flags = self._inventory.asset_flags(tenant_id, device_id)
            exposed = exposed or flags.internet_exposed
            critical = critical or flags.business_critical

        factors = build_risk_factors(
            cvss_score=threat.cvss_score,
            exploited=threat.exploited,
            endpoint_count=len(endpoints),
            internet_exposure=exposed,
            critical_system=critical,
        )
        checked = to_iso(now or self._clock())

        return Correlation(
            cve_id=threat.cve_id,
            tenant_id=tenant_id,
            impacted_endpoints=endpoints,
            impacted_software=software,
            risk_score=calculate_risk_score(factors),
            risk_factors=factors,
            threat_details=ThreatDetails(
                severity=threat.severity.value,
                exploited=threat.exploited,
                cisa_kev=threat.kev_date is not None,
                exploit_available=threat.exploit_available,
            ),
            action_recommendations=generate_action_recommendations(threat, len(endpoints)),
            last_checked=checked,
        )

    @staticmethod
    def _find_impact(
        threat: ThreatItem, index: InventoryIndex
    ) -> Tuple[List[str], List[ImpactedSoftware]]:
        endpoints = set()
        software: Dict[Tuple[str, str], set] = {}

        for product in threat.affected_products:
            normalized = normalize_product_name(product)
            for key, devices in index.products.items():
                if not is_product_match(normalized, key):
                    continue
                endpoints.update(devices)
                for device_id, entry in index.entries.get(key, []):
                    software.setdefault((entry.name, entry.version), set()).add(device_id)

        impacted = [
            ImpactedSoftware(name=name, version=version, endpoints=sorted(devices))
            for (name, version), devices in sorted(software.items())
        ]
        return sorted(endpoints), impacted
