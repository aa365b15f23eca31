"""
Shared pytest fixtures for the vulnsync test suite.

Autouse fixtures below isolate tests from live data:
  - Audit logger -> temp directory (prevents test events in ./data/audit_logs)
"""

from datetime import datetime, timezone

import pytest

from vulnsync.intel.correlation_store import CorrelationStore
from vulnsync.intel.store import ThreatStore

FIXED_NOW = datetime(2026, 10, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path):
    """Point the global AuditLogger at a temp directory for every test.

    Without this, any code path calling ``get_audit_logger().log_event()``
    would create ``./audit_logs/`` in the working directory.
    """
    import vulnsync.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_logger = audit_mod.AuditLogger(log_dir=tmp_path / "audit_logs")
    audit_mod._audit_logger = audit_logger

    yield audit_logger

    audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture
def audit_logger(_isolate_audit_logs):
    return _isolate_audit_logs


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def threat_store(tmp_path):
    store = ThreatStore(str(tmp_path / "threats.db"))
    yield store
    store.close()


@pytest.fixture
def correlation_store(tmp_path):
    store = CorrelationStore(str(tmp_path / "correlations.db"))
    yield store
    store.close()


def nvd_record(
    cve_id="CVE-2026-1234",
    description="A test vulnerability",
    base_score=7.5,
    base_severity="HIGH",
    published="2026-10-10T08:15:00.000",
    cpes=None,
    references=None,
    metric_key="cvssMetricV31",
):
    """Build a minimal NVD ``vulnerabilities`` wrapper."""
    metrics = {}
    if metric_key is not None:
        data = {"baseScore": base_score}
        if base_severity is not None:
            data["baseSeverity"] = base_severity
        metrics[metric_key] = [{"cvssData": data}]
    return {
        "cve": {
            "id": cve_id,
            "published": published,
            "descriptions": [{"lang": "en", "value": description}],
            "metrics": metrics,
            "configurations": [
                {
                    "nodes": [
                        {
                            "cpeMatch": [
                                {"vulnerable": True, "criteria": c}
                                for c in (cpes or [])
                            ]
                        }
                    ]
                }
            ],
            "references": [{"url": u} for u in (references or [])],
        }
    }


def kev_entry(
    cve_id="CVE-2026-1234",
    vendor="Google",
    product="Chrome",
    date_added="2026-10-12",
    ransomware="Unknown",
):
    """Build a minimal CISA KEV catalogue entry."""
    return {
        "cveID": cve_id,
        "vendorProject": vendor,
        "product": product,
        "vulnerabilityName": f"{vendor} {product} Vulnerability",
        "dateAdded": date_added,
        "shortDescription": "Exploited in the wild.",
        "knownRansomwareCampaignUse": ransomware,
    }
