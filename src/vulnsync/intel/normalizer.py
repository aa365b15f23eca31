# Intel Module - Feed Record Normalizer
#
# Turns raw feed records into canonical ThreatItems and merges them
# into the ThreatStore:
#
#   NVD record  -> CVSS (v3.1 > v3.0 > v2), severity, English
#                  description (<= 1000 chars), affected products from
#                  CPE match criteria, reference URLs; upserted.
#   KEV entry   -> existing row: flagged exploited + KEV date only.
#                  new row: synthesized as high / CVSS 7.5 (KEV carries
#                  no score), products from vendorProject + product.
#
# A malformed record is logged and skipped; the rest of the batch
# proceeds.

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import NormalizationError
from .models import (
    ThreatItem,
    ThreatSeverity,
    ThreatSource,
    normalize_cve_id,
    normalize_product_names,
    parse_cpe,
)
from .store import ThreatStore

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 1000
NO_DESCRIPTION = "No description available"

KEV_DEFAULT_SEVERITY = ThreatSeverity.HIGH
KEV_DEFAULT_CVSS = 7.5

# Newest scoring standard first; v2 severity is derived by threshold
_CVSS_V3_KEYS = ("cvssMetricV31", "cvssMetricV30")
_CVSS_V2_KEY = "cvssMetricV2"


def extract_cvss(cve: Dict[str, Any]) -> Tuple[float, ThreatSeverity]:
    """Return ``(base_score, severity)`` from an NVD ``metrics`` block."""
    metrics = cve.get("metrics") or {}

    for key in _CVSS_V3_KEYS:
        metric_list = metrics.get(key) or []
        if metric_list:
            data = metric_list[0].get("cvssData") or {}
            score = float(data.get("baseScore", 0.0))
            return score, ThreatSeverity.parse(data.get("baseSeverity"), score)

    v2_list = metrics.get(_CVSS_V2_KEY) or []
    if v2_list:
        data = v2_list[0].get("cvssData") or {}
        score = float(data.get("baseScore", 0.0))
        return score, ThreatSeverity.from_cvss_v2(score)

    return 0.0, ThreatSeverity.LOW


def extract_affected_products(configurations: Optional[List[Dict[str, Any]]]) -> List[str]:
    """Walk every CPE match entry and collect normalized vendor/product names.

    Short or malformed CPE strings are skipped.
    """
    products: List[str] = []
    for config in configurations or []:
        for node in config.get("nodes") or []:
            for match in node.get("cpeMatch") or []:
                product = parse_cpe(match.get("criteria"))
                if product is None:
                    if match.get("criteria"):
                        logger.debug("Skipping malformed CPE %r", match.get("criteria"))
                    continue
                if product not in products:
                    products.append(product)
    return products


def extract_description(cve: Dict[str, Any]) -> str:
    for desc in cve.get("descriptions") or []:
        if desc.get("lang") == "en" and desc.get("value"):
            return desc["value"][:MAX_DESCRIPTION_LENGTH]
    return NO_DESCRIPTION


def normalize_nvd_record(record: Dict[str, Any]) -> ThreatItem:
    """Build a ThreatItem from one NVD ``vulnerabilities`` wrapper.

    Raises:
        NormalizationError: if the record has no valid id, an invalid
            date, or an out-of-range score.
    """
    cve = record.get("cve") if isinstance(record, dict) else None
    if not cve:
        raise NormalizationError("NVD record without a 'cve' object")

    cve_id = normalize_cve_id(cve.get("id"))
    try:
        score, severity = extract_cvss(cve)
    except (TypeError, ValueError, AttributeError) as exc:
        raise NormalizationError(f"{cve_id}: unreadable CVSS metrics: {exc}") from exc

    references = [
        ref["url"] for ref in cve.get("references") or [] if ref.get("url")
    ]

    return ThreatItem(
        cve_id=cve_id,
        title=f"{cve_id} - Vulnerability",
        description=extract_description(cve),
        severity=severity,
        cvss_score=score,
        affected_products=extract_affected_products(cve.get("configurations")),
        published_date=cve.get("published"),
        source=ThreatSource.NVD,
        references=references,
    )


def kev_entry_to_threat(entry: Dict[str, Any]) -> ThreatItem:
    """Synthesize a ThreatItem for a KEV-only disclosure.

    The KEV catalogue carries no campaign or IOC data, so no
    exploitation details are attached; upgrading an existing
    row adds none either.
    """
    cve_id = normalize_cve_id(entry.get("cveID"))
    date_added = entry.get("dateAdded")

    return ThreatItem(
        cve_id=cve_id,
        title=entry.get("vulnerabilityName") or f"{cve_id} - Known Exploited Vulnerability",
        description=(entry.get("shortDescription") or
                     "Known exploited vulnerability identified by CISA")[:MAX_DESCRIPTION_LENGTH],
        severity=KEV_DEFAULT_SEVERITY,
        cvss_score=KEV_DEFAULT_CVSS,
        exploited=True,
        affected_products=normalize_product_names(
            [entry.get("product"), entry.get("vendorProject")]
        ),
        published_date=date_added,
        source=ThreatSource.CISA_KEV,
        references=[],
        kev_date=date_added,
    )


class Normalizer:
    """Applies raw feed batches to the ThreatStore, one record at a time."""

    def __init__(self, store: ThreatStore):
        self._store = store

    @property
    def store(self) -> ThreatStore:
        return self._store

    def apply_nvd_record(self, record: Dict[str, Any]) -> ThreatItem:
        return self._store.upsert(normalize_nvd_record(record))

    def apply_kev_entry(self, entry: Dict[str, Any]) -> ThreatItem:
        """Upgrade an existing item to exploited, or synthesize a new one."""
        cve_id = normalize_cve_id(entry.get("cveID"))
        if self._store.mark_exploited(cve_id, entry.get("dateAdded")):
            return self._store.get(cve_id)
        return self._store.upsert(kev_entry_to_threat(entry))

    def ingest(self, source: ThreatSource, records: Iterable[Dict[str, Any]]) -> int:
        """Merge a batch from one feed; returns the number of records applied."""
        apply = (
            self.apply_nvd_record if source == ThreatSource.NVD else self.apply_kev_entry
        )
        processed = 0
        for record in records:
            try:
                apply(record)
                processed += 1
            except NormalizationError as exc:
                logger.warning("Skipping %s record: %s", source.value, exc)
            except Exception:
                logger.exception(
                    "Failed to process %s record %s",
                    source.value, _record_id(record),
                )
        return processed


def _record_id(record: Any) -> str:
    if not isinstance(record, dict):
        return repr(record)[:40]
    cve = record.get("cve")
    if isinstance(cve, dict):
        return str(cve.get("id"))
    return str(record.get("cveID"))
