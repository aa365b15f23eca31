# Intel Module - Threat & Correlation Data Models
#
# Defines the canonical records flowing through the pipeline:
#   ThreatItem   - one public vulnerability disclosure (CVE), keyed by id
#   Correlation  - the impact of one ThreatItem on one tenant's inventory
#
# Also hosts the text helpers shared by the normalizer and the
# correlation engine (product-name normalization, CPE parsing,
# disclosure-id validation, timestamp handling), so both sides of a
# product match are normalized by exactly the same code.

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import NormalizationError

CVE_ID_PATTERN = re.compile(r"^CVE-\d{4}-\d{4,}$")

# Anything that is not a letter or digit (underscore included, CPE uses
# it as a word separator) becomes a space.
_NON_ALNUM = re.compile(r"[\W_]+")


class ThreatSeverity(str, Enum):
    """Qualitative severity of a disclosure."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_cvss_v2(cls, score: float) -> "ThreatSeverity":
        """Map a legacy CVSS v2 base score to a severity level."""
        if score >= 9.0:
            return cls.CRITICAL
        if score >= 7.0:
            return cls.HIGH
        if score >= 4.0:
            return cls.MEDIUM
        return cls.LOW

    @classmethod
    def parse(cls, value: Optional[str], score: float = 0.0) -> "ThreatSeverity":
        """Parse a feed-provided severity label.

        Labels outside the four levels (``NONE``, empty, unknown) fall
        back to the threshold mapping of ``score``.
        """
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.from_cvss_v2(score)


class ThreatSource(str, Enum):
    """Feed that produced (or last rewrote) a ThreatItem."""

    NVD = "nvd"
    CISA_KEV = "cisa_kev"


# ---------------------------------------------------------------------------
# Text & time helpers
# ---------------------------------------------------------------------------


def normalize_product_name(name: Optional[str]) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace.

    Idempotent: ``normalize_product_name(normalize_product_name(s))``
    equals ``normalize_product_name(s)``.
    """
    if not name:
        return ""
    return " ".join(_NON_ALNUM.sub(" ", name.lower()).split())


def normalize_product_names(names: List[Optional[str]]) -> List[str]:
    """Normalize a list of names, dropping empties and duplicates."""
    result: List[str] = []
    for name in names:
        normalized = normalize_product_name(name)
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def parse_cpe(cpe: Optional[str]) -> Optional[str]:
    """Extract ``"vendor product"`` from a CPE 2.3 formatted string.

    CPE format: cpe:2.3:part:vendor:product:version:...

    Returns None for strings too short to carry a vendor and product,
    or whose vendor/product fields are empty or wildcards.
    """
    if not isinstance(cpe, str):
        return None
    parts = cpe.split(":")
    if len(parts) < 5:
        return None
    vendor, product = parts[3].strip(), parts[4].strip()
    if vendor in ("", "*", "-") or product in ("", "*", "-"):
        return None
    normalized = normalize_product_name(f"{vendor} {product}")
    return normalized or None


def normalize_cve_id(value: Optional[str]) -> str:
    """Uppercase and validate a disclosure identifier."""
    cve_id = (value or "").strip().upper()
    if not CVE_ID_PATTERN.match(cve_id):
        raise NormalizationError(f"invalid disclosure id: {value!r}")
    return cve_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            raise NormalizationError(f"invalid timestamp: {value!r}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(value: Union[str, datetime, None]) -> Optional[str]:
    """Canonical storage form: UTC, second precision, explicit offset."""
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Threat items
# ---------------------------------------------------------------------------


@dataclass
class ExploitationDetails:
    """Known exploitation context for a disclosure."""

    campaigns: List[str] = field(default_factory=list)
    iocs: List[str] = field(default_factory=list)
    exploit_available: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ExploitationDetails"]:
        if not data:
            return None
        return cls(
            campaigns=list(data.get("campaigns") or []),
            iocs=list(data.get("iocs") or []),
            exploit_available=bool(data.get("exploit_available", False)),
        )


@dataclass
class ThreatItem:
    """A canonical vulnerability disclosure.

    Exactly one ThreatItem exists per ``cve_id``; re-ingesting the same
    id updates the stored row in place.
    """

    cve_id: str
    title: str = ""
    description: str = ""
    severity: ThreatSeverity = ThreatSeverity.LOW
    cvss_score: float = 0.0
    exploited: bool = False
    affected_products: List[str] = field(default_factory=list)
    published_date: Optional[str] = None  # ISO 8601, UTC
    source: ThreatSource = ThreatSource.NVD
    references: List[str] = field(default_factory=list)
    kev_date: Optional[str] = None  # date added to the exploited list
    exploitation_details: Optional[ExploitationDetails] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.cve_id = normalize_cve_id(self.cve_id)
        self.severity = ThreatSeverity(self.severity)
        self.source = ThreatSource(self.source)
        self.cvss_score = float(self.cvss_score)
        if not 0.0 <= self.cvss_score <= 10.0:
            raise NormalizationError(
                f"{self.cve_id}: CVSS score {self.cvss_score} outside [0, 10]"
            )
        self.affected_products = normalize_product_names(self.affected_products)
        self.published_date = to_iso(self.published_date)
        self.kev_date = to_iso(self.kev_date)

    @property
    def exploit_available(self) -> bool:
        return bool(self.exploitation_details and self.exploitation_details.exploit_available)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["severity"] = self.severity.value
        d["source"] = self.source.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreatItem":
        return cls(
            cve_id=data["cve_id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            severity=data.get("severity", ThreatSeverity.LOW),
            cvss_score=data.get("cvss_score", 0.0),
            exploited=bool(data.get("exploited", False)),
            affected_products=list(data.get("affected_products") or []),
            published_date=data.get("published_date"),
            source=data.get("source", ThreatSource.NVD),
            references=list(data.get("references") or []),
            kev_date=data.get("kev_date"),
            exploitation_details=ExploitationDetails.from_dict(
                data.get("exploitation_details")
            ),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


# ---------------------------------------------------------------------------
# Correlations
# ---------------------------------------------------------------------------


@dataclass
class ImpactedSoftware:
    """A locally observed software entry that matched a disclosure."""

    name: str
    version: str = ""
    endpoints: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RiskFactors:
    """Inputs of the risk-score formula, kept for auditability."""

    cvss_score: float
    exploited_multiplier: float = 1.0
    endpoint_count: int = 1
    internet_exposure: bool = False
    critical_system: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ThreatDetails:
    """Snapshot of the threat at correlation time."""

    severity: str
    exploited: bool
    cisa_kev: bool = False
    exploit_available: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Correlation:
    """Impact of one ThreatItem on one tenant.

    At most one per ``(cve_id, tenant_id)``. Every correlation run
    rewrites all fields; only ``created_at`` survives from the first
    write.
    """

    cve_id: str
    tenant_id: str
    impacted_endpoints: List[str]
    impacted_software: List[ImpactedSoftware]
    risk_score: int
    risk_factors: RiskFactors
    threat_details: ThreatDetails
    action_recommendations: List[str] = field(default_factory=list)
    last_checked: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.cve_id = normalize_cve_id(self.cve_id)
        if not 0 <= self.risk_score <= 100:
            raise ValueError(f"risk_score {self.risk_score} outside [0, 100]")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Correlation":
        return cls(
            cve_id=data["cve_id"],
            tenant_id=data["tenant_id"],
            impacted_endpoints=list(data.get("impacted_endpoints") or []),
            impacted_software=[
                ImpactedSoftware(**sw) for sw in data.get("impacted_software") or []
            ],
            risk_score=int(data.get("risk_score", 0)),
            risk_factors=RiskFactors(**data["risk_factors"]),
            threat_details=ThreatDetails(**data["threat_details"]),
            action_recommendations=list(data.get("action_recommendations") or []),
            last_checked=data.get("last_checked"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
