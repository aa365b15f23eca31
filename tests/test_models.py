"""
Tests for threat and correlation data models.

Covers: product-name normalization, CPE parsing, disclosure-id
validation, severity mapping, timestamp handling, ThreatItem and
Correlation validation and dict round trip.
"""

import pytest

from vulnsync.intel.errors import NormalizationError
from vulnsync.intel.models import (
    Correlation,
    ExploitationDetails,
    ImpactedSoftware,
    RiskFactors,
    ThreatDetails,
    ThreatItem,
    ThreatSeverity,
    ThreatSource,
    normalize_cve_id,
    normalize_product_name,
    normalize_product_names,
    parse_cpe,
    parse_timestamp,
    to_iso,
)


# ===================================================================
# Product name normalization
# ===================================================================

class TestNormalizeProductName:
    @pytest.mark.parametrize("raw, expected", [
        ("Google Chrome", "google chrome"),
        ("  Microsoft   Office  365 ", "microsoft office 365"),
        ("Node.js", "node js"),
        ("internet_explorer", "internet explorer"),
        ("Adobe Acrobat Reader DC (64-bit)", "adobe acrobat reader dc 64 bit"),
        ("", ""),
        (None, ""),
        ("---", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_product_name(raw) == expected

    @pytest.mark.parametrize("raw", [
        "Google Chrome",
        "Apache HTTP Server 2.4",
        "ÄÖÜ Software GmbH",
        "a__b--c  d",
        "\tTabs\nand newlines ",
        "already normalized",
    ])
    def test_idempotent(self, raw):
        once = normalize_product_name(raw)
        assert normalize_product_name(once) == once

    def test_names_deduplicated_and_empties_dropped(self):
        result = normalize_product_names(["Chrome", "chrome", "", None, "Google"])
        assert result == ["chrome", "google"]


# ===================================================================
# CPE parsing
# ===================================================================

class TestParseCpe:
    def test_vendor_and_product(self):
        cpe = "cpe:2.3:a:microsoft:office:16.0:*:*:*:*:*:*:*"
        assert parse_cpe(cpe) == "microsoft office"

    def test_underscores_become_spaces(self):
        cpe = "cpe:2.3:a:google:chrome_os:*:*:*:*:*:*:*:*"
        assert parse_cpe(cpe) == "google chrome os"

    def test_minimal_five_fields(self):
        assert parse_cpe("cpe:2.3:a:apache:http_server") == "apache http server"

    @pytest.mark.parametrize("cpe", [
        "cpe:2.3:a:microsoft",
        "garbage",
        "",
        None,
        "cpe:2.3:a:*:*:1.0",
        "cpe:2.3:a:-:office:1.0",
        "cpe:2.3:a:microsoft::1.0",
    ])
    def test_malformed_returns_none(self, cpe):
        assert parse_cpe(cpe) is None


# ===================================================================
# Identifiers, severity, timestamps
# ===================================================================

class TestIdentifiers:
    def test_uppercased(self):
        assert normalize_cve_id(" cve-2026-12345 ") == "CVE-2026-12345"

    @pytest.mark.parametrize("bad", ["", None, "CVE-26-1", "GHSA-xxxx-yyyy", "CVE-2026-12"])
    def test_invalid(self, bad):
        with pytest.raises(NormalizationError):
            normalize_cve_id(bad)


class TestSeverity:
    @pytest.mark.parametrize("score, expected", [
        (9.0, ThreatSeverity.CRITICAL),
        (10.0, ThreatSeverity.CRITICAL),
        (8.9, ThreatSeverity.HIGH),
        (7.0, ThreatSeverity.HIGH),
        (6.9, ThreatSeverity.MEDIUM),
        (4.0, ThreatSeverity.MEDIUM),
        (3.9, ThreatSeverity.LOW),
        (0.0, ThreatSeverity.LOW),
    ])
    def test_cvss_v2_thresholds(self, score, expected):
        assert ThreatSeverity.from_cvss_v2(score) == expected

    def test_parse_label(self):
        assert ThreatSeverity.parse("CRITICAL", 1.0) == ThreatSeverity.CRITICAL

    def test_parse_unknown_label_falls_back_to_score(self):
        assert ThreatSeverity.parse("NONE", 7.2) == ThreatSeverity.HIGH
        assert ThreatSeverity.parse(None, 2.0) == ThreatSeverity.LOW


class TestTimestamps:
    def test_zulu_suffix(self):
        assert to_iso("2026-10-10T08:15:00Z") == "2026-10-10T08:15:00+00:00"

    def test_naive_taken_as_utc(self):
        assert to_iso("2026-10-10T08:15:00.000") == "2026-10-10T08:15:00+00:00"

    def test_date_only(self):
        assert to_iso("2026-10-12") == "2026-10-12T00:00:00+00:00"

    def test_none_passthrough(self):
        assert to_iso(None) is None
        assert parse_timestamp("") is None

    def test_invalid(self):
        with pytest.raises(NormalizationError):
            parse_timestamp("not a date")


# ===================================================================
# ThreatItem
# ===================================================================

class TestThreatItem:
    def test_post_init_normalizes(self):
        item = ThreatItem(
            cve_id="cve-2026-0001",
            severity="high",
            source="cisa_kev",
            cvss_score=8,
            affected_products=["Google Chrome", "google  chrome", ""],
            published_date="2026-10-01",
        )
        assert item.cve_id == "CVE-2026-0001"
        assert item.severity == ThreatSeverity.HIGH
        assert item.source == ThreatSource.CISA_KEV
        assert item.cvss_score == 8.0
        assert item.affected_products == ["google chrome"]
        assert item.published_date == "2026-10-01T00:00:00+00:00"

    @pytest.mark.parametrize("score", [-0.1, 10.1])
    def test_cvss_out_of_range(self, score):
        with pytest.raises(NormalizationError):
            ThreatItem(cve_id="CVE-2026-0001", cvss_score=score)

    def test_exploit_available(self):
        item = ThreatItem(cve_id="CVE-2026-0001")
        assert item.exploit_available is False
        item.exploitation_details = ExploitationDetails(exploit_available=True)
        assert item.exploit_available is True

    def test_dict_round_trip(self):
        item = ThreatItem(
            cve_id="CVE-2026-0001",
            severity=ThreatSeverity.CRITICAL,
            cvss_score=9.8,
            exploited=True,
            affected_products=["google chrome"],
            kev_date="2026-10-12",
            exploitation_details=ExploitationDetails(campaigns=["ransomware"]),
        )
        d = item.to_dict()
        assert d["severity"] == "critical"
        assert d["source"] == "nvd"
        assert ThreatItem.from_dict(d) == item


# ===================================================================
# Correlation
# ===================================================================

def _correlation(risk_score=50):
    return Correlation(
        cve_id="cve-2026-0001",
        tenant_id="acme",
        impacted_endpoints=["D1"],
        impacted_software=[ImpactedSoftware("Google Chrome", "118.0", ["D1"])],
        risk_score=risk_score,
        risk_factors=RiskFactors(cvss_score=5.0),
        threat_details=ThreatDetails(severity="medium", exploited=False),
    )


class TestCorrelation:
    def test_id_normalized(self):
        assert _correlation().cve_id == "CVE-2026-0001"

    @pytest.mark.parametrize("score", [-1, 101])
    def test_risk_out_of_range(self, score):
        with pytest.raises(ValueError):
            _correlation(risk_score=score)

    def test_dict_round_trip(self):
        c = _correlation()
        assert Correlation.from_dict(c.to_dict()) == c
