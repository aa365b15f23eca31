"""
Tests for the vulnsync command line entry point.

Network-bound commands run against stub fetchers.
"""

import json
from unittest.mock import patch

import pytest

from vulnsync.__main__ import build_orchestrator, build_parser, main
from vulnsync.core.config import load_settings
from vulnsync.intel.correlation_store import CorrelationStore
from vulnsync.intel.models import Correlation, RiskFactors, ThreatDetails


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("VULNSYNC_DATA_DIR", str(tmp_path))
    for name in ("VULNSYNC_THREAT_DB", "VULNSYNC_CORRELATION_DB",
                 "VULNSYNC_AUDIT_DIR", "VULNSYNC_INVENTORY_FILE"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_correlations_options(self):
        args = build_parser().parse_args(
            ["correlations", "acme", "--severity", "critical", "--min-risk", "70"]
        )
        assert args.tenant == "acme"
        assert args.severity == ["critical"]
        assert args.min_risk == 70

    def test_severity_case_insensitive(self):
        args = build_parser().parse_args(["correlations", "acme", "--severity", "HIGH"])
        assert args.severity == ["high"]

    def test_unknown_severity_rejected(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["correlations", "acme", "--severity", "severe"])
        assert exc_info.value.code == 2
        assert "invalid choice" in capsys.readouterr().err


class TestCommands:
    def test_status(self, data_dir, capsys):
        assert main(["status"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["threats"]["total"] == 0
        assert out["correlations"] == 0
        assert (data_dir / "threats.db").exists()

    def test_correlations(self, data_dir, capsys):
        store = CorrelationStore(str(data_dir / "correlations.db"))
        store.upsert(Correlation(
            cve_id="CVE-2026-0001",
            tenant_id="acme",
            impacted_endpoints=["D1"],
            impacted_software=[],
            risk_score=88,
            risk_factors=RiskFactors(cvss_score=8.8),
            threat_details=ThreatDetails(severity="high", exploited=False),
        ))
        store.close()

        assert main(["correlations", "acme"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["summary"]["total"] == 1
        assert out["correlations"][0]["risk_score"] == 88

    def test_ingest_with_failing_feeds(self, data_dir, capsys):
        with patch("vulnsync.intel.nvd_fetcher.NVDFetcher.fetch", side_effect=RuntimeError("offline")), \
             patch("vulnsync.intel.kev_fetcher.KEVFetcher.fetch", side_effect=RuntimeError("offline")):
            assert main(["ingest"]) == 1
        out = json.loads(capsys.readouterr().out)
        assert out["sources_failed"] == 2

    def test_missing_inventory_file(self, data_dir, capsys):
        missing = data_dir / "nowhere.json"
        assert main(["--inventory", str(missing), "ingest"]) == 2
        assert "Inventory error" in capsys.readouterr().err

    def test_bad_configuration(self, data_dir, monkeypatch, capsys):
        monkeypatch.setenv("VULNSYNC_SCAN_LIMIT", "lots")
        assert main(["status"]) == 2
        assert "VULNSYNC_SCAN_LIMIT" in capsys.readouterr().err


class TestWiring:
    def test_build_orchestrator_from_settings(self, data_dir, monkeypatch):
        monkeypatch.setenv("VULNSYNC_NVD_DAYS_BACK", "3")
        monkeypatch.setenv("VULNSYNC_INTERVAL_SECONDS", "600")
        orch = build_orchestrator(load_settings(str(data_dir / "missing.env")))
        status = orch.status()
        assert status["interval_seconds"] == 600
        assert [s["name"] for s in status["sources"]] == ["nvd", "cisa_kev"]
        assert orch._fetchers[0]._days_back == 3
