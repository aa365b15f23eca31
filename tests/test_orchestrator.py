"""
Tests for the ingestion orchestrator.

Covers: a full cycle merging both feeds, per-source failure isolation,
the Idle/Running guard under concurrent triggers, last ingestion time,
fan-out hand-off, status reporting, callbacks, audit events, and the
APScheduler lifecycle.
"""

import threading
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from vulnsync.core.audit_log import EventType
from vulnsync.intel.errors import FeedFetchError, IngestionInProgressError
from vulnsync.intel.fanout import FanOutReport
from vulnsync.intel.fetcher import IntelFetcher
from vulnsync.intel.models import ThreatSource, to_iso
from vulnsync.intel.normalizer import Normalizer
from vulnsync.intel.orchestrator import SCHEDULER_JOB_ID, IngestionOrchestrator

from conftest import FIXED_NOW, kev_entry, nvd_record


# ===================================================================
# Helpers
# ===================================================================

class StubFetcher(IntelFetcher):
    """Controllable stub feed."""

    def __init__(self, name: str, source: ThreatSource,
                 records: Optional[List[Dict[str, Any]]] = None):
        super().__init__(name, "http://stub.invalid")
        self.source = source
        self._records = records or []
        self.error: Optional[Exception] = None
        self.calls = 0

    def configure(self, **kwargs):
        self._configure_common(kwargs)

    def fetch(self):
        self.calls += 1
        if self.error is not None:
            self.record_error()
            raise self.error
        self.record_fetch(len(self._records))
        return list(self._records)


class BlockingFetcher(StubFetcher):
    """Feed that holds the cycle open until released."""

    def __init__(self, name, source, records=None):
        super().__init__(name, source, records)
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch(self):
        self.started.set()
        self.release.wait(timeout=5)
        return super().fetch()


@pytest.fixture
def nvd():
    return StubFetcher("nvd", ThreatSource.NVD, [
        nvd_record("CVE-2026-0001", base_score=9.8, base_severity="CRITICAL",
                   cpes=["cpe:2.3:a:google:chrome:*:*:*:*:*:*:*:*"]),
        nvd_record("CVE-2026-0002", base_score=5.0, base_severity="MEDIUM"),
    ])


@pytest.fixture
def kev():
    return StubFetcher("cisa_kev", ThreatSource.CISA_KEV, [
        kev_entry("CVE-2026-0001"),
        kev_entry("CVE-2021-44228", vendor="Apache", product="Log4j"),
    ])


@pytest.fixture
def normalizer(threat_store):
    return Normalizer(threat_store)


def _orchestrator(fetchers, normalizer, **kwargs):
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return IngestionOrchestrator(fetchers=fetchers, normalizer=normalizer, **kwargs)


# ===================================================================
# Cycles
# ===================================================================

class TestRunCycle:
    def test_both_sources_merged(self, nvd, kev, normalizer, threat_store):
        orch = _orchestrator([nvd, kev], normalizer)

        report = orch.run_cycle()

        assert report.sources_succeeded == 2
        assert report.total_processed == 4
        assert threat_store.count() == 3
        upgraded = threat_store.get("CVE-2026-0001")
        assert upgraded.exploited is True
        assert upgraded.cvss_score == 9.8
        assert threat_store.get("CVE-2021-44228").cvss_score == 7.5
        assert threat_store.get("CVE-2026-0002").exploited is False

    def test_failed_source_does_not_abort_cycle(self, nvd, kev, normalizer, threat_store):
        nvd.error = FeedFetchError("nvd", "HTTP 503", status_code=503)
        orch = _orchestrator([nvd, kev], normalizer)

        report = orch.run_cycle()

        results = {r.source: r for r in report.source_results}
        assert results["nvd"].success is False
        assert "HTTP 503" in results["nvd"].error
        assert results["cisa_kev"].processed == 2
        assert threat_store.count() == 2
        assert orch.last_ingestion_time == FIXED_NOW

    def test_both_sources_failing(self, nvd, kev, normalizer, threat_store):
        nvd.error = RuntimeError("dns")
        kev.error = RuntimeError("dns")
        orch = _orchestrator([nvd, kev], normalizer)

        report = orch.run_cycle()

        assert report.sources_failed == 2
        assert threat_store.count() == 0
        assert orch.last_ingestion_time == FIXED_NOW

    def test_merge_in_registration_order(self, normalizer):
        order = []
        original = normalizer.ingest

        def recording_ingest(source, records):
            order.append(source)
            return original(source, records)

        normalizer.ingest = recording_ingest
        nvd = StubFetcher("nvd", ThreatSource.NVD)
        kev = StubFetcher("cisa_kev", ThreatSource.CISA_KEV)
        _orchestrator([nvd, kev], normalizer).run_cycle()

        assert order == [ThreatSource.NVD, ThreatSource.CISA_KEV]

    def test_fan_out_after_guard_released(self, nvd, normalizer):
        coordinator = MagicMock()
        seen = {}
        orch = _orchestrator([nvd], normalizer, coordinator=coordinator)

        def fan_out():
            seen["is_ingesting"] = orch.is_ingesting
            return FanOutReport(FIXED_NOW)

        coordinator.fan_out.side_effect = fan_out
        report = orch.run_cycle()

        coordinator.fan_out.assert_called_once_with()
        assert seen["is_ingesting"] is False
        assert report.fanout is not None

    def test_fan_out_failure_not_raised(self, nvd, normalizer):
        coordinator = MagicMock()
        coordinator.fan_out.side_effect = RuntimeError("pool exploded")
        orch = _orchestrator([nvd], normalizer, coordinator=coordinator)

        report = orch.run_cycle()

        assert report.fanout is None
        assert orch.last_report is report

    def test_on_complete_callback(self, nvd, normalizer):
        received = []
        orch = _orchestrator([nvd], normalizer, on_complete=received.append)
        report = orch.trigger_manual()
        assert received == [report]

    def test_callback_errors_swallowed(self, nvd, normalizer):
        orch = _orchestrator([nvd], normalizer)
        orch.set_on_complete(MagicMock(side_effect=ValueError("bad callback")))
        assert orch.trigger_manual().sources_succeeded == 1

    def test_audit_events(self, nvd, kev, normalizer, audit_logger):
        kev.error = FeedFetchError("cisa_kev", "timed out")
        _orchestrator([nvd, kev], normalizer).run_cycle()

        assert len(audit_logger.read_events(EventType.INGESTION_STARTED)) == 1
        failed = audit_logger.read_events(EventType.SOURCE_FAILED)
        assert [e["details"]["source"] for e in failed] == ["cisa_kev"]
        completed = audit_logger.read_events(EventType.INGESTION_COMPLETED)
        assert completed[0]["details"]["sources_failed"] == 1


# ===================================================================
# Concurrency guard
# ===================================================================

class TestGuard:
    def test_manual_trigger_while_running_rejected(self, normalizer, threat_store, audit_logger):
        slow = BlockingFetcher("nvd", ThreatSource.NVD, [nvd_record("CVE-2026-0001")])
        orch = _orchestrator([slow], normalizer)
        results = {}

        worker = threading.Thread(target=lambda: results.setdefault("report", orch.run_cycle()))
        worker.start()
        assert slow.started.wait(timeout=5)
        assert orch.is_ingesting is True

        with pytest.raises(IngestionInProgressError, match="already in progress"):
            orch.trigger_manual()

        slow.release.set()
        worker.join(timeout=5)

        assert slow.calls == 1
        assert results["report"].total_processed == 1
        assert orch.is_ingesting is False
        assert len(audit_logger.read_events(EventType.INGESTION_REJECTED)) == 1

    def test_concurrent_triggers_single_winner(self, normalizer):
        slow = BlockingFetcher("nvd", ThreatSource.NVD)
        orch = _orchestrator([slow], normalizer)
        outcomes = []
        lock = threading.Lock()
        barrier = threading.Barrier(5)

        def trigger():
            barrier.wait()
            try:
                orch.trigger_manual()
                result = "ran"
            except IngestionInProgressError:
                result = "rejected"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=trigger) for _ in range(5)]
        for t in threads:
            t.start()
        assert slow.started.wait(timeout=5)
        # Losers return immediately; only the winner is still blocked
        for t in threads:
            t.join(timeout=0.5)
        slow.release.set()
        for t in threads:
            t.join(timeout=5)

        assert outcomes.count("ran") == 1
        assert outcomes.count("rejected") == 4
        assert slow.calls == 1

    def test_guard_released_after_cycle(self, nvd, normalizer):
        orch = _orchestrator([nvd], normalizer)
        orch.run_cycle()
        orch.run_cycle()
        assert nvd.calls == 2

    def test_scheduled_run_swallows_in_progress(self, normalizer):
        slow = BlockingFetcher("nvd", ThreatSource.NVD)
        orch = _orchestrator([slow], normalizer)
        worker = threading.Thread(target=orch.run_cycle)
        worker.start()
        assert slow.started.wait(timeout=5)

        orch._scheduled_run()  # must not raise

        slow.release.set()
        worker.join(timeout=5)
        assert slow.calls == 1


# ===================================================================
# Status & scheduling
# ===================================================================

class TestStatus:
    def test_initial_status(self, nvd, normalizer):
        status = _orchestrator([nvd], normalizer).status()
        assert status["is_running"] is False
        assert status["is_ingesting"] is False
        assert status["last_ingestion_time"] is None
        assert status["next_scheduled_time"] is None

    def test_after_cycle(self, nvd, normalizer):
        orch = _orchestrator([nvd], normalizer)
        orch.run_cycle()
        status = orch.status()
        assert status["last_ingestion_time"] == to_iso(FIXED_NOW)
        assert status["sources"][0]["total_fetched"] == 2

    def test_scheduler_lifecycle(self, nvd, normalizer):
        orch = _orchestrator([nvd], normalizer, interval_seconds=3600)
        orch.start()
        try:
            assert orch.is_running is True
            assert orch._scheduler.get_job(SCHEDULER_JOB_ID) is not None
            assert orch.status()["next_scheduled_time"] is not None
            orch.start()  # idempotent
        finally:
            orch.stop()
        assert orch.is_running is False
        assert orch.status()["next_scheduled_time"] is None
        assert nvd.calls == 0

    def test_invalid_interval(self, nvd, normalizer):
        with pytest.raises(ValueError):
            _orchestrator([nvd], normalizer, interval_seconds=0)
