# Intel Module - Ingestion Orchestrator
#
# Drives ingestion cycles:
#   - Schedules a cycle every ``interval_seconds`` (APScheduler)
#   - Fetches from every configured feed concurrently (thread pool)
#   - Tolerates per-source failure: a failed feed contributes nothing,
#     the other feed's records are still merged
#   - Merges results into the ThreatStore sequentially, in the order
#     the fetchers were given, through the Normalizer
#   - Records the cycle start as the last ingestion time, returns to
#     Idle, then hands off to the per-tenant fan-out
#
# Only one cycle runs at a time. The Idle -> Running transition is a
# non-blocking lock acquire, so concurrent triggers cannot both win;
# the loser gets IngestionInProgressError. Nothing is queued.

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from .errors import IngestionInProgressError
from .fanout import FanOutCoordinator, FanOutReport
from .fetcher import IntelFetcher
from .normalizer import Normalizer
from .models import to_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600
SCHEDULER_JOB_ID = "vulnsync_ingestion"


class SourceResult:
    """Outcome of one feed within a cycle."""

    def __init__(self, source: str):
        self.source = source
        self.fetched: int = 0
        self.processed: int = 0
        self.error: Optional[str] = None
        self.duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "success": self.success,
            "fetched": self.fetched,
            "processed": self.processed,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 1),
        }


class IngestionReport:
    """Summary of a full ingestion cycle."""

    def __init__(self, started: str, trigger: str = "manual"):
        self.started = started
        self.trigger = trigger
        self.finished: Optional[str] = None
        self.source_results: List[SourceResult] = []
        self.fanout: Optional[FanOutReport] = None

    @property
    def sources_succeeded(self) -> int:
        return sum(1 for r in self.source_results if r.success)

    @property
    def sources_failed(self) -> int:
        return sum(1 for r in self.source_results if not r.success)

    @property
    def total_processed(self) -> int:
        return sum(r.processed for r in self.source_results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started": self.started,
            "finished": self.finished,
            "trigger": self.trigger,
            "sources_succeeded": self.sources_succeeded,
            "sources_failed": self.sources_failed,
            "total_processed": self.total_processed,
            "source_results": [r.to_dict() for r in self.source_results],
            "fanout": self.fanout.to_dict() if self.fanout else None,
        }


class IngestionOrchestrator:
    """Coordinator for scheduled and manual ingestion cycles.

    Usage::

        orch = IngestionOrchestrator(
            fetchers=[NVDFetcher(), KEVFetcher()],
            normalizer=Normalizer(threat_store),
            coordinator=FanOutCoordinator(engine, inventory),
        )
        orch.start()            # cycle every interval_seconds
        orch.trigger_manual()   # immediate cycle, raises if one is running
        orch.stop()

    Args:
        fetchers: Feed clients, merged in this order.
        normalizer: Writes normalized records into the ThreatStore.
        coordinator: Optional per-tenant fan-out run after each cycle.
        interval_seconds: Scheduled cadence.
        clock: Returns the current UTC time; injectable for tests.
        on_complete: Optional callback receiving each IngestionReport.
    """

    def __init__(
        self,
        fetchers: List[IntelFetcher],
        normalizer: Normalizer,
        coordinator: Optional[FanOutCoordinator] = None,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
        on_complete: Optional[Callable[[IngestionReport], None]] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._fetchers: List[IntelFetcher] = list(fetchers)
        self._normalizer = normalizer
        self._coordinator = coordinator
        self._interval_seconds = interval_seconds
        self._clock = clock or utcnow

        self._run_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._last_ingestion_time: Optional[datetime] = None
        self._last_report: Optional[IngestionReport] = None
        self._on_complete = on_complete

    def set_on_complete(self, callback: Callable[[IngestionReport], None]) -> None:
        """Set a callback invoked after each cycle (and its fan-out)."""
        self._on_complete = callback

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self, run_immediately: bool = False) -> None:
        """Start the background scheduler."""
        with self._state_lock:
            if self._scheduler is not None:
                return

            job_kwargs: Dict[str, Any] = {}
            if run_immediately:
                # next_run_time=None would add the job paused
                job_kwargs["next_run_time"] = utcnow()

            self._scheduler = BackgroundScheduler(daemon=True, timezone="UTC")
            self._scheduler.add_job(
                self._scheduled_run,
                trigger=IntervalTrigger(seconds=self._interval_seconds, timezone="UTC"),
                id=SCHEDULER_JOB_ID,
                name="Threat intel ingestion",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                **job_kwargs,
            )
            self._scheduler.start()

        logger.info(
            "Ingestion scheduler started: every %d seconds", self._interval_seconds
        )
        get_audit_logger().log_event(
            EventType.SCHEDULER_STARTED,
            EventSeverity.INFO,
            "Ingestion scheduler started",
            details={"interval_seconds": self._interval_seconds},
        )

    def stop(self) -> None:
        """Stop the background scheduler; a running cycle is not interrupted."""
        with self._state_lock:
            if self._scheduler is None:
                return
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("Ingestion scheduler stopped")
        get_audit_logger().log_event(
            EventType.SCHEDULER_STOPPED,
            EventSeverity.INFO,
            "Ingestion scheduler stopped",
        )

    @property
    def is_running(self) -> bool:
        """True while the scheduler is active."""
        with self._state_lock:
            return self._scheduler is not None and self._scheduler.running

    @property
    def is_ingesting(self) -> bool:
        """True while a cycle holds the run guard."""
        return self._run_lock.locked()

    def _scheduled_run(self) -> None:
        try:
            self.run_cycle(trigger="scheduled")
        except IngestionInProgressError:
            logger.info("Skipping scheduled ingestion: previous cycle still running")
        except Exception:
            logger.exception("Scheduled ingestion cycle failed")

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def trigger_manual(self) -> IngestionReport:
        """Run a cycle now.

        Raises:
            IngestionInProgressError: if a cycle is already running.
        """
        logger.info("Manual ingestion triggered")
        return self.run_cycle(trigger="manual")

    def run_cycle(self, trigger: str = "manual") -> IngestionReport:
        """Execute one ingestion cycle followed by the tenant fan-out."""
        if not self._run_lock.acquire(blocking=False):
            get_audit_logger().log_event(
                EventType.INGESTION_REJECTED,
                EventSeverity.WARNING,
                "Ingestion already in progress",
                details={"trigger": trigger},
            )
            raise IngestionInProgressError()

        try:
            report = self._ingest(trigger)
        finally:
            self._run_lock.release()

        if self._coordinator is not None:
            try:
                report.fanout = self._coordinator.fan_out()
            except Exception:
                logger.exception("Tenant correlation fan-out failed")

        self._finalize(report)
        return report

    def _ingest(self, trigger: str) -> IngestionReport:
        started = self._clock()
        report = IngestionReport(started=to_iso(started), trigger=trigger)

        with self._state_lock:
            fetchers = list(self._fetchers)

        logger.info("Starting threat intelligence ingestion (%s)", trigger)
        get_audit_logger().log_event(
            EventType.INGESTION_STARTED,
            EventSeverity.INFO,
            "Threat intelligence ingestion started",
            details={"trigger": trigger, "sources": [f.name for f in fetchers]},
        )

        fetched = self._fetch_all(fetchers)

        # Sequential merge: one disclosure at a time, in registration order
        for fetcher in fetchers:
            records, result = fetched[fetcher.name]
            if result.success:
                result.processed = self._normalizer.ingest(fetcher.source, records)
                logger.info(
                    "%s ingestion: %d of %d records processed",
                    fetcher.name, result.processed, result.fetched,
                )
            report.source_results.append(result)

        with self._state_lock:
            self._last_ingestion_time = started
        report.finished = to_iso(self._clock())
        return report

    def _fetch_all(self, fetchers: List[IntelFetcher]) -> Dict[str, tuple]:
        """Run every fetcher concurrently; never raises."""
        if not fetchers:
            return {}
        with ThreadPoolExecutor(
            max_workers=len(fetchers), thread_name_prefix="vulnsync-fetch"
        ) as pool:
            futures = {f.name: pool.submit(self._run_single_fetcher, f) for f in fetchers}
            return {name: future.result() for name, future in futures.items()}

    @staticmethod
    def _run_single_fetcher(fetcher: IntelFetcher) -> tuple:
        result = SourceResult(fetcher.name)
        records: List[Dict[str, Any]] = []
        start = time.monotonic()
        try:
            records = fetcher.fetch()
            result.fetched = len(records)
        except Exception as exc:
            result.error = str(exc) or type(exc).__name__
            logger.warning("%s ingestion failed: %s", fetcher.name, result.error)
            get_audit_logger().log_event(
                EventType.SOURCE_FAILED,
                EventSeverity.WARNING,
                f"Feed {fetcher.name} failed",
                details={"source": fetcher.name, "error": result.error},
            )
        result.duration_ms = (time.monotonic() - start) * 1000
        return records, result

    # ------------------------------------------------------------------
    # Logging & callbacks
    # ------------------------------------------------------------------

    def _finalize(self, report: IngestionReport) -> None:
        with self._state_lock:
            self._last_report = report

        logger.info(
            "Ingestion complete: %d records processed, %d/%d sources ok",
            report.total_processed,
            report.sources_succeeded,
            len(report.source_results),
        )
        get_audit_logger().log_event(
            EventType.INGESTION_COMPLETED,
            EventSeverity.WARNING if report.sources_failed else EventSeverity.INFO,
            "Threat intelligence ingestion completed",
            details={
                "trigger": report.trigger,
                "sources_succeeded": report.sources_succeeded,
                "sources_failed": report.sources_failed,
                "total_processed": report.total_processed,
            },
        )

        if self._on_complete:
            try:
                self._on_complete(report)
            except Exception as exc:
                logger.warning("on_complete callback failed: %s", exc)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def last_ingestion_time(self) -> Optional[datetime]:
        with self._state_lock:
            return self._last_ingestion_time

    @property
    def last_report(self) -> Optional[IngestionReport]:
        with self._state_lock:
            return self._last_report

    def next_scheduled_time(self) -> Optional[datetime]:
        with self._state_lock:
            if self._scheduler is None:
                return None
            job = self._scheduler.get_job(SCHEDULER_JOB_ID)
            return job.next_run_time if job else None

    def status(self) -> Dict[str, Any]:
        """Administrative status snapshot."""
        return {
            "is_running": self.is_running,
            "is_ingesting": self.is_ingesting,
            "last_ingestion_time": to_iso(self.last_ingestion_time),
            "next_scheduled_time": to_iso(self.next_scheduled_time()),
            "interval_seconds": self._interval_seconds,
            "sources": [f.get_stats() for f in self._fetchers],
        }
