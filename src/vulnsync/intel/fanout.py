# Intel Module - Per-Tenant Fan-out Coordinator
#
# After each ingestion cycle, runs the correlation engine once per
# tenant on a bounded thread pool. Tenants are independent: one
# tenant's failure is logged and recorded, never propagated, and has no
# effect on the others. There is no cross-tenant ordering guarantee.

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from .correlation_engine import CorrelationEngine, CorrelationRunResult
from .inventory import SoftwareInventory
from .models import to_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class FanOutReport:
    """Summary of one fan-out across all tenants."""

    def __init__(self, started: datetime):
        self.started = to_iso(started)
        self.finished: Optional[str] = None
        self.results: Dict[str, CorrelationRunResult] = {}
        self.errors: Dict[str, str] = {}

    @property
    def tenants_succeeded(self) -> int:
        return len(self.results)

    @property
    def tenants_failed(self) -> int:
        return len(self.errors)

    @property
    def correlations_written(self) -> int:
        return sum(r.correlations_written for r in self.results.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started": self.started,
            "finished": self.finished,
            "tenants_succeeded": self.tenants_succeeded,
            "tenants_failed": self.tenants_failed,
            "correlations_written": self.correlations_written,
            "errors": dict(self.errors),
            "results": {t: r.to_dict() for t, r in self.results.items()},
        }


class FanOutCoordinator:
    """Runs ``CorrelationEngine.correlate_tenant`` for every tenant.

    Args:
        engine: The correlation engine.
        inventory: Source of the tenant list.
        max_workers: Upper bound on concurrently correlated tenants.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        engine: CorrelationEngine,
        inventory: SoftwareInventory,
        max_workers: int = DEFAULT_MAX_WORKERS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._engine = engine
        self._inventory = inventory
        self._max_workers = max_workers
        self._clock = clock or utcnow

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def fan_out(self, tenant_ids: Optional[Iterable[str]] = None) -> FanOutReport:
        """Correlate the given tenants (default: every known tenant)."""
        report = FanOutReport(self._clock())

        if tenant_ids is None:
            try:
                tenant_ids = self._inventory.list_tenants()
            except Exception:
                logger.exception("Failed to list tenants for correlation")
                report.finished = to_iso(self._clock())
                return report
        tenants = list(dict.fromkeys(tenant_ids))

        if tenants:
            logger.info("Triggering threat correlation for %d tenants", len(tenants))
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(tenants)),
                thread_name_prefix="vulnsync-correlate",
            ) as pool:
                futures = {
                    pool.submit(self._engine.correlate_tenant, tenant_id): tenant_id
                    for tenant_id in tenants
                }
                for future in as_completed(futures):
                    tenant_id = futures[future]
                    try:
                        report.results[tenant_id] = future.result()
                    except Exception as exc:
                        report.errors[tenant_id] = str(exc) or type(exc).__name__
                        logger.error(
                            "Correlation failed for tenant %s: %s",
                            tenant_id, exc, exc_info=exc,
                        )
                        self._audit_failure(tenant_id, exc)

        report.finished = to_iso(self._clock())
        logger.info(
            "Correlation fan-out complete: %d ok, %d failed, %d correlations written",
            report.tenants_succeeded, report.tenants_failed, report.correlations_written,
        )
        get_audit_logger().log_event(
            EventType.CORRELATION_COMPLETED,
            EventSeverity.WARNING if report.tenants_failed else EventSeverity.INFO,
            "Correlation fan-out complete",
            details={
                "tenants_succeeded": report.tenants_succeeded,
                "tenants_failed": report.tenants_failed,
                "correlations_written": report.correlations_written,
            },
        )
        return report

    @staticmethod
    def _audit_failure(tenant_id: str, exc: Exception) -> None:
        get_audit_logger().log_event(
            EventType.CORRELATION_FAILED,
            EventSeverity.ALERT,
            f"Correlation failed for tenant {tenant_id}",
            details={"tenant_id": tenant_id, "error": str(exc)},
        )
