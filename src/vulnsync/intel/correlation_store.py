# Intel Module - Correlation Store (SQLite)
#
# Persistent per-tenant impact records, keyed on (cve_id, tenant_id).
# The correlation engine is the only writer. Each upsert replaces every
# column except ``created_at``; nothing is merged with the previous row.
#
# Rows whose match condition has lapsed are left in place. Consumers
# can spot them via ``last_checked`` (see ``stale_for_tenant()``).

import json
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..core.db import open_database
from .models import Correlation, ThreatSeverity, to_iso, utcnow

DEFAULT_DB_PATH = "data/correlations.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS correlations (
    cve_id                 TEXT    NOT NULL,
    tenant_id              TEXT    NOT NULL,
    impacted_endpoints     TEXT    NOT NULL DEFAULT '[]',
    impacted_software      TEXT    NOT NULL DEFAULT '[]',
    risk_score             INTEGER NOT NULL CHECK (risk_score BETWEEN 0 AND 100),
    risk_factors           TEXT    NOT NULL,
    severity               TEXT    NOT NULL,
    exploited              INTEGER NOT NULL DEFAULT 0,
    threat_details         TEXT    NOT NULL,
    action_recommendations TEXT    NOT NULL DEFAULT '[]',
    last_checked           TEXT    NOT NULL,
    created_at             TEXT    NOT NULL,
    updated_at             TEXT    NOT NULL,
    PRIMARY KEY (cve_id, tenant_id)
);

CREATE INDEX IF NOT EXISTS idx_corr_tenant_risk
    ON correlations(tenant_id, risk_score DESC);
CREATE INDEX IF NOT EXISTS idx_corr_tenant_severity
    ON correlations(tenant_id, severity);
CREATE INDEX IF NOT EXISTS idx_corr_tenant_exploited
    ON correlations(tenant_id, exploited);
CREATE INDEX IF NOT EXISTS idx_corr_risk_checked
    ON correlations(risk_score DESC, last_checked DESC);
"""


class CorrelationStore:
    """SQLite-backed store of Correlations, upserted by (cve_id, tenant_id).

    Per-tenant correlation workers write concurrently; the shared
    connection is serialized by a reentrant lock.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn = open_database(self.db_path, _SCHEMA, self.SCHEMA_VERSION)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def upsert(self, correlation: Correlation) -> Correlation:
        """Insert or wholesale-replace a Correlation; returns the stored row."""
        now = to_iso(utcnow())
        last_checked = to_iso(correlation.last_checked) or now
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO correlations
                    (cve_id, tenant_id, impacted_endpoints, impacted_software,
                     risk_score, risk_factors, severity, exploited,
                     threat_details, action_recommendations, last_checked,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cve_id, tenant_id) DO UPDATE SET
                    impacted_endpoints     = excluded.impacted_endpoints,
                    impacted_software      = excluded.impacted_software,
                    risk_score             = excluded.risk_score,
                    risk_factors           = excluded.risk_factors,
                    severity               = excluded.severity,
                    exploited              = excluded.exploited,
                    threat_details         = excluded.threat_details,
                    action_recommendations = excluded.action_recommendations,
                    last_checked           = excluded.last_checked,
                    updated_at             = excluded.updated_at
                """,
                (
                    correlation.cve_id,
                    correlation.tenant_id,
                    json.dumps(correlation.impacted_endpoints),
                    json.dumps([sw.to_dict() for sw in correlation.impacted_software]),
                    int(correlation.risk_score),
                    json.dumps(correlation.risk_factors.to_dict()),
                    correlation.threat_details.severity,
                    int(correlation.threat_details.exploited),
                    json.dumps(correlation.threat_details.to_dict()),
                    json.dumps(correlation.action_recommendations),
                    last_checked,
                    to_iso(correlation.created_at) or now,
                    now,
                ),
            )
            self._conn.commit()
            return self.get(correlation.cve_id, correlation.tenant_id)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, cve_id: str, tenant_id: str) -> Optional[Correlation]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM correlations WHERE cve_id = ? AND tenant_id = ?",
                (cve_id.strip().upper(), tenant_id),
            ).fetchone()
        return self._row_to_correlation(row) if row else None

    def for_tenant(
        self,
        tenant_id: str,
        severity: Optional[List[ThreatSeverity]] = None,
        exploited: Optional[bool] = None,
        min_risk_score: int = 0,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Correlation]:
        """A tenant's correlations, highest risk first."""
        clauses = ["tenant_id = ?"]
        params: List[Any] = [tenant_id]

        if severity:
            clauses.append(
                "severity IN (" + ", ".join("?" for _ in severity) + ")"
            )
            params.extend(ThreatSeverity(s).value for s in severity)
        if exploited is not None:
            clauses.append("exploited = ?")
            params.append(int(exploited))
        if min_risk_score:
            clauses.append("risk_score >= ?")
            params.append(int(min_risk_score))

        sql = (
            "SELECT * FROM correlations WHERE " + " AND ".join(clauses)
            + " ORDER BY risk_score DESC, last_checked DESC LIMIT ? OFFSET ?"
        )
        params.extend([limit, offset])
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_correlation(r) for r in rows]

    def stale_for_tenant(
        self, tenant_id: str, before: Union[str, datetime]
    ) -> List[Correlation]:
        """Correlations not re-confirmed since ``before``.

        A row goes stale when later runs stop matching it (software
        removed, threat aged out of the recency window). Stale rows are
        reported, never deleted.
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM correlations
                WHERE tenant_id = ? AND last_checked < ?
                ORDER BY last_checked ASC
                """,
                (tenant_id, to_iso(before)),
            ).fetchall()
        return [self._row_to_correlation(r) for r in rows]

    def count(self, tenant_id: Optional[str] = None) -> int:
        with self._lock:
            if tenant_id is None:
                row = self._conn.execute("SELECT COUNT(*) FROM correlations").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM correlations WHERE tenant_id = ?",
                    (tenant_id,),
                ).fetchone()
        return row[0]

    def tenant_summary(self, tenant_id: str) -> Dict[str, Any]:
        """Aggregate counts for a tenant's dashboard header."""
        with self._lock:
            row = self._conn.execute(
                """
                SELECT COUNT(*)                         AS total,
                       COALESCE(SUM(exploited), 0)      AS exploited,
                       COALESCE(MAX(risk_score), 0)     AS max_risk,
                       COALESCE(AVG(risk_score), 0)     AS avg_risk
                FROM correlations WHERE tenant_id = ?
                """,
                (tenant_id,),
            ).fetchone()
            by_severity = {
                r["severity"]: r["n"]
                for r in self._conn.execute(
                    """
                    SELECT severity, COUNT(*) AS n FROM correlations
                    WHERE tenant_id = ? GROUP BY severity
                    """,
                    (tenant_id,),
                ).fetchall()
            }
        return {
            "tenant_id": tenant_id,
            "total": row["total"],
            "exploited": row["exploited"],
            "max_risk_score": row["max_risk"],
            "avg_risk_score": round(row["avg_risk"], 1),
            "by_severity": {s.value: by_severity.get(s.value, 0) for s in ThreatSeverity},
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_correlation(row) -> Correlation:
        return Correlation.from_dict({
            "cve_id": row["cve_id"],
            "tenant_id": row["tenant_id"],
            "impacted_endpoints": json.loads(row["impacted_endpoints"]),
            "impacted_software": json.loads(row["impacted_software"]),
            "risk_score": row["risk_score"],
            "risk_factors": json.loads(row["risk_factors"]),
            "threat_details": json.loads(row["threat_details"]),
            "action_recommendations": json.loads(row["action_recommendations"]),
            "last_checked": row["last_checked"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })

    def close(self) -> None:
        with self._lock:
            self._conn.close()
