# Intel Module - Threat Item Store (SQLite)
#
# Persistent storage for canonical ThreatItems, one row per disclosure
# id. Writes are upserts keyed on ``cve_id``:
#
#   - ``upsert()`` rewrites the descriptive fields but never clears an
#     exploitation flag or KEV date already on the row, so the result
#     is the same whichever feed reports a disclosure first.
#   - ``mark_exploited()`` only flips ``exploited`` and sets the KEV
#     date on an existing row.
#
# Rows are never deleted here; retention is an external policy.

import json
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..core.db import open_database
from .models import (
    ExploitationDetails,
    ThreatItem,
    ThreatSeverity,
    normalize_cve_id,
    to_iso,
    utcnow,
)

DEFAULT_DB_PATH = "data/threats.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS threat_items (
    cve_id               TEXT    PRIMARY KEY,
    title                TEXT    NOT NULL DEFAULT '',
    description          TEXT    NOT NULL DEFAULT '',
    severity             TEXT    NOT NULL,
    cvss_score           REAL    NOT NULL DEFAULT 0,
    exploited            INTEGER NOT NULL DEFAULT 0,
    affected_products    TEXT    NOT NULL DEFAULT '[]',
    published_date       TEXT,
    source               TEXT    NOT NULL,
    reference_urls       TEXT    NOT NULL DEFAULT '[]',
    kev_date             TEXT,
    exploitation_details TEXT,
    created_at           TEXT    NOT NULL,
    updated_at           TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_threat_published
    ON threat_items(published_date);
CREATE INDEX IF NOT EXISTS idx_threat_severity
    ON threat_items(severity, published_date);
CREATE INDEX IF NOT EXISTS idx_threat_exploited
    ON threat_items(exploited, severity);
"""


class ThreatStore:
    """SQLite-backed store of ThreatItems, upserted by disclosure id.

    Thread-safe: one shared connection, every statement runs under a
    reentrant lock.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn = open_database(self.db_path, _SCHEMA, self.SCHEMA_VERSION)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def upsert(self, item: ThreatItem) -> ThreatItem:
        """Insert or update a ThreatItem; returns the stored row."""
        now = to_iso(utcnow())
        details = (
            json.dumps(item.exploitation_details.to_dict())
            if item.exploitation_details
            else None
        )
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO threat_items
                    (cve_id, title, description, severity, cvss_score,
                     exploited, affected_products, published_date, source,
                     reference_urls, kev_date, exploitation_details,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cve_id) DO UPDATE SET
                    title                = excluded.title,
                    description          = excluded.description,
                    severity             = excluded.severity,
                    cvss_score           = excluded.cvss_score,
                    exploited            = MAX(threat_items.exploited, excluded.exploited),
                    affected_products    = excluded.affected_products,
                    published_date       = excluded.published_date,
                    source               = excluded.source,
                    reference_urls       = excluded.reference_urls,
                    kev_date             = COALESCE(excluded.kev_date, threat_items.kev_date),
                    exploitation_details = COALESCE(excluded.exploitation_details,
                                                    threat_items.exploitation_details),
                    updated_at           = excluded.updated_at
                """,
                (
                    item.cve_id,
                    item.title,
                    item.description,
                    item.severity.value,
                    item.cvss_score,
                    int(item.exploited),
                    json.dumps(item.affected_products),
                    item.published_date,
                    item.source.value,
                    json.dumps(item.references),
                    item.kev_date,
                    details,
                    item.created_at or now,
                    now,
                ),
            )
            self._conn.commit()
            return self.get(item.cve_id)

    def mark_exploited(self, cve_id: str, kev_date: Optional[str] = None) -> bool:
        """Flag an existing row as exploited.

        Returns False (and writes nothing) if the id is not stored yet.
        """
        cve_id = normalize_cve_id(cve_id)
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE threat_items
                SET exploited = 1,
                    kev_date = COALESCE(?, kev_date),
                    updated_at = ?
                WHERE cve_id = ?
                """,
                (to_iso(kev_date), to_iso(utcnow()), cve_id),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, cve_id: str) -> Optional[ThreatItem]:
        """Fetch one ThreatItem by disclosure id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM threat_items WHERE cve_id = ?",
                (cve_id.strip().upper(),),
            ).fetchone()
        return self._row_to_item(row) if row else None

    def exists(self, cve_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM threat_items WHERE cve_id = ? LIMIT 1",
                (cve_id.strip().upper(),),
            ).fetchone()
        return row is not None

    def recent(self, since: Union[str, datetime]) -> List[ThreatItem]:
        """ThreatItems published at or after ``since``, newest first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM threat_items
                WHERE published_date >= ?
                ORDER BY published_date DESC
                """,
                (to_iso(since),),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def latest(
        self,
        severity: Optional[List[ThreatSeverity]] = None,
        exploited: Optional[bool] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[ThreatItem]:
        """Newest ThreatItems with optional filters (dashboard feed)."""
        clauses: List[str] = []
        params: List[Any] = []

        if severity:
            clauses.append(
                "severity IN (" + ", ".join("?" for _ in severity) + ")"
            )
            params.extend(ThreatSeverity(s).value for s in severity)
        if exploited is not None:
            clauses.append("exploited = ?")
            params.append(int(exploited))
        if start is not None:
            clauses.append("published_date >= ?")
            params.append(to_iso(start))
        if end is not None:
            clauses.append("published_date <= ?")
            params.append(to_iso(end))

        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        sql = (
            f"SELECT * FROM threat_items{where} "
            "ORDER BY published_date DESC, cvss_score DESC LIMIT ? OFFSET ?"
        )
        params.extend([limit, offset])
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    def exploited(self, limit: int = 20, offset: int = 0) -> List[ThreatItem]:
        """Actively exploited ThreatItems, most recently listed first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM threat_items
                WHERE exploited = 1
                ORDER BY kev_date DESC, cvss_score DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def high_risk(
        self, min_cvss: float = 7.0, limit: int = 20, offset: int = 0
    ) -> List[ThreatItem]:
        """Critical/high ThreatItems at or above ``min_cvss``."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM threat_items
                WHERE cvss_score >= ? AND severity IN ('critical', 'high')
                ORDER BY cvss_score DESC, published_date DESC
                LIMIT ? OFFSET ?
                """,
                (min_cvss, limit, offset),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def count(
        self,
        severity: Optional[ThreatSeverity] = None,
        exploited: Optional[bool] = None,
    ) -> int:
        clauses: List[str] = []
        params: List[Any] = []
        if severity is not None:
            clauses.append("severity = ?")
            params.append(ThreatSeverity(severity).value)
        if exploited is not None:
            clauses.append("exploited = ?")
            params.append(int(exploited))
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._lock:
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM threat_items{where}", params
            ).fetchone()
        return row[0]

    def stats(self) -> Dict[str, Any]:
        """Return summary statistics for the threat store."""
        return {
            "total": self.count(),
            "exploited": self.count(exploited=True),
            "by_severity": {s.value: self.count(severity=s) for s in ThreatSeverity},
            "db_path": self.db_path,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_item(row) -> ThreatItem:
        details = row["exploitation_details"]
        return ThreatItem(
            cve_id=row["cve_id"],
            title=row["title"],
            description=row["description"],
            severity=row["severity"],
            cvss_score=row["cvss_score"],
            exploited=bool(row["exploited"]),
            affected_products=json.loads(row["affected_products"]),
            published_date=row["published_date"],
            source=row["source"],
            references=json.loads(row["reference_urls"]),
            kev_date=row["kev_date"],
            exploitation_details=ExploitationDetails.from_dict(
                json.loads(details) if details else None
            ),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
