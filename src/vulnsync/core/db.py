# Core Module - Shared SQLite Helpers
#
# Both vulnsync stores (threat items, correlations) open their database
# through `open_database()`, which:
#
#   - creates the parent directory
#   - enables WAL mode so correlation workers can read the threat
#     table while an ingestion cycle writes to it
#   - sets busy_timeout and foreign_keys on the connection
#   - applies the store's schema script and records its version

import sqlite3
from pathlib import Path
from typing import Union

BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs."""
    conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


def open_database(
    db_path: Union[str, Path],
    schema: str,
    schema_version: int,
) -> sqlite3.Connection:
    """Open (and if needed create) a store database.

    The connection is shared between threads; callers serialize access
    with their own lock.

    Args:
        db_path: Path to the database file.
        schema: ``CREATE ... IF NOT EXISTS`` script for the store.
        schema_version: Version number written on first creation.

    Returns:
        A ``sqlite3.Row``-producing connection with the schema applied.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = connect(db_path, row_factory=True, check_same_thread=False)
    conn.executescript(
        schema
        + """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        );
        """
    )
    # executescript() commits and resets connection state
    conn.execute("PRAGMA foreign_keys=ON")
    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (schema_version,),
        )
    conn.commit()
    return conn
