"""
SQLite connection management.

``get_connection()`` yields a configured connection that:
  - Enables foreign key enforcement (OFF by default in SQLite).
  - Enables WAL journal mode so reads can proceed during evaluation runs.
  - Sets a busy timeout to handle lock contention from concurrent runs.
  - Uses ``sqlite3.Row`` factory so rows behave like dicts.
  - Commits on clean exit, rolls back on exception.

``transaction()`` scopes a unit of work on an already-open connection. The
evaluator wraps each snapshot in one so a failure only discards that
snapshot's writes.

Usage::

    from perf_proof.db.connection import get_connection, transaction

    with get_connection("data/db/perf_proof.db", initialize=True) as conn:
        with transaction(conn):
            conn.execute("UPDATE recommendation_snapshots SET status = ...")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
    initialize: bool = False,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    The connection is committed on clean exit and rolled back on exception.
    The database file (and any parent directories) are created if they do
    not already exist.

    Args:
        db_path: Path to the SQLite database file. Use ``":memory:"`` for
            in-memory databases (useful in tests).
        wal_mode: If ``True``, enable WAL journal mode.
        busy_timeout_ms: Milliseconds to wait when the database is locked
            before raising ``OperationalError``.
        initialize: If ``True``, apply the schema and pending migrations
            before yielding.

    Yields:
        An open, configured ``sqlite3.Connection``.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or is locked.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    try:
        # These pragmas must be set before any DML/DDL
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")

        if wal_mode and db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")

        if initialize:
            from perf_proof.db.migrations import initialize_database

            initialize_database(conn)

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """Commit the enclosed writes on success; roll them back and re-raise on error.

    Any work pending on ``conn`` before entering is committed along with the
    block, so call this at unit-of-work boundaries only.
    """
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        logger.debug("Transaction rolled back.")
        raise
