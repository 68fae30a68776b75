"""
SQLite schema DDL: all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Two groups of tables live here:

Product tables (owned by the surrounding app, read-only to the engine):
  1. users
  2. ideas                      (→ users)
  3. holdings                   (→ users, ideas)
  4. recommendations            (→ users, holdings)
  5. price_history              (no FKs; mock price source)

Engine tables:
  6. run_metadata               (no FKs)
  7. recommendation_snapshots   (→ users)
  8. recommendation_evaluations (→ recommendation_snapshots, ON DELETE CASCADE)

``recommendation_snapshots.recommendation_id`` / ``holding_id`` / ``idea_id``
are deliberately not foreign keys: a snapshot must outlive the product rows it
was captured from.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── Product tables ─────────────────────────────────────────────────────────────

_DDL_USERS = """
CREATE TABLE IF NOT EXISTS users (
    user_id     TEXT    PRIMARY KEY,
    email       TEXT    UNIQUE,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_IDEAS = """
CREATE TABLE IF NOT EXISTS ideas (
    idea_id         TEXT    PRIMARY KEY,
    user_id         TEXT    REFERENCES users(user_id),
    ticker          TEXT    NOT NULL,
    name            TEXT,
    current_price   REAL,
    currency        TEXT,
    risk_level      TEXT,
    generated_date  TEXT    NOT NULL,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_ideas_ticker_date
    ON ideas(ticker, generated_date DESC);
"""

_DDL_HOLDINGS = """
CREATE TABLE IF NOT EXISTS holdings (
    holding_id      TEXT    PRIMARY KEY,
    user_id         TEXT    NOT NULL REFERENCES users(user_id),
    idea_id         TEXT,
    ticker          TEXT    NOT NULL,
    shares          REAL    NOT NULL DEFAULT 0,
    avg_price       REAL,
    current_price   REAL,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_holdings_user
    ON holdings(user_id, ticker);
"""

_DDL_RECOMMENDATIONS = """
CREATE TABLE IF NOT EXISTS recommendations (
    recommendation_id   TEXT    PRIMARY KEY,
    user_id             TEXT    NOT NULL REFERENCES users(user_id),
    holding_id          TEXT,
    ticker              TEXT    NOT NULL,
    action              TEXT    NOT NULL CHECK (action IN ('buy', 'sell', 'hold')),
    confidence          REAL    NOT NULL DEFAULT 0,
    reasoning           TEXT,
    generated_at        TEXT    NOT NULL,
    created_at          TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_recommendations_user
    ON recommendations(user_id, created_at);
"""

_DDL_PRICE_HISTORY = """
CREATE TABLE IF NOT EXISTS price_history (
    ticker      TEXT    NOT NULL,
    price_date  TEXT    NOT NULL,
    close_price REAL    NOT NULL,
    PRIMARY KEY (ticker, price_date)
);
"""

# ── Engine tables ──────────────────────────────────────────────────────────────

_DDL_RUN_METADATA = """
CREATE TABLE IF NOT EXISTS run_metadata (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    pipeline_stage  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    user_id         TEXT,
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    summary         TEXT,
    error_message   TEXT,
    started_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    finished_at     TEXT
);
"""

_DDL_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS recommendation_snapshots (
    snapshot_id         TEXT    PRIMARY KEY,
    user_id             TEXT    NOT NULL REFERENCES users(user_id),
    recommendation_id   TEXT,
    holding_id          TEXT,
    idea_id             TEXT,
    ticker              TEXT    NOT NULL,
    action              TEXT    NOT NULL CHECK (action IN ('buy', 'sell', 'hold')),
    confidence          REAL    NOT NULL,
    confidence_bucket   TEXT    NOT NULL,
    entry_price         REAL    NOT NULL CHECK (entry_price > 0),
    currency            TEXT    NOT NULL DEFAULT 'EUR',
    risk_level          TEXT,
    generated_at        TEXT    NOT NULL,
    generated_date      TEXT    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'pending'
                                CHECK (status IN ('pending', 'scored', 'stale')),
    created_at          TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_snapshots_user_status
    ON recommendation_snapshots(user_id, status, generated_at);

CREATE INDEX IF NOT EXISTS idx_snapshots_user_date
    ON recommendation_snapshots(user_id, generated_date);

CREATE INDEX IF NOT EXISTS idx_snapshots_recommendation
    ON recommendation_snapshots(recommendation_id)
    WHERE recommendation_id IS NOT NULL;
"""

_DDL_EVALUATIONS = """
CREATE TABLE IF NOT EXISTS recommendation_evaluations (
    evaluation_id   INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_id     TEXT    NOT NULL
                            REFERENCES recommendation_snapshots(snapshot_id) ON DELETE CASCADE,
    horizon_days    INTEGER NOT NULL,
    target_date     TEXT    NOT NULL,
    evaluated_at    TEXT    NOT NULL,
    exit_price      REAL,
    return_pct      REAL,
    is_win          INTEGER,
    data_quality    TEXT    NOT NULL CHECK (data_quality IN ('ok', 'missing')),
    UNIQUE (snapshot_id, horizon_days)
);

CREATE INDEX IF NOT EXISTS idx_evaluations_horizon
    ON recommendation_evaluations(horizon_days, data_quality);
"""

_ALL_DDL: list[str] = [
    _DDL_USERS,
    _DDL_IDEAS,
    _DDL_HOLDINGS,
    _DDL_RECOMMENDATIONS,
    _DDL_PRICE_HISTORY,
    _DDL_RUN_METADATA,
    _DDL_SNAPSHOTS,
    _DDL_EVALUATIONS,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "users",
    "ideas",
    "holdings",
    "recommendations",
    "price_history",
    "run_metadata",
    "recommendation_snapshots",
    "recommendation_evaluations",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent: every statement uses ``IF NOT EXISTS`` guards.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted list of table names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted list of index names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
