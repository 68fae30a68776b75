"""
Base repository providing shared SQLite execution helpers.

All repositories inherit from ``BaseRepository`` and receive a
``sqlite3.Connection`` at construction time. The connection is assumed
to be opened and managed by the caller (typically via ``get_connection()``);
repositories never commit.

Design:
  - No ORM; all SQL is explicit and lives in repository methods.
  - Repositories speak Pydantic models, not raw dicts.
  - ``row_factory = sqlite3.Row`` (set by ``get_connection()``) gives
    dict-like row access throughout.
  - Dates are stored as ISO ``YYYY-MM-DD`` text and datetimes as ISO-8601
    UTC text, so lexical order matches chronological order.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Cursor:
        """Execute a single SQL statement.

        Args:
            sql: SQL string with ``?`` or ``:name`` placeholders.
            params: Positional tuple or named dict of parameters.

        Returns:
            The resulting ``sqlite3.Cursor``.
        """
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def executemany(
        self,
        sql: str,
        params_list: list[tuple[Any, ...] | dict[str, Any]],
    ) -> sqlite3.Cursor:
        """Execute a SQL statement for each element in ``params_list``."""
        logger.debug("SQL (many): %s | count: %d", sql.strip(), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> Optional[sqlite3.Row]:
        """Execute a query and return the first row, or ``None``."""
        return self.execute(sql, params).fetchone()

    def fetchall(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""
        return self.execute(sql, params).fetchall()

    def fetch_scalar(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
        default: Any = 0,
    ) -> Any:
        """Return the first column of the first row, or ``default`` when empty/NULL."""
        row = self.fetchone(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    def last_insert_rowid(self) -> int:
        """Return the rowid of the last successful INSERT."""
        row = self.fetchone("SELECT last_insert_rowid() AS rowid;")
        assert row is not None
        return int(row["rowid"])


def placeholders(values: Iterable[Any]) -> str:
    """Return ``"?, ?, ?"`` with one placeholder per value, for ``IN (...)`` clauses."""
    return ", ".join("?" for _ in values)


def date_range_clause(date_range: Any, column: str) -> tuple[str, list[Any]]:
    """Build an ``AND`` fragment for an inclusive date range on ``column``.

    Args:
        date_range: A ``DateRange`` (or ``None`` for no filter).
        column: Column holding ISO ``YYYY-MM-DD`` text.

    Returns:
        ``(sql, params)``; ``sql`` is empty when there is nothing to filter.
    """
    if date_range is None:
        return "", []
    sql = ""
    params: list[Any] = []
    if date_range.date_from is not None:
        sql += f" AND {column} >= ?"
        params.append(date_range.date_from.isoformat())
    if date_range.date_to is not None:
        sql += f" AND {column} <= ?"
        params.append(date_range.date_to.isoformat())
    return sql, params
