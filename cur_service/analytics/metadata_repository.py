"""Registry for typed column metadata and dataset profiles of ingested tables."""
from __future__ import annotations

import sqlite3
from typing import Sequence

from .models import ColumnMetadata, DatasetProfile


CREATE_TABLE_COLUMNS = """
CREATE TABLE IF NOT EXISTS line_item_table_columns (
    table_name TEXT NOT NULL,
    ordinal INTEGER NOT NULL,
    original_name TEXT NOT NULL,
    safe_name TEXT NOT NULL,
    logical_type TEXT NOT NULL DEFAULT 'string',
    sqlite_type TEXT NOT NULL DEFAULT 'TEXT',
    nullable INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (table_name, ordinal),
    UNIQUE (table_name, safe_name)
)
"""

CREATE_TABLE_PROFILES = """
CREATE TABLE IF NOT EXISTS line_item_table_profiles (
    table_name TEXT NOT NULL PRIMARY KEY,
    row_count INTEGER NOT NULL,
    profile_json TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
)
"""


class MetadataRepository:
    """Read/write column metadata and dataset profiles from SQLite registry tables.

    Writes do not commit; they run inside the caller's ingestion transaction.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create_registry_tables(self) -> None:
        self._conn.execute(CREATE_TABLE_COLUMNS)
        self._conn.execute(CREATE_TABLE_PROFILES)

    # ------------------------------------------------------------------
    # Column registry
    # ------------------------------------------------------------------

    def register_columns(self, table_name: str, columns: Sequence[ColumnMetadata]) -> None:
        self._conn.execute(
            "DELETE FROM line_item_table_columns WHERE table_name = ?;",
            (table_name,),
        )
        self._conn.executemany(
            "INSERT INTO line_item_table_columns "
            "(table_name, ordinal, original_name, safe_name, logical_type, sqlite_type, nullable) "
            "VALUES (?, ?, ?, ?, ?, ?, ?);",
            [
                (
                    table_name,
                    i,
                    col.original_name,
                    col.safe_name,
                    col.logical_type,
                    col.sqlite_type,
                    1 if col.nullable else 0,
                )
                for i, col in enumerate(columns)
            ],
        )

    def get_columns(self, table_name: str) -> dict[str, ColumnMetadata]:
        """Column metadata keyed by safe name, in storage order."""
        if not self._registry_exists():
            return {}
        cur = self._conn.execute(
            "SELECT original_name, safe_name, logical_type, sqlite_type, nullable "
            "FROM line_item_table_columns "
            "WHERE table_name = ? "
            "ORDER BY ordinal ASC;",
            (table_name,),
        )
        result: dict[str, ColumnMetadata] = {}
        for row in cur.fetchall():
            original_name = str(row[0])
            safe_name = str(row[1])
            result[safe_name] = ColumnMetadata(
                column_name=original_name,
                logical_type=str(row[2]) or "string",
                sqlite_type=str(row[3]) or "TEXT",
                nullable=bool(row[4]),
                original_name=original_name,
                safe_name=safe_name,
            )
        return result

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def upsert_profile(self, table_name: str, profile: DatasetProfile) -> None:
        self._conn.execute(
            "INSERT INTO line_item_table_profiles (table_name, row_count, profile_json) "
            "VALUES (?, ?, ?) "
            "ON CONFLICT(table_name) "
            "DO UPDATE SET row_count = excluded.row_count, profile_json = excluded.profile_json;",
            (table_name, profile.row_count, profile.model_dump_json()),
        )

    def get_profile(self, table_name: str) -> DatasetProfile | None:
        if not self._registry_exists():
            return None
        cur = self._conn.execute(
            "SELECT profile_json FROM line_item_table_profiles WHERE table_name = ? LIMIT 1;",
            (table_name,),
        )
        row = cur.fetchone()
        if row is None:
            return None
        return DatasetProfile.model_validate_json(row[0])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _registry_exists(self) -> bool:
        cur = self._conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'line_item_table_columns' LIMIT 1;"
        )
        return cur.fetchone() is not None
