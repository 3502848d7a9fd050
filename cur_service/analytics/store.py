"""SQLite-backed tabular store owning the line item table."""
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

import pandas as pd

from ..ingestion import build_line_item_frame, decode_cell_value, read_line_items
from .errors import IngestLoadError, IngestSourceUnavailableError, QueryExecutionError
from .metadata_repository import MetadataRepository
from .models import (
    ColumnMetadata,
    DatasetProfile,
    IngestReport,
    LineItem,
    QueryResult,
    REGION,
    RESOURCE_ID,
    ScanFilter,
)
from .profiler import profile_dataframe
from .sql_compiler import CompiledSql, compile_row_count, compile_scan, quote_identifier
from .validator import validate_schema

logger = logging.getLogger(__name__)

TabularReader = Callable[[str], pd.DataFrame]


class TabularStore:
    """Owns the single line item table in a SQLite database file.

    Ingestion runs at most once per database file. Reads open a short-lived
    connection each, so any number of threads may read concurrently once the
    table exists.
    """

    def __init__(
        self,
        db_path: str,
        *,
        table_name: str = "cur2",
        row_cap: int = 500,
        reader: TabularReader = read_line_items,
    ) -> None:
        quote_identifier(table_name)
        self._db_path = db_path
        self._table_name = table_name
        self._row_cap = max(1, row_cap)
        self._reader = reader
        self._ingest_lock = threading.Lock()
        self._ready = False
        self._columns: dict[str, ColumnMetadata] | None = None

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def row_cap(self) -> int:
        return self._row_cap

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def _table_exists_on(conn: sqlite3.Connection, table_name: str) -> bool:
        cur = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ? LIMIT 1;",
            (table_name,),
        )
        return cur.fetchone() is not None

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ensure_table(self, source_path: str) -> IngestReport:
        """Create the line item table from ``source_path`` unless it already exists.

        Raises IngestSourceUnavailableError if the source cannot be opened and
        IngestLoadError for anything that fails afterwards. On failure no
        table is left behind.
        """
        with self._ingest_lock:
            try:
                exists = self._ready or self.table_exists()
            except sqlite3.Error as exc:
                raise IngestLoadError(f"Cannot open database {self._db_path}: {exc}") from exc
            if exists:
                self._ready = True
                logger.info("Table '%s' already exists; skipping ingestion", self._table_name)
                return IngestReport(
                    table_name=self._table_name,
                    created=False,
                    row_count=self.row_count(),
                    columns=list(self.columns().values()),
                )

            path = Path(source_path)
            if not path.is_file():
                raise IngestSourceUnavailableError(f"Source file not found: {source_path}")

            logger.info("Loading line items from %s into table '%s'", source_path, self._table_name)
            try:
                raw = self._reader(str(path))
            except OSError as exc:
                raise IngestSourceUnavailableError(f"Cannot open source file {source_path}: {exc}") from exc
            except Exception as exc:
                raise IngestLoadError(f"Cannot read source file {source_path}: {exc}") from exc

            try:
                frame, columns = build_line_item_frame(raw)
                validate_schema({c.safe_name: c for c in columns})
                profile = profile_dataframe(frame, columns)
                created = self._materialize(frame, columns, profile)
            except IngestLoadError:
                raise
            except Exception as exc:
                raise IngestLoadError(f"Failed to load line items into '{self._table_name}': {exc}") from exc

            self._ready = True
            if created:
                logger.info("Table '%s' created with %d row(s)", self._table_name, len(frame))
            else:
                logger.info("Table '%s' was created concurrently; discarding this load", self._table_name)
            return IngestReport(
                table_name=self._table_name,
                created=created,
                row_count=len(frame) if created else self.row_count(),
                columns=columns if created else list(self.columns().values()),
            )

    def _materialize(
        self,
        frame: pd.DataFrame,
        columns: list[ColumnMetadata],
        profile: DatasetProfile,
    ) -> bool:
        """Write table, indexes and registry rows in one transaction.

        Returns False when another writer created the table first.
        """
        table = quote_identifier(self._table_name)
        columns_ddl = ", ".join(f"{quote_identifier(c.safe_name)} {c.sqlite_type}" for c in columns)
        cols_sql = ", ".join(quote_identifier(c.safe_name) for c in columns)
        placeholders = ", ".join(["?"] * len(columns))
        rows = [tuple(_python_value(v) for v in row) for row in frame.itertuples(index=False, name=None)]

        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("BEGIN IMMEDIATE;")
            try:
                if self._table_exists_on(conn, self._table_name):
                    conn.execute("ROLLBACK;")
                    return False

                conn.execute(f"CREATE TABLE {table} ({columns_ddl});")
                conn.executemany(f"INSERT INTO {table} ({cols_sql}) VALUES ({placeholders});", rows)
                for col in (REGION, RESOURCE_ID):
                    index = quote_identifier(f"idx_{self._table_name}__{col}")
                    conn.execute(f"CREATE INDEX IF NOT EXISTS {index} ON {table} ({quote_identifier(col)});")

                meta_repo = MetadataRepository(conn)
                meta_repo.create_registry_tables()
                meta_repo.register_columns(self._table_name, columns)
                meta_repo.upsert_profile(self._table_name, profile)

                conn.execute("COMMIT;")
                return True
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def table_exists(self) -> bool:
        with self._connection() as conn:
            return self._table_exists_on(conn, self._table_name)

    def row_count(self) -> int:
        rows = self.execute(compile_row_count(table_name=self._table_name))
        return int(rows[0]["count"]) if rows else 0

    def columns(self) -> dict[str, ColumnMetadata]:
        """Registered column metadata keyed by safe name.

        Raises QueryExecutionError when the table has not been loaded.
        """
        if self._columns is not None:
            return self._columns
        try:
            with self._connection() as conn:
                columns = MetadataRepository(conn).get_columns(self._table_name)
        except sqlite3.Error as exc:
            raise QueryExecutionError(str(exc)) from exc
        if not columns:
            raise QueryExecutionError(f"Table '{self._table_name}' is not loaded")
        self._columns = columns
        return columns

    def profile(self) -> DatasetProfile | None:
        try:
            with self._connection() as conn:
                return MetadataRepository(conn).get_profile(self._table_name)
        except sqlite3.Error as exc:
            raise QueryExecutionError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def execute(self, compiled: CompiledSql) -> list[sqlite3.Row]:
        try:
            with self._connection() as conn:
                cursor = conn.execute(compiled.sql, tuple(compiled.parameters))
                return cursor.fetchall()
        except sqlite3.Error as exc:
            raise QueryExecutionError(str(exc)) from exc

    def decode_row(self, row: sqlite3.Row) -> dict[str, Any]:
        """Stored values of a ``SELECT *`` row, decoded per column type, keyed by safe name."""
        columns = self.columns()
        return {
            key: decode_cell_value(row[key], columns[key].logical_type if key in columns else "string")
            for key in row.keys()
        }

    def scan(self, filters: list[ScanFilter] | None = None, limit: int | None = None) -> QueryResult[list[LineItem]]:
        """Rows matching every filter, in insertion order, capped at the row cap.

        On failure the data is empty and ``error`` is set; rows are never
        partially returned.
        """
        cap = self._row_cap if limit is None else max(1, min(limit, self._row_cap))
        try:
            columns = self.columns()
            compiled = compile_scan(filters or [], table_name=self._table_name, columns=columns, limit=cap)
            rows = self.execute(compiled)
            items = [LineItem.from_values(self.decode_row(r), columns) for r in rows]
        except QueryExecutionError as exc:
            logger.error("Scan of '%s' failed: %s", self._table_name, exc)
            return QueryResult(data=[], error=exc)
        except (ValueError, TypeError) as exc:
            logger.error("Scan of '%s' returned undecodable rows: %s", self._table_name, exc)
            return QueryResult(data=[], error=QueryExecutionError(str(exc)))
        return QueryResult(data=items)

    def health_check(self) -> bool:
        """Trivial read; False on any failure."""
        try:
            with self._connection() as conn:
                conn.execute("SELECT 1;").fetchone()
            return True
        except Exception as exc:
            logger.error("Store health check failed: %s", exc)
            return False


def _python_value(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "item"):
        return value.item()
    return value
