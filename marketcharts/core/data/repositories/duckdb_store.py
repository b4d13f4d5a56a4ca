"""
DuckDB backed record repository.

Stores one row per ``(index_name, trade_date)`` and upserts with
``INSERT OR REPLACE`` so re-fetched days overwrite older values.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, date
from pathlib import Path
from typing import Any

import duckdb
from loguru import logger

from marketcharts.core.data.repositories.base import RecordRepository
from marketcharts.core.exceptions import RepositoryError
from marketcharts.core.models import IndexName, NormalizedRecord, index_label

_COLUMNS = (
    "index_name, trade_date, open_price, high_price, low_price, close_price, "
    "volume, fetched_at, source, is_interpolated"
)
_UPSERT_SQL = f"INSERT OR REPLACE INTO index_daily ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"


def _to_row(record: NormalizedRecord) -> tuple[Any, ...]:
    fetched_at = record.fetched_at
    if fetched_at.tzinfo is not None:
        fetched_at = fetched_at.astimezone(UTC).replace(tzinfo=None)
    return (
        record.index_label,
        record.date,
        record.open,
        record.high,
        record.low,
        record.close,
        record.volume,
        fetched_at,
        record.source,
        record.is_interpolated,
    )


def _from_row(row: tuple[Any, ...]) -> NormalizedRecord:
    index_name, trade_date, open_, high, low, close, volume, fetched_at, source, is_interpolated = row
    return NormalizedRecord(
        index_name=index_name,
        date=trade_date,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
        fetched_at=fetched_at.replace(tzinfo=UTC),
        source=source,
        is_interpolated=is_interpolated,
    )


class DuckDBRecordRepository(RecordRepository):
    """Repository persisting normalized records in a DuckDB file."""

    def __init__(self, db_path: str = ":memory:") -> None:
        """
        Open (or create) the database.

        Args:
            db_path: DuckDB file path, ``:memory:`` for a transient store
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            db_path = str(Path(db_path).expanduser())
        try:
            self._conn = duckdb.connect(db_path)
            self._init_database()
        except duckdb.Error as exc:
            raise RepositoryError(f"failed to open database {self.db_path}: {exc}", "connect") from exc

    def _init_database(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS index_daily (
                index_name VARCHAR NOT NULL,
                trade_date DATE NOT NULL,
                open_price DECIMAL(18,6) NOT NULL,
                high_price DECIMAL(18,6) NOT NULL,
                low_price DECIMAL(18,6) NOT NULL,
                close_price DECIMAL(18,6) NOT NULL,
                volume BIGINT NOT NULL,
                fetched_at TIMESTAMP NOT NULL,
                source VARCHAR,
                is_interpolated BOOLEAN NOT NULL DEFAULT FALSE,
                PRIMARY KEY (index_name, trade_date)
            )
        """)

    def _execute(self, operation: str, sql: str, params: Sequence[Any] | None = None) -> duckdb.DuckDBPyConnection:
        try:
            return self._conn.execute(sql, params or [])
        except duckdb.Error as exc:
            raise RepositoryError(f"{operation} failed: {exc}", operation) from exc

    async def save_one(self, record: NormalizedRecord) -> None:
        self._execute("save_one", _UPSERT_SQL, _to_row(record))

    async def save_batch(self, records: Sequence[NormalizedRecord]) -> int:
        if not records:
            return 0
        try:
            self._conn.executemany(_UPSERT_SQL, [_to_row(record) for record in records])
        except duckdb.Error as exc:
            raise RepositoryError(f"save_batch failed: {exc}", "save_batch") from exc
        logger.debug("stored {} records in {}", len(records), self.db_path)
        return len(records)

    async def get_by_date_range(
        self,
        start: date,
        end: date,
        index_name: IndexName | str | None = None,
    ) -> list[NormalizedRecord]:
        sql = f"SELECT {_COLUMNS} FROM index_daily WHERE trade_date BETWEEN ? AND ?"
        params: list[Any] = [start, end]
        if index_name is not None:
            sql += " AND index_name = ?"
            params.append(index_label(index_name))
        sql += " ORDER BY index_name, trade_date"
        rows = self._execute("get_by_date_range", sql, params).fetchall()
        return [_from_row(row) for row in rows]

    async def get_by_date_and_index(self, day: date, index_name: IndexName | str) -> NormalizedRecord | None:
        row = self._execute(
            "get_by_date_and_index",
            f"SELECT {_COLUMNS} FROM index_daily WHERE trade_date = ? AND index_name = ?",
            [day, index_label(index_name)],
        ).fetchone()
        return _from_row(row) if row else None

    async def get_latest(self, index_name: IndexName | str) -> NormalizedRecord | None:
        row = self._execute(
            "get_latest",
            f"SELECT {_COLUMNS} FROM index_daily WHERE index_name = ? ORDER BY trade_date DESC LIMIT 1",
            [index_label(index_name)],
        ).fetchone()
        return _from_row(row) if row else None

    async def delete(self, day: date, index_name: IndexName | str) -> bool:
        existing = await self.get_by_date_and_index(day, index_name)
        if existing is None:
            return False
        self._execute(
            "delete",
            "DELETE FROM index_daily WHERE trade_date = ? AND index_name = ?",
            [day, index_label(index_name)],
        )
        return True

    async def verify_integrity(self) -> bool:
        row = self._execute(
            "verify_integrity",
            "SELECT COUNT(*) FROM index_daily WHERE volume < 0 OR close_price < 0",
        ).fetchone()
        return row is not None and row[0] == 0

    async def compact(self) -> bool:
        self._execute("compact", "CHECKPOINT")
        return True

    async def backup(self, path: str | Path) -> bool:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        escaped = str(target).replace("'", "''")
        self._execute("backup", f"COPY index_daily TO '{escaped}' (FORMAT PARQUET)")
        logger.info("backed up records to {}", target)
        return True

    async def close(self) -> None:
        self._conn.close()

    def size_bytes(self) -> int:
        if self.db_path == ":memory:":
            return 0
        target = Path(self.db_path).expanduser()
        return target.stat().st_size if target.exists() else 0
