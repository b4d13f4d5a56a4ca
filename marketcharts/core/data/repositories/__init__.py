"""Record repositories."""

from marketcharts.core.data.repositories.base import RecordRepository
from marketcharts.core.data.repositories.duckdb_store import DuckDBRecordRepository
from marketcharts.core.data.repositories.memory import InMemoryRecordRepository

__all__ = ["DuckDBRecordRepository", "InMemoryRecordRepository", "RecordRepository"]
