"""Record repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from marketcharts.core.models import IndexName, NormalizedRecord


class RecordRepository(ABC):
    """Canonical store holding at most one record per ``(index_name, date)``.

    Saving a record for an existing key overwrites it.
    """

    @abstractmethod
    async def save_one(self, record: NormalizedRecord) -> None:
        """Insert or overwrite one record."""

    @abstractmethod
    async def save_batch(self, records: Sequence[NormalizedRecord]) -> int:
        """Insert or overwrite records, returning how many were written."""

    @abstractmethod
    async def get_by_date_range(
        self,
        start: date,
        end: date,
        index_name: IndexName | str | None = None,
    ) -> list[NormalizedRecord]:
        """Records within ``[start, end]`` ordered by index and date."""

    @abstractmethod
    async def get_by_date_and_index(self, day: date, index_name: IndexName | str) -> NormalizedRecord | None:
        """Single record lookup."""

    @abstractmethod
    async def get_latest(self, index_name: IndexName | str) -> NormalizedRecord | None:
        """Most recent record for an index."""

    @abstractmethod
    async def delete(self, day: date, index_name: IndexName | str) -> bool:
        """Remove one record, returning whether it existed."""

    @abstractmethod
    async def verify_integrity(self) -> bool:
        """Check the store for rows violating record invariants."""

    async def compact(self) -> bool:
        return True

    async def backup(self, path: str | Path) -> bool:
        return False

    async def close(self) -> None:
        return None
