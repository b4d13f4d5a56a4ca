"""In-process record repository."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from marketcharts.core.data.repositories.base import RecordRepository
from marketcharts.core.models import IndexName, NormalizedRecord, index_label


class InMemoryRecordRepository(RecordRepository):
    """Dictionary backed repository used for tests and short-lived sessions."""

    def __init__(self, records: Sequence[NormalizedRecord] | None = None) -> None:
        self._records: dict[tuple[str, date], NormalizedRecord] = {}
        self.save_calls = 0
        for record in records or ():
            self._records[(record.index_label, record.date)] = record

    async def save_one(self, record: NormalizedRecord) -> None:
        self.save_calls += 1
        self._records[(record.index_label, record.date)] = record

    async def save_batch(self, records: Sequence[NormalizedRecord]) -> int:
        self.save_calls += 1
        for record in records:
            self._records[(record.index_label, record.date)] = record
        return len(records)

    async def get_by_date_range(
        self,
        start: date,
        end: date,
        index_name: IndexName | str | None = None,
    ) -> list[NormalizedRecord]:
        label = index_label(index_name) if index_name is not None else None
        matches = [
            record
            for (key_label, day), record in self._records.items()
            if start <= day <= end and (label is None or key_label == label)
        ]
        return sorted(matches, key=lambda record: (record.index_label, record.date))

    async def get_by_date_and_index(self, day: date, index_name: IndexName | str) -> NormalizedRecord | None:
        return self._records.get((index_label(index_name), day))

    async def get_latest(self, index_name: IndexName | str) -> NormalizedRecord | None:
        label = index_label(index_name)
        candidates = [record for (key_label, _), record in self._records.items() if key_label == label]
        return max(candidates, key=lambda record: record.date, default=None)

    async def delete(self, day: date, index_name: IndexName | str) -> bool:
        return self._records.pop((index_label(index_name), day), None) is not None

    async def verify_integrity(self) -> bool:
        return all(record.volume >= 0 and record.close >= 0 for record in self._records.values())

    async def backup(self, path: str | Path) -> bool:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        rows = [record.model_dump(mode="json") for record in self._records.values()]
        target.write_text(json.dumps(rows), encoding="utf-8")
        return True

    def __len__(self) -> int:
        return len(self._records)
