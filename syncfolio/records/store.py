"""In-memory record collection and order index."""

from __future__ import annotations

import copy

from ..errors import NotFoundError
from .model import Record


class RecordStore:
    """Authoritative, synchronous in-memory CRUD over records and the order index.

    Holds no I/O of its own. Callers are responsible for persistence and
    change notification. Every value handed out is a deep copy, so callers
    can never mutate the stored records in place.
    """

    def __init__(self, records: list[Record] | None = None):
        self._records: dict[str, Record] = {}
        self._order: list[str] = []
        if records:
            self.replace_all(records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def list(self) -> list[Record]:
        """All records in insertion order."""
        return [copy.deepcopy(r) for r in self._records.values()]

    def get(self, record_id: str) -> Record | None:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def upsert(self, record: Record) -> None:
        """Insert a record or fully replace the one with the same id.

        No deep merge: nested fields missing from ``record`` do not survive.
        A replaced record keeps its position.
        """
        self._records[record["id"]] = copy.deepcopy(record)

    def remove(self, record_id: str, strict: bool = False) -> Record | None:
        """Remove a record.

        Args:
            record_id: Id of the record to remove.
            strict: Raise instead of returning None when the id is absent.

        Returns:
            The removed record, or None if it was not present.

        Raises:
            NotFoundError: If ``strict`` and the id is absent.
        """
        record = self._records.pop(record_id, None)
        if record is None and strict:
            raise NotFoundError(
                f"Record with id {record_id} not found",
                details={"id": record_id},
            )
        return record

    def replace_all(self, records: list[Record]) -> None:
        """Replace the whole collection, keeping the order index."""
        self._records = {r["id"]: copy.deepcopy(r) for r in records}

    @property
    def order(self) -> list[str]:
        return list(self._order)

    def apply_order(self, new_order: list[str]) -> None:
        """Replace the order index wholesale.

        Membership is not validated; unknown ids are dropped at render time.
        """
        self._order = list(new_order)

    def clear(self) -> None:
        self._records = {}
        self._order = []
