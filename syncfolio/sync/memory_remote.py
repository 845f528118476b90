"""Process-local document store with real-time echo semantics."""

import asyncio
import copy
import logging

from ..errors import PartialBulkReplaceError, RemoteWriteError
from ..records.model import Record
from .remote import (
    OrderCallback,
    RemoteSyncAdapter,
    Scope,
    SnapshotCallback,
    Subscription,
    sanitize_for_remote,
)

logger = logging.getLogger(__name__)


class InMemoryRemote(RemoteSyncAdapter):
    """Remote adapter backed by dictionaries.

    Behaves like a real-time document store: every write is echoed to all
    watchers of the scope, delivered on a later event-loop iteration rather
    than inside the write call. Used for offline development and tests.
    """

    def __init__(self):
        self._documents: dict[str, dict[str, Record]] = {}
        self._orders: dict[str, list[str]] = {}
        self._watchers: dict[str, list[SnapshotCallback]] = {}
        self._order_watchers: dict[str, list[OrderCallback]] = {}
        self.fail_delete_phase = False
        self.fail_write_phase = False

    def _collection(self, scope: Scope) -> dict[str, Record]:
        return self._documents.setdefault(scope.records_path, {})

    def _snapshot(self, scope: Scope) -> list[Record]:
        return [copy.deepcopy(r) for r in self._collection(scope).values()]

    def _schedule(self, callback, *args) -> None:
        asyncio.get_running_loop().call_soon(callback, *args)

    def _deliver(self, callback: SnapshotCallback, scope: Scope) -> None:
        if callback in self._watchers.get(scope.records_path, []):
            callback(self._snapshot(scope))

    def _deliver_order(self, callback: OrderCallback, scope: Scope) -> None:
        if callback in self._order_watchers.get(scope.order_path, []):
            order = self._orders.get(scope.order_path)
            callback(list(order) if order is not None else None)

    def _emit(self, scope: Scope) -> None:
        for callback in list(self._watchers.get(scope.records_path, [])):
            self._schedule(self._deliver, callback, scope)

    def _emit_order(self, scope: Scope) -> None:
        for callback in list(self._order_watchers.get(scope.order_path, [])):
            self._schedule(self._deliver_order, callback, scope)

    async def fetch_all(self, scope: Scope) -> list[Record]:
        return self._snapshot(scope)

    async def put(self, scope: Scope, record: Record) -> None:
        self._collection(scope)[record["id"]] = sanitize_for_remote(copy.deepcopy(record))
        self._emit(scope)

    async def delete(self, scope: Scope, record_id: str) -> None:
        self._collection(scope).pop(record_id, None)
        self._emit(scope)

    async def replace_all(self, scope: Scope, records: list[Record]) -> None:
        if self.fail_delete_phase:
            raise RemoteWriteError("Delete batch rejected by remote store")

        collection = self._collection(scope)
        deleted = len(collection)
        collection.clear()
        self._emit(scope)

        if self.fail_write_phase:
            raise PartialBulkReplaceError(
                f"Deleted {deleted} documents but the write batch failed",
                deleted_count=deleted,
            )

        for record in records:
            collection[record["id"]] = sanitize_for_remote(copy.deepcopy(record))
        self._emit(scope)

    def watch(self, scope: Scope, on_change: SnapshotCallback) -> Subscription:
        watchers = self._watchers.setdefault(scope.records_path, [])
        watchers.append(on_change)
        self._schedule(self._deliver, on_change, scope)

        def cancel() -> None:
            if on_change in watchers:
                watchers.remove(on_change)

        return Subscription(cancel, name=f"watch {scope.records_path}")

    async def read_order(self, scope: Scope) -> list[str] | None:
        order = self._orders.get(scope.order_path)
        return list(order) if order is not None else None

    async def write_order(self, scope: Scope, order: list[str]) -> None:
        self._orders[scope.order_path] = list(order)
        self._emit_order(scope)

    def watch_order(self, scope: Scope, on_change: OrderCallback) -> Subscription:
        watchers = self._order_watchers.setdefault(scope.order_path, [])
        watchers.append(on_change)
        self._schedule(self._deliver_order, on_change, scope)

        def cancel() -> None:
            if on_change in watchers:
                watchers.remove(on_change)

        return Subscription(cancel, name=f"watch {scope.order_path}")

    def set_remote_documents(self, scope: Scope, records: list[Record]) -> None:
        """Overwrite the scope as another device would, then notify watchers."""
        self._documents[scope.records_path] = {
            r["id"]: sanitize_for_remote(copy.deepcopy(r)) for r in records
        }
        self._emit(scope)

    def watcher_count(self, scope: Scope) -> int:
        return len(self._watchers.get(scope.records_path, [])) + len(
            self._order_watchers.get(scope.order_path, [])
        )
