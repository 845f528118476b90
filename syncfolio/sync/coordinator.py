"""Reconciliation between optimistic local mutations and the remote store.

The coordinator is the only writer of both the RecordStore and the remote
collection. While any of its remote writes is unconfirmed it discards
inbound snapshots, so a stale echo can never overwrite newer local state.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from ..errors import (
    CacheError,
    ConfigError,
    NotFoundError,
    RemoteReadError,
    RemoteTimeoutError,
    RemoteWriteError,
    SyncfolioError,
    ValidationError,
)
from ..records.cache import LocalCache
from ..records.kinds import PROJECTS, RecordKind
from ..records.model import (
    Create,
    Delete,
    Intent,
    Record,
    Update,
    generate_id,
    refresh_timestamp,
)
from ..records.ordering import order_records
from ..records.store import RecordStore
from .remote import Identity, RemoteSyncAdapter, Scope, Subscription, sanitize_for_remote

logger = logging.getLogger(__name__)

Listener = Callable[[list[Record]], None]


class SyncPhase(Enum):
    """Connection state of a coordinator."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SYNCED = "synced"
    WRITE_IN_FLIGHT = "write_in_flight"


@dataclass
class SyncState:
    """Identity and outstanding remote writes for one coordinator."""

    identity: Identity | None = None
    pending_write_count: int = 0

    @property
    def remote_active(self) -> bool:
        return self.identity is not None


class SyncCoordinator:
    """Keeps a RecordStore consistent with a remote document collection.

    Mutations go to the remote first when an identity is set, and are
    applied locally only after the remote accepts them. Without an identity
    they are written to the optional LocalCache and then applied locally.
    """

    def __init__(
        self,
        remote: RemoteSyncAdapter | None = None,
        store: RecordStore | None = None,
        cache: LocalCache | None = None,
        collection: str | None = None,
        write_timeout: float | None = 30.0,
        kind: RecordKind = PROJECTS,
    ):
        """Initialize the coordinator.

        Args:
            remote: Adapter for the remote store; required before set_identity.
            store: Record store to manage (a new one by default).
            cache: Optional local cache used while disconnected.
            collection: Remote collection name within each identity's scope;
                defaults to the kind's name.
            write_timeout: Seconds before a remote write is abandoned with
                RemoteTimeoutError; None waits indefinitely.
            kind: Record kind managed by this coordinator (projects by default).
        """
        self.store = store or RecordStore()
        self.state = SyncState()
        self.kind = kind
        self._remote = remote
        self._cache = cache
        self._collection = collection or kind.name
        self._write_timeout = write_timeout
        self._scope: Scope | None = None
        self._connecting = False
        self._session = 0
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Listener] = []
        self._initialized = False

    @property
    def phase(self) -> SyncPhase:
        if self.state.identity is None:
            return SyncPhase.DISCONNECTED
        if self._connecting:
            return SyncPhase.CONNECTING
        if self.state.pending_write_count > 0:
            return SyncPhase.WRITE_IN_FLIGHT
        return SyncPhase.SYNCED

    @property
    def remote_active(self) -> bool:
        return self.state.remote_active

    def _log_context(self) -> dict[str, Any]:
        return {
            "uid": self.state.identity.uid if self.state.identity else None,
            "collection": self._collection,
            "phase": self.phase.value,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> list[Record]:
        """Load the local cache into the store. Runs once.

        Returns:
            The current record list.
        """
        if self._initialized:
            return self.store.list()
        self._initialized = True

        if not self.remote_active:
            self._load_cache()

        self._notify()
        return self.store.list()

    def _load_cache(self) -> None:
        if self._cache is None:
            return
        try:
            records = self._cache.load_records()
            order = self._cache.load_order()
        except CacheError as e:
            logger.warning(f"Failed to load local cache: {e}", extra=self._log_context())
            records, order = [], []
        self.store.replace_all([self.kind.migrate(r) for r in records])
        self.store.apply_order(order)
        logger.info(
            f"Loaded {len(records)} {self.kind.plural} from local cache",
            extra=self._log_context(),
        )

    async def set_identity(self, identity: Identity | None) -> None:
        """Switch the signed-in identity.

        Tears down any existing session. With a new identity, fetches the
        remote collection, replaces the store with it and installs the
        change watches. Without one, local-only records are reloaded from
        the cache.

        Raises:
            ConfigError: If an identity is given but no remote adapter exists.
            RemoteReadError: If the initial fetch fails; the coordinator is
                left disconnected.
        """
        if identity is not None and identity == self.state.identity:
            return

        if self.state.identity is not None:
            self._teardown()

        if identity is None:
            return

        if self._remote is None:
            raise ConfigError("No remote adapter configured for signed-in sync")

        self._session += 1
        session = self._session
        scope = Scope.for_identity(identity, self._collection)
        self.state.identity = identity
        self._scope = scope
        self._connecting = True
        logger.info(f"Connecting to {scope.records_path}", extra=self._log_context())

        try:
            records = await self._remote.fetch_all(scope)
            order = await self._remote.read_order(scope) if self.kind.uses_order else None
        except Exception as e:
            if session == self._session:
                self._reset_session()
            logger.error(f"Initial sync for {scope.records_path} failed: {e}")
            if isinstance(e, SyncfolioError):
                raise
            raise RemoteReadError(f"Initial sync failed: {e}", cause=e) from e

        if session != self._session:
            logger.info(f"Identity changed while connecting to {scope.records_path}, dropping result")
            return

        self.store.replace_all([self.kind.migrate(r) for r in records])
        self.store.apply_order(order or [])
        self._subscriptions = [self._remote.watch(scope, self._on_records_snapshot)]
        if self.kind.uses_order:
            self._subscriptions.append(
                self._remote.watch_order(scope, self._on_order_snapshot)
            )
        self._connecting = False
        logger.info(
            f"Synced {len(records)} {self.kind.plural} from {scope.records_path}",
            extra=self._log_context(),
        )
        self._notify()

    def _reset_session(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self._session += 1
        self.state.identity = None
        self._scope = None
        self._connecting = False

    def _teardown(self) -> None:
        scope = self._scope
        self._reset_session()
        self.store.clear()
        logger.info(
            f"Disconnected from {scope.records_path if scope else 'remote'}",
            extra=self._log_context(),
        )
        self._load_cache()
        self._notify()

    async def close(self) -> None:
        """Stop watches and release the adapter and cache. The cache keeps its data."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        if self._remote is not None:
            await self._remote.aclose()
        if self._cache is not None:
            self._cache.close()

    # ------------------------------------------------------------------
    # Inbound snapshots
    # ------------------------------------------------------------------

    def _on_records_snapshot(self, records: list[Record]) -> None:
        if not self.remote_active or self._connecting:
            return
        pending = self.state.pending_write_count
        if pending > 0:
            logger.debug(
                f"Discarding remote snapshot of {len(records)} records, "
                f"{pending} local writes pending",
                extra=self._log_context(),
            )
            return
        self.store.replace_all([self.kind.migrate(r) for r in records])
        logger.debug(f"Applied remote snapshot of {len(records)} records")
        self._notify()

    def _on_order_snapshot(self, order: list[str] | None) -> None:
        if not self.remote_active or self._connecting:
            return
        if self.state.pending_write_count > 0:
            logger.debug("Discarding remote order snapshot, local writes pending")
            return
        self.store.apply_order(order or [])
        self._notify()

    # ------------------------------------------------------------------
    # Remote write discipline
    # ------------------------------------------------------------------

    async def _remote_write(self, description: str, operation: Awaitable[Any]) -> None:
        """Await one remote write with the pending counter held.

        The counter is incremented before the call and decremented once it
        settles, whatever the outcome.
        """
        self.state.pending_write_count += 1
        try:
            if self._write_timeout is None:
                await operation
            else:
                await asyncio.wait_for(operation, timeout=self._write_timeout)
        except SyncfolioError as e:
            logger.error(f"Remote write failed ({description}): {e}", extra=self._log_context())
            raise
        except asyncio.TimeoutError as e:
            logger.error(
                f"Remote write timed out after {self._write_timeout}s ({description})",
                extra=self._log_context(),
            )
            raise RemoteTimeoutError(
                f"Remote write timed out after {self._write_timeout}s: {description}",
                details={"action": description},
                cause=e,
            ) from e
        except Exception as e:
            logger.error(f"Remote write failed ({description}): {e}", extra=self._log_context())
            raise RemoteWriteError(
                f"Remote write failed: {description}: {e}",
                details={"action": description},
                cause=e,
            ) from e
        finally:
            self.state.pending_write_count -= 1

    def _apply_local(self, change: Callable[[], None]) -> None:
        """Apply ``change`` to the store, persist it while disconnected, then notify.

        If the cache write fails the store is restored and CacheError is
        raised, so no listener ever sees state the cache does not hold.
        """
        records, order = self.store.list(), self.store.order
        change()
        if not self.remote_active and self._cache is not None:
            try:
                self._cache.save_snapshot(self.store.list(), self.store.order)
            except CacheError as e:
                self.store.replace_all(records)
                self.store.apply_order(order)
                logger.error(f"Local change rolled back: {e}", extra=self._log_context())
                raise
        self._notify()

    def _append_to_order(self, record_id: str) -> None:
        # An empty index already renders in insertion order
        order = self.store.order
        if order and record_id not in order:
            self.store.apply_order(order + [record_id])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def mutate(self, record_id: str | None, intent: Intent) -> Record:
        """Apply a create, update or delete.

        Args:
            record_id: Target id; optional for Create (generated when None).
            intent: Create, Update or Delete.

        Returns:
            The stored record, or the removed record for Delete.

        Raises:
            ValidationError: If the name is blank or the intent is invalid.
            NotFoundError: If Update/Delete targets an unknown id.
            RemoteWriteError: If the remote rejects the write.
            CacheError: If the local cache cannot be written while disconnected.
        """
        if isinstance(intent, Create):
            record = sanitize_for_remote(self.kind.build(intent.data, record_id))
            if record["id"] in self.store:
                raise ValidationError(
                    f"{self.kind.label} with id {record['id']} already exists",
                    details={"id": record["id"]},
                )
            await self._write_record(record, is_new=True)
            return record

        if isinstance(intent, Update):
            existing = self._require(record_id)
            record = sanitize_for_remote(self.kind.update(existing, intent.data))
            await self._write_record(record, is_new=False)
            return record

        if isinstance(intent, Delete):
            existing = self._require(record_id)
            session = self._session
            if self.remote_active:
                await self._remote_write(
                    f"delete {record_id}", self._remote.delete(self._scope, record_id)
                )
                if session != self._session:
                    logger.warning(f"Session ended before delete of {record_id} was applied")
                    return existing

            def remove() -> None:
                self.store.remove(record_id)
                self.store.apply_order([i for i in self.store.order if i != record_id])

            self._apply_local(remove)
            return existing

        raise ValidationError(f"Unsupported mutation intent: {intent!r}")

    def _require(self, record_id: str | None) -> Record:
        record = self.store.get(record_id) if record_id is not None else None
        if record is None:
            raise NotFoundError(
                f"{self.kind.label} with id {record_id} not found", details={"id": record_id}
            )
        return record

    async def _write_record(self, record: Record, is_new: bool) -> None:
        session = self._session
        if self.remote_active:
            await self._remote_write(
                f"put {record['id']}", self._remote.put(self._scope, record)
            )
            if session != self._session:
                logger.warning(f"Session ended before write of {record['id']} was applied")
                return

        def apply() -> None:
            self.store.upsert(record)
            if is_new:
                self._append_to_order(record["id"])

        self._apply_local(apply)

    async def create(self, data: dict[str, Any]) -> Record:
        return await self.mutate(None, Create(data))

    async def update(self, record_id: str, data: dict[str, Any]) -> Record:
        return await self.mutate(record_id, Update(data))

    async def delete(self, record_id: str) -> Record:
        return await self.mutate(record_id, Delete())

    async def reorder(self, new_order: list[str]) -> None:
        """Replace the display order.

        Ids are not checked against the store; unknown ids are ignored when
        rendering.

        Raises:
            ValidationError: If this kind is listed by a fixed sort instead.
        """
        if not self.kind.uses_order:
            raise ValidationError(f"{self.kind.plural.capitalize()} cannot be reordered")

        new_order = [str(i) for i in new_order]
        session = self._session
        if self.remote_active:
            await self._remote_write(
                "write order", self._remote.write_order(self._scope, new_order)
            )
            if session != self._session:
                return
        self._apply_local(lambda: self.store.apply_order(new_order))

    async def bulk_replace(self, records: list[Record]) -> list[Record]:
        """Replace the entire collection.

        Remotely this is two batches (delete all, write all). The store is
        replaced only after both succeed.

        Raises:
            RemoteWriteError: If the delete phase fails.
            PartialBulkReplaceError: If the write phase fails after deletion.
        """
        records = [sanitize_for_remote(r) for r in records]
        session = self._session
        if self.remote_active:
            await self._remote_write(
                f"replace {len(records)} records",
                self._remote.replace_all(self._scope, records),
            )
            if session != self._session:
                return records
        self._apply_local(lambda: self.store.replace_all(records))
        logger.info(
            f"Replaced collection with {len(records)} {self.kind.plural}",
            extra=self._log_context(),
        )
        return self.store.list()

    async def import_collection(self, data: list[Record] | str | bytes) -> list[Record]:
        """Import records from a list or a JSON array string.

        Every record gets a fresh ``updatedAt``; records without an id get a
        generated one; legacy shapes are migrated.

        Raises:
            ValidationError: If the input is not an array of objects or
                contains duplicate ids.
        """
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Failed to import: {e}", cause=e) from e

        if not isinstance(data, list):
            raise ValidationError(f"Invalid format: expected an array of {self.kind.plural}")

        prepared: list[Record] = []
        seen: set[str] = set()
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                raise ValidationError(
                    f"Invalid format: item {index} is not an object",
                    details={"index": index},
                )
            record = refresh_timestamp(item)
            if not record.get("id"):
                record["id"] = generate_id(self.kind.id_prefix)
            if record["id"] in seen:
                raise ValidationError(
                    f"Duplicate {self.kind.label.lower()} id {record['id']} in import",
                    details={"id": record["id"]},
                )
            seen.add(record["id"])
            prepared.append(self.kind.migrate(record))

        return await self.bulk_replace(prepared)

    def export_collection(self) -> str:
        """Serialize all records as a JSON array."""
        return json.dumps(self.store.list(), indent=2)

    async def upload_cached_records(self) -> int:
        """Push local-only cached records to the signed-in remote collection.

        Records whose id already exists remotely are left alone. This is
        never done automatically on sign-in.

        Returns:
            Number of records uploaded.

        Raises:
            ValidationError: If no identity is synced.
        """
        if self.phase in (SyncPhase.DISCONNECTED, SyncPhase.CONNECTING):
            raise ValidationError("Sign in and finish syncing before uploading local records")
        if self._cache is None:
            return 0

        cached = [self.kind.migrate(r) for r in self._cache.load_records()]
        missing = [r for r in cached if r.get("id") and r["id"] not in self.store]

        session = self._session
        uploaded = 0
        for record in missing:
            record = sanitize_for_remote(record)
            await self._remote_write(
                f"upload {record['id']}", self._remote.put(self._scope, record)
            )
            if session != self._session:
                break
            self.store.upsert(record)
            self._append_to_order(record["id"])
            uploaded += 1

        if uploaded:
            self._notify()
        logger.info(
            f"Uploaded {uploaded} cached {self.kind.plural} ({len(cached)} cached)",
            extra=self._log_context(),
        )
        return uploaded

    # ------------------------------------------------------------------
    # Reads and notifications
    # ------------------------------------------------------------------

    def records(self) -> list[Record]:
        return self.store.list()

    def get(self, record_id: str) -> Record | None:
        return self.store.get(record_id)

    def ordered_records(self) -> list[Record]:
        """Records in display order: the order index, or the kind's sort."""
        if self.kind.sort_key is not None:
            return sorted(self.store.list(), key=self.kind.sort_key)
        return order_records(self.store.list(), self.store.order)

    def subscribe(self, listener: Listener) -> Subscription:
        """Register a listener for the full record list after every change.

        Returns:
            Subscription; call it (or its ``unsubscribe``) to stop delivery.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(remove, name="listener")

    def _notify(self) -> None:
        records = self.store.list()
        for listener in list(self._listeners):
            try:
                listener(records)
            except Exception as e:
                logger.error(f"Error in data listener: {e}", exc_info=True)

    def get_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with phase, identity and counts.
        """
        return {
            "phase": self.phase.value,
            "uid": self.state.identity.uid if self.state.identity else None,
            "collection": self._collection,
            "remote_active": self.remote_active,
            "pending_writes": self.state.pending_write_count,
            "records": len(self.store),
            "order_length": len(self.store.order),
            "listeners": len(self._listeners),
            "cache": str(self._cache.db_path) if self._cache else None,
        }
