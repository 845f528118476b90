"""Remote document-store interface shared by all backends."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from ..records.model import UNSET, Record

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[Record]], None]
OrderCallback = Callable[[list[str] | None], None]


@dataclass(frozen=True)
class Identity:
    """Externally supplied signed-in identity."""

    uid: str
    token: str | None = None


@dataclass(frozen=True)
class Scope:
    """Remote namespace holding one identity's data."""

    uid: str
    token: str | None = None
    collection: str = "projects"

    @classmethod
    def for_identity(cls, identity: Identity, collection: str = "projects") -> "Scope":
        return cls(uid=identity.uid, token=identity.token, collection=collection)

    @property
    def records_path(self) -> str:
        return f"users/{self.uid}/{self.collection}"

    @property
    def order_path(self) -> str:
        return f"users/{self.uid}/meta/{self.collection}Order"


def sanitize_for_remote(value: Any) -> Any:
    """Replace every UNSET with None, recursively.

    The remote store rejects undefined values anywhere in a document, so
    this runs on every outgoing write. Lists and tuples keep their element
    positions (tuples become lists).
    """
    if value is UNSET:
        return None
    if isinstance(value, dict):
        return {key: sanitize_for_remote(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_for_remote(item) for item in value]
    return value


class Subscription:
    """Handle for a live remote subscription.

    ``unsubscribe()`` may be called any number of times; only the first call
    has an effect. Calling the handle itself is the same as unsubscribing.
    """

    def __init__(self, cancel: Callable[[], None], name: str = "subscription"):
        self._cancel = cancel
        self._name = name
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cancel()
        logger.debug(f"Unsubscribed {self._name}")

    def __call__(self) -> None:
        self.unsubscribe()


class RemoteSyncAdapter(ABC):
    """Real-time remote document collection.

    Implementations translate record-level intents into document-store
    operations and surface remote change events. They keep no state beyond
    open subscriptions and never retry writes.
    """

    @abstractmethod
    async def fetch_all(self, scope: Scope) -> list[Record]:
        """Read the full collection for a scope.

        Raises:
            RemoteReadError: If the read fails.
        """

    @abstractmethod
    async def put(self, scope: Scope, record: Record) -> None:
        """Idempotently upsert one record, sanitized with ``sanitize_for_remote``.

        Raises:
            RemoteWriteError: If the write fails.
        """

    @abstractmethod
    async def delete(self, scope: Scope, record_id: str) -> None:
        """Delete one record. Deleting a missing document succeeds.

        Raises:
            RemoteWriteError: If the delete fails.
        """

    @abstractmethod
    async def replace_all(self, scope: Scope, records: list[Record]) -> None:
        """Delete every document in the scope, then write ``records``.

        Each phase is a single atomic batch; the two phases are not atomic
        with each other.

        Raises:
            RemoteWriteError: If the delete phase fails (nothing changed).
            PartialBulkReplaceError: If the write phase fails after the
                delete phase committed.
        """

    @abstractmethod
    def watch(self, scope: Scope, on_change: SnapshotCallback) -> Subscription:
        """Subscribe to full-collection snapshots.

        ``on_change`` fires once after subscribing and again after every
        remote mutation, including echoes of this client's own writes.
        """

    @abstractmethod
    async def read_order(self, scope: Scope) -> list[str] | None:
        """Read the order side-document, or None if it does not exist."""

    @abstractmethod
    async def write_order(self, scope: Scope, order: list[str]) -> None:
        """Replace the order side-document."""

    @abstractmethod
    def watch_order(self, scope: Scope, on_change: OrderCallback) -> Subscription:
        """Subscribe to the order side-document."""

    async def aclose(self) -> None:
        """Release network resources. Safe to call more than once."""
