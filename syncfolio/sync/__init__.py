"""Remote synchronization for syncfolio.

Provides the remote document-store interface with HTTP and in-memory
backends, and the coordinator that reconciles optimistic local mutations
with remote snapshots.
"""

from .coordinator import SyncCoordinator, SyncPhase, SyncState
from .http_remote import HttpRemote
from .memory_remote import InMemoryRemote
from .remote import (
    Identity,
    RemoteSyncAdapter,
    Scope,
    Subscription,
    sanitize_for_remote,
)

__all__ = [
    "HttpRemote",
    "Identity",
    "InMemoryRemote",
    "RemoteSyncAdapter",
    "Scope",
    "Subscription",
    "SyncCoordinator",
    "SyncPhase",
    "SyncState",
    "sanitize_for_remote",
]
