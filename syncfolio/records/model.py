"""Project record shape: ids, timestamps, validation and legacy migration.

Records are plain JSON-compatible dicts. Older records may lack fields that
were introduced later; ``migrate_legacy_shape`` upgrades them once at load
time.
"""

import copy
import logging
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..errors import ValidationError

logger = logging.getLogger(__name__)

Record = dict[str, Any]

DEFAULT_STATUS = "discovery"
DEFAULT_PRIORITY = "medium"

# String fields that are trimmed on create and update
TRIMMED_FIELDS = ("client", "onHoldReason", "notes")

# Scalar release fields used before development.releases existed
LEGACY_RELEASE_FIELDS = ("targetReleaseDate", "actualReleaseDate")

_ID_ALPHABET = string.digits + string.ascii_lowercase


class _Unset:
    """Marker for an attribute that has no value at all."""

    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Unset":
        return self

    def __deepcopy__(self, memo: dict) -> "_Unset":
        return self


UNSET = _Unset()


def generate_id(prefix: str = "p") -> str:
    """Generate a collision-resistant record id.

    Combines the current time in milliseconds with a random base36 suffix,
    so ids from independent clients do not need coordination.

    Args:
        prefix: Short type prefix (e.g., "p" for projects).

    Returns:
        Id of the form ``<prefix>-<epoch-ms>-<9 random chars>``.
    """
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def trim_text(value: Any) -> str:
    """Stripped string, or "" for anything that is not a string."""
    if isinstance(value, str):
        return value.strip()
    return ""


def validate_name(data: dict[str, Any], label: str = "Project") -> str:
    """Return the trimmed primary name or raise ValidationError."""
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"{label} name is required", details={"field": "name"})
    return name.strip()


def build_new_record(data: dict[str, Any], record_id: str | None = None) -> Record:
    """Build a complete record from caller-supplied fields.

    Args:
        data: Partial record; ``name`` is required.
        record_id: Explicit id, generated when omitted.

    Returns:
        New record in the current shape.

    Raises:
        ValidationError: If the name is missing or blank.
    """
    name = validate_name(data)
    timestamp = now_iso()

    record: Record = {
        "id": record_id or data.get("id") or generate_id(),
        "name": name,
        "client": trim_text(data.get("client")),
        "status": data.get("status") or DEFAULT_STATUS,
        "priority": data.get("priority") or DEFAULT_PRIORITY,
        "onHoldReason": trim_text(data.get("onHoldReason")),
        "notes": trim_text(data.get("notes")),
        "discovery": copy.deepcopy(data.get("discovery") or {}),
        "development": copy.deepcopy(data.get("development") or {}),
        "teamMembers": copy.deepcopy(data.get("teamMembers") or []),
        "createdAt": timestamp,
        "updatedAt": timestamp,
    }
    return migrate_legacy_shape(record)


def apply_update(existing: Record, changes: dict[str, Any]) -> Record:
    """Resolve a partial update into a full replacement record.

    Top-level keys in ``changes`` override the existing record; nested
    groups are replaced, not merged.

    Raises:
        ValidationError: If the resulting name is missing or blank.
    """
    name = validate_name(changes)

    updated = copy.deepcopy(existing)
    updated.update(copy.deepcopy(changes))
    updated["id"] = existing["id"]
    updated["name"] = name
    for key in TRIMMED_FIELDS:
        updated[key] = trim_text(updated.get(key))
    updated["updatedAt"] = now_iso()
    return updated


def refresh_timestamp(record: Record) -> Record:
    """Copy of ``record`` with ``updatedAt`` set to now."""
    refreshed = copy.deepcopy(record)
    refreshed["updatedAt"] = now_iso()
    return refreshed


def migrate_legacy_shape(record: Record) -> Record:
    """Upgrade a record stored under an older schema to the current shape.

    The legacy layout kept a single release as scalar
    ``development.targetReleaseDate`` / ``development.actualReleaseDate``
    fields. Those become one entry in ``development.releases``, or an empty
    list when neither was set. Missing list fields introduced later are
    filled with empty lists.

    Pure and idempotent: the input is not modified, and migrating an
    already-current record returns an equal record.

    Args:
        record: Record as loaded from the cache, remote or an import.

    Returns:
        Record in the current shape.
    """
    migrated = copy.deepcopy(record)

    development = migrated.get("development")
    if not isinstance(development, dict):
        development = {}

    if not isinstance(development.get("releases"), list):
        target = development.get("targetReleaseDate")
        actual = development.get("actualReleaseDate")
        if target or actual:
            development["releases"] = [
                {
                    "id": f"{migrated.get('id', 'record')}-rel-1",
                    "name": "Release 1",
                    "startDate": development.get("startDate"),
                    "endDate": target or None,
                    "actualEndDate": actual or None,
                }
            ]
        else:
            development["releases"] = []
        logger.debug(f"Migrated legacy release fields for {migrated.get('id')}")

    for key in LEGACY_RELEASE_FIELDS:
        development.pop(key, None)
    migrated["development"] = development

    discovery = migrated.get("discovery")
    if not isinstance(discovery, dict):
        discovery = {}
    if not isinstance(discovery.get("requiredArtifacts"), list):
        discovery["requiredArtifacts"] = []
    migrated["discovery"] = discovery

    if not isinstance(migrated.get("teamMembers"), list):
        migrated["teamMembers"] = []

    return migrated


@dataclass
class Create:
    """Intent to create a record from partial data."""

    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class Update:
    """Intent to replace a record with ``existing`` updated by ``data``."""

    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class Delete:
    """Intent to remove a record."""


Intent = Create | Update | Delete
