"""Record kinds: how each synced collection builds, updates and lists records."""

from dataclasses import dataclass
from typing import Any, Callable

from .model import Record, apply_update, build_new_record, migrate_legacy_shape
from .team import (
    TEAM_MEMBER_ID_PREFIX,
    apply_team_member_update,
    build_team_member,
    normalize_team_member,
    team_member_sort_key,
)


@dataclass(frozen=True)
class RecordKind:
    """Behavior of one record collection.

    Attributes:
        name: Default remote collection and cache namespace.
        label: Singular name used in messages (e.g., "Project").
        plural: Plural name used in messages.
        id_prefix: Prefix for generated ids.
        build: Creates a full record from partial data and an optional id.
        update: Resolves a partial update against the existing record.
        migrate: Upgrades a loaded record to the current shape.
        sort_key: When set, records are listed sorted by this key and the
            kind has no custom order index.
    """

    name: str
    label: str
    plural: str
    id_prefix: str
    build: Callable[[dict[str, Any], str | None], Record]
    update: Callable[[Record, dict[str, Any]], Record]
    migrate: Callable[[Record], Record]
    sort_key: Callable[[Record], Any] | None = None

    @property
    def uses_order(self) -> bool:
        return self.sort_key is None


PROJECTS = RecordKind(
    name="projects",
    label="Project",
    plural="projects",
    id_prefix="p",
    build=build_new_record,
    update=apply_update,
    migrate=migrate_legacy_shape,
)

TEAM_MEMBERS = RecordKind(
    name="teamMembers",
    label="Team member",
    plural="team members",
    id_prefix=TEAM_MEMBER_ID_PREFIX,
    build=build_team_member,
    update=apply_team_member_update,
    migrate=normalize_team_member,
    sort_key=team_member_sort_key,
)
