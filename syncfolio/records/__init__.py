"""Record collections for syncfolio.

Provides:
- The project record shape, ids and legacy-shape migration
- Team member roster records
- Record kinds that tell the coordinator how to handle each collection
- The in-memory RecordStore and display ordering
- A SQLite cache for local-only work
"""

from .cache import LocalCache
from .derived import ProjectDerived, compute_project_derived
from .kinds import PROJECTS, TEAM_MEMBERS, RecordKind
from .model import (
    UNSET,
    Create,
    Delete,
    Intent,
    Record,
    Update,
    generate_id,
    migrate_legacy_shape,
)
from .ordering import order_records
from .store import RecordStore
from .team import group_by_department

__all__ = [
    "PROJECTS",
    "TEAM_MEMBERS",
    "UNSET",
    "Create",
    "Delete",
    "Intent",
    "LocalCache",
    "ProjectDerived",
    "Record",
    "RecordKind",
    "RecordStore",
    "Update",
    "compute_project_derived",
    "generate_id",
    "group_by_department",
    "migrate_legacy_shape",
    "order_records",
]
