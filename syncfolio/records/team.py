"""Team member roster records.

Team members are a flat collection synced alongside projects. They carry
a name plus optional contact fields and are listed alphabetically rather
than by a custom order.
"""

import copy
from typing import Any

from .model import Record, generate_id, now_iso, trim_text, validate_name

TEAM_MEMBER_ID_PREFIX = "tm"

# Optional string fields, always stored trimmed
TEAM_MEMBER_FIELDS = ("email", "role", "department")

LABEL = "Team member"


def build_team_member(data: dict[str, Any], record_id: str | None = None) -> Record:
    """Build a new team member.

    Raises:
        ValidationError: If the name is missing or blank.
    """
    name = validate_name(data, LABEL)
    timestamp = now_iso()

    member: Record = {
        "id": record_id or data.get("id") or generate_id(TEAM_MEMBER_ID_PREFIX),
        "name": name,
    }
    for key in TEAM_MEMBER_FIELDS:
        member[key] = trim_text(data.get(key))
    member["createdAt"] = timestamp
    member["updatedAt"] = timestamp
    return member


def apply_team_member_update(existing: Record, changes: dict[str, Any]) -> Record:
    """Resolve a partial update into a full replacement team member."""
    name = validate_name(changes, LABEL)

    updated = copy.deepcopy(existing)
    updated.update(copy.deepcopy(changes))
    updated["id"] = existing["id"]
    updated["name"] = name
    for key in TEAM_MEMBER_FIELDS:
        updated[key] = trim_text(updated.get(key))
    updated["updatedAt"] = now_iso()
    return updated


def normalize_team_member(record: Record) -> Record:
    """Fill missing contact fields with "". Pure and idempotent."""
    normalized = copy.deepcopy(record)
    for key in TEAM_MEMBER_FIELDS:
        if not isinstance(normalized.get(key), str):
            normalized[key] = ""
    return normalized


def team_member_sort_key(member: Record) -> str:
    return (member.get("name") or "").casefold()


def group_by_department(members: list[Record]) -> dict[str, list[Record]]:
    """Group members by department, sorted by name within each group.

    Departments are in alphabetical order. Members without a department
    are grouped under "Unassigned".
    """
    groups: dict[str, list[Record]] = {}
    for member in sorted(members, key=team_member_sort_key):
        groups.setdefault(member.get("department") or "Unassigned", []).append(member)
    return {department: groups[department] for department in sorted(groups)}
