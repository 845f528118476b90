"""Risk and schedule state derived from a project record."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .model import Record


@dataclass
class ProjectDerived:
    """Computed, never-persisted view of a project's schedule health."""

    has_missing_artifacts: bool = False
    has_late_artifacts: bool = False
    discovery_is_late: bool = False
    dev_is_late: bool = False
    late_releases: list[dict[str, Any]] = field(default_factory=list)
    next_release: dict[str, Any] | None = None
    overall_risk: str = "on-track"
    risk_flags: list[str] = field(default_factory=list)
    discovery_days_late: int | None = None
    dev_days_late: int | None = None


def parse_date(value: Any) -> datetime | None:
    """Parse an ISO date or datetime string; None for empty or invalid input.

    Naive values are taken as UTC.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_between(start: datetime | None, end: datetime | None) -> int | None:
    if start is None or end is None:
        return None
    return round((end - start).total_seconds() / 86400)


def is_past(value: Any, now: datetime | None = None) -> bool:
    """True if the date lies before today, ignoring time of day."""
    date = parse_date(value)
    if date is None:
        return False
    now = now or datetime.now(timezone.utc)
    return date.date() < now.date()


def compute_project_derived(record: Record, now: datetime | None = None) -> ProjectDerived:
    """Compute lateness and risk flags for a project.

    Args:
        record: Project record in the current shape.
        now: Reference time, defaults to the current UTC time.

    Returns:
        ProjectDerived summary.
    """
    now = now or datetime.now(timezone.utc)

    discovery = record.get("discovery") or {}
    development = record.get("development") or {}

    discovery_target = parse_date(discovery.get("targetCompleteDate"))
    discovery_actual = parse_date(discovery.get("actualCompleteDate"))

    artifacts = discovery.get("requiredArtifacts") or []
    has_missing_artifacts = any(not a.get("receivedDate") for a in artifacts)
    has_late_artifacts = any(
        a.get("dueDate") and is_past(a.get("dueDate"), now) and not a.get("receivedDate")
        for a in artifacts
    )

    discovery_is_late = bool(
        discovery_actual is None
        and discovery_target is not None
        and discovery_target < now
    )

    releases = development.get("releases") or []
    late_releases = []
    for release in releases:
        target = parse_date(release.get("endDate"))
        actual = parse_date(release.get("actualEndDate"))
        if actual is None and target is not None and target < now:
            late_releases.append(release)

    upcoming = [
        r for r in releases
        if not r.get("actualEndDate") and parse_date(r.get("endDate")) is not None
    ]
    upcoming.sort(key=lambda r: parse_date(r["endDate"]))
    next_release = upcoming[0] if upcoming else None

    risk_flags = []
    if has_late_artifacts:
        risk_flags.append("Late client artifacts")
    if discovery_is_late:
        risk_flags.append("Discovery past target date")
    for release in late_releases:
        risk_flags.append(f'Release "{release.get("name") or "Unnamed"}" past target date')

    dev_days_late = None
    if late_releases:
        dev_days_late = max(
            days_between(parse_date(r["endDate"]), now) for r in late_releases
        )

    return ProjectDerived(
        has_missing_artifacts=has_missing_artifacts,
        has_late_artifacts=bool(has_late_artifacts),
        discovery_is_late=discovery_is_late,
        dev_is_late=bool(late_releases),
        late_releases=late_releases,
        next_release=next_release,
        overall_risk="on-track" if not risk_flags else "at-risk",
        risk_flags=risk_flags,
        discovery_days_late=(
            days_between(discovery_target, now) if discovery_is_late else None
        ),
        dev_days_late=dev_days_late,
    )
