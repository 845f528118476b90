"""Tests for derived project state."""

from datetime import datetime, timezone

import pytest

from syncfolio.records.derived import compute_project_derived, days_between, is_past, parse_date

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def project():
    return {
        "id": "p-1",
        "name": "Alpha",
        "discovery": {"requiredArtifacts": []},
        "development": {"releases": []},
    }


class TestDateHelpers:
    """Tests for date parsing helpers."""

    def test_parse_date_only(self):
        """Test plain dates parse as UTC midnight."""
        assert parse_date("2024-01-02") == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_parse_zulu(self):
        """Test a trailing Z is accepted."""
        assert parse_date("2024-01-02T03:04:05Z").tzinfo is not None

    @pytest.mark.parametrize("value", [None, "", "not a date", 42])
    def test_parse_invalid(self, value):
        """Test invalid input yields None."""
        assert parse_date(value) is None

    def test_days_between(self):
        """Test whole-day difference."""
        assert days_between(parse_date("2024-06-10"), parse_date("2024-06-15")) == 5
        assert days_between(None, NOW) is None

    def test_is_past_ignores_time_of_day(self):
        """Test today is not in the past."""
        assert is_past("2024-06-14", NOW)
        assert not is_past("2024-06-15", NOW)
        assert not is_past(None, NOW)


class TestComputeProjectDerived:
    """Tests for compute_project_derived."""

    def test_on_track(self, project):
        """Test an empty project is on track."""
        derived = compute_project_derived(project, NOW)

        assert derived.overall_risk == "on-track"
        assert derived.risk_flags == []
        assert derived.next_release is None

    def test_late_artifacts(self, project):
        """Test overdue unreceived artifacts are flagged."""
        project["discovery"]["requiredArtifacts"] = [
            {"name": "Brand guide", "dueDate": "2024-06-01", "receivedDate": None},
            {"name": "Logo", "dueDate": "2024-06-01", "receivedDate": "2024-05-30"},
        ]

        derived = compute_project_derived(project, NOW)

        assert derived.has_missing_artifacts
        assert derived.has_late_artifacts
        assert derived.risk_flags == ["Late client artifacts"]
        assert derived.overall_risk == "at-risk"

    def test_discovery_late(self, project):
        """Test discovery past its target without completion."""
        project["discovery"]["targetCompleteDate"] = "2024-06-05"

        derived = compute_project_derived(project, NOW)

        assert derived.discovery_is_late
        assert derived.discovery_days_late == 10
        assert "Discovery past target date" in derived.risk_flags

    def test_discovery_completed_not_late(self, project):
        """Test a completed discovery is not late."""
        project["discovery"]["targetCompleteDate"] = "2024-06-05"
        project["discovery"]["actualCompleteDate"] = "2024-06-07"

        assert not compute_project_derived(project, NOW).discovery_is_late

    def test_late_and_next_release(self, project):
        """Test late releases are flagged and the next release is the earliest open one."""
        project["development"]["releases"] = [
            {"id": "r1", "name": "Beta", "endDate": "2024-06-01", "actualEndDate": None},
            {"id": "r2", "name": "", "endDate": "2024-06-10", "actualEndDate": None},
            {"id": "r3", "name": "GA", "endDate": "2024-07-01", "actualEndDate": None},
            {"id": "r4", "name": "Done", "endDate": "2024-05-01", "actualEndDate": "2024-05-02"},
        ]

        derived = compute_project_derived(project, NOW)

        assert derived.dev_is_late
        assert [r["id"] for r in derived.late_releases] == ["r1", "r2"]
        assert derived.next_release["id"] == "r1"
        assert derived.dev_days_late == 14
        assert derived.risk_flags == [
            'Release "Beta" past target date',
            'Release "Unnamed" past target date',
        ]

    def test_missing_groups_tolerated(self):
        """Test records without nested groups still compute."""
        derived = compute_project_derived({"id": "p-2", "name": "Bare"}, NOW)
        assert derived.overall_risk == "on-track"
