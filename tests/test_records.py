"""Tests for the record model, RecordStore and display ordering."""

import re

import pytest

from syncfolio.errors import NotFoundError, ValidationError
from syncfolio.records import (
    UNSET,
    RecordStore,
    generate_id,
    migrate_legacy_shape,
    order_records,
)
from syncfolio.records.model import apply_update, build_new_record, refresh_timestamp
from syncfolio.records.team import (
    apply_team_member_update,
    build_team_member,
    group_by_department,
    normalize_team_member,
)


@pytest.fixture
def legacy_record():
    """A record saved before development.releases existed."""
    return {
        "id": "p-1",
        "name": "Legacy",
        "development": {
            "startDate": "2024-01-01",
            "targetReleaseDate": "2024-03-01",
            "actualReleaseDate": None,
        },
        "discovery": {"targetCompleteDate": "2023-12-01"},
    }


class TestGenerateId:
    """Tests for id generation."""

    def test_id_format(self):
        """Test ids combine prefix, milliseconds and a random suffix."""
        record_id = generate_id()
        assert re.fullmatch(r"p-\d{13}-[0-9a-z]{9}", record_id)

    def test_custom_prefix(self):
        """Test the prefix is configurable."""
        assert generate_id("tm").startswith("tm-")

    def test_ids_are_unique(self):
        """Test many ids generated back to back do not collide."""
        ids = {generate_id() for _ in range(1000)}
        assert len(ids) == 1000


class TestBuildNewRecord:
    """Tests for record creation."""

    def test_defaults_and_trimming(self):
        """Test defaults are filled and strings trimmed."""
        record = build_new_record({"name": "  Alpha ", "client": " Acme "})

        assert record["name"] == "Alpha"
        assert record["client"] == "Acme"
        assert record["status"] == "discovery"
        assert record["priority"] == "medium"
        assert record["onHoldReason"] == ""
        assert record["development"]["releases"] == []
        assert record["discovery"]["requiredArtifacts"] == []
        assert record["teamMembers"] == []
        assert record["createdAt"] == record["updatedAt"]

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_blank_name_rejected(self, name):
        """Test a blank name raises ValidationError."""
        with pytest.raises(ValidationError, match="name is required"):
            build_new_record({"name": name})

    def test_explicit_id(self):
        """Test an explicit id is used."""
        assert build_new_record({"name": "A"}, "p-fixed")["id"] == "p-fixed"

    def test_unset_fields_fall_back_to_defaults(self):
        """Test UNSET scalars behave like missing values."""
        record = build_new_record({"name": "A", "status": UNSET, "client": UNSET})
        assert record["status"] == "discovery"
        assert record["client"] == ""


class TestApplyUpdate:
    """Tests for resolving partial updates."""

    def test_top_level_override_and_timestamp(self):
        """Test changes override existing fields and refresh updatedAt."""
        existing = build_new_record({"name": "Alpha", "notes": "old"})
        existing["updatedAt"] = "2000-01-01T00:00:00+00:00"

        updated = apply_update(existing, {"name": "Beta", "notes": " new "})

        assert updated["id"] == existing["id"]
        assert updated["name"] == "Beta"
        assert updated["notes"] == "new"
        assert updated["createdAt"] == existing["createdAt"]
        assert updated["updatedAt"] != "2000-01-01T00:00:00+00:00"

    def test_nested_groups_replaced_not_merged(self):
        """Test a nested group in the update replaces the old one."""
        existing = build_new_record(
            {"name": "Alpha", "discovery": {"notes": "x", "targetCompleteDate": "2024-01-01"}}
        )

        updated = apply_update(existing, {"name": "Alpha", "discovery": {"notes": "y"}})

        assert updated["discovery"] == {"notes": "y"}

    def test_id_cannot_change(self):
        """Test the id in the changes is ignored."""
        existing = build_new_record({"name": "Alpha"})
        updated = apply_update(existing, {"name": "Alpha", "id": "other"})
        assert updated["id"] == existing["id"]

    def test_blank_name_rejected(self):
        """Test updates must keep a name."""
        existing = build_new_record({"name": "Alpha"})
        with pytest.raises(ValidationError):
            apply_update(existing, {"name": ""})

    def test_refresh_timestamp_copies(self):
        """Test refresh_timestamp leaves the input alone."""
        record = {"id": "p-1", "updatedAt": "old"}
        refreshed = refresh_timestamp(record)
        assert record["updatedAt"] == "old"
        assert refreshed["updatedAt"] != "old"


class TestMigrateLegacyShape:
    """Tests for legacy record migration."""

    def test_scalar_release_becomes_entry(self, legacy_record):
        """Test scalar release dates become one release entry."""
        migrated = migrate_legacy_shape(legacy_record)

        releases = migrated["development"]["releases"]
        assert releases == [
            {
                "id": "p-1-rel-1",
                "name": "Release 1",
                "startDate": "2024-01-01",
                "endDate": "2024-03-01",
                "actualEndDate": None,
            }
        ]
        assert "targetReleaseDate" not in migrated["development"]
        assert "actualReleaseDate" not in migrated["development"]
        assert migrated["development"]["startDate"] == "2024-01-01"

    def test_no_legacy_data_gives_empty_list(self):
        """Test a record without release data gets an empty list."""
        migrated = migrate_legacy_shape({"id": "p-2", "name": "New"})

        assert migrated["development"] == {"releases": []}
        assert migrated["discovery"] == {"requiredArtifacts": []}
        assert migrated["teamMembers"] == []

    def test_input_not_modified(self, legacy_record):
        """Test migration is pure."""
        migrate_legacy_shape(legacy_record)
        assert "targetReleaseDate" in legacy_record["development"]
        assert "releases" not in legacy_record["development"]

    def test_idempotent_on_legacy(self, legacy_record):
        """Test migrating twice equals migrating once."""
        once = migrate_legacy_shape(legacy_record)
        assert migrate_legacy_shape(once) == once

    def test_idempotent_on_current(self):
        """Test current-shape records pass through unchanged."""
        current = build_new_record({"name": "Current"})
        assert migrate_legacy_shape(current) == current
        assert migrate_legacy_shape(migrate_legacy_shape(current)) == current

    def test_existing_releases_win(self):
        """Test an existing releases list is kept and stale scalars dropped."""
        record = {
            "id": "p-3",
            "development": {
                "releases": [{"id": "r1", "name": "v1"}],
                "targetReleaseDate": "2024-05-01",
            },
        }

        migrated = migrate_legacy_shape(record)

        assert migrated["development"] == {"releases": [{"id": "r1", "name": "v1"}]}

    def test_only_actual_date(self):
        """Test an actual date alone still produces an entry."""
        record = {"id": "p-4", "development": {"actualReleaseDate": "2024-02-02"}}

        releases = migrate_legacy_shape(record)["development"]["releases"]

        assert len(releases) == 1
        assert releases[0]["endDate"] is None
        assert releases[0]["actualEndDate"] == "2024-02-02"


class TestRecordStore:
    """Tests for RecordStore CRUD."""

    @pytest.fixture
    def store(self):
        store = RecordStore()
        store.upsert({"id": "a", "name": "A", "nested": {"x": 1}})
        store.upsert({"id": "b", "name": "B"})
        return store

    def test_list_insertion_order(self, store):
        """Test list returns records in insertion order."""
        assert [r["id"] for r in store.list()] == ["a", "b"]

    def test_list_is_defensive_copy(self, store):
        """Test mutating returned records does not affect the store."""
        records = store.list()
        records[0]["nested"]["x"] = 99
        records.append({"id": "c"})

        assert store.get("a")["nested"]["x"] == 1
        assert len(store) == 2

    def test_get_missing(self, store):
        """Test get returns None for unknown ids."""
        assert store.get("zzz") is None

    def test_upsert_replaces_fully(self, store):
        """Test upsert drops fields missing from the new record."""
        store.upsert({"id": "a", "name": "A2"})

        assert store.get("a") == {"id": "a", "name": "A2"}
        assert [r["id"] for r in store.list()] == ["a", "b"]

    def test_remove_returns_prior(self, store):
        """Test remove returns the removed record."""
        removed = store.remove("a")
        assert removed["name"] == "A"
        assert "a" not in store

    def test_remove_missing_is_safe(self, store):
        """Test removing an unknown id returns None."""
        assert store.remove("zzz") is None

    def test_remove_missing_strict(self, store):
        """Test strict removal raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.remove("zzz", strict=True)

    def test_apply_order_no_validation(self, store):
        """Test the order index accepts unknown ids."""
        store.apply_order(["ghost", "b"])
        assert store.order == ["ghost", "b"]

    def test_order_is_copy(self, store):
        """Test the order property cannot be mutated externally."""
        store.apply_order(["a"])
        store.order.append("b")
        assert store.order == ["a"]

    def test_replace_all_and_clear(self, store):
        """Test bulk replacement and clearing."""
        store.apply_order(["b", "a"])
        store.replace_all([{"id": "c"}])

        assert [r["id"] for r in store.list()] == ["c"]
        assert store.order == ["b", "a"]

        store.clear()
        assert len(store) == 0
        assert store.order == []


class TestOrderRecords:
    """Tests for order-index rendering."""

    def records(self, *ids):
        return [{"id": i} for i in ids]

    def test_follows_order(self):
        """Test records follow the order index."""
        ordered = order_records(self.records("a", "b", "c"), ["c", "a", "b"])
        assert [r["id"] for r in ordered] == ["c", "a", "b"]

    def test_unknown_ids_dropped(self):
        """Test ids without a record are skipped without error."""
        ordered = order_records(self.records("a", "b"), ["ghost", "b", "a"])
        assert [r["id"] for r in ordered] == ["b", "a"]

    def test_missing_ids_appended_once(self):
        """Test records absent from the index are appended exactly once."""
        ordered = order_records(self.records("a", "b", "c"), ["b"])
        assert [r["id"] for r in ordered] == ["b", "a", "c"]

    def test_duplicate_order_entries(self):
        """Test duplicate ids in the index do not duplicate records."""
        ordered = order_records(self.records("a", "b"), ["a", "a", "b", "a"])
        assert [r["id"] for r in ordered] == ["a", "b"]

    def test_empty_order(self):
        """Test an empty index keeps insertion order."""
        ordered = order_records(self.records("a", "b"), [])
        assert [r["id"] for r in ordered] == ["a", "b"]


class TestTeamMembers:
    """Tests for team member records."""

    def test_build_trims_fields(self):
        """Test name and contact fields are trimmed and missing ones default to empty."""
        member = build_team_member({"name": " Lee ", "role": " Engineer ", "email": None})

        assert re.fullmatch(r"tm-\d+-[0-9a-z]{9}", member["id"])
        assert member["name"] == "Lee"
        assert member["role"] == "Engineer"
        assert member["email"] == ""
        assert member["createdAt"] == member["updatedAt"]

    def test_blank_name_rejected(self):
        """Test the roster requires a name."""
        with pytest.raises(ValidationError, match="Team member name is required"):
            build_team_member({"name": ""})

    def test_update_keeps_id_and_trims(self):
        """Test updates trim new values and keep the id."""
        member = build_team_member({"name": "Lee"}, "tm-1")

        updated = apply_team_member_update(member, {"id": "tm-2", "name": "Lee", "department": " Ops "})

        assert updated["id"] == "tm-1"
        assert updated["department"] == "Ops"
        assert updated["createdAt"] == member["createdAt"]

    def test_normalize_is_idempotent(self):
        """Test normalizing fills gaps once and leaves the input alone."""
        raw = {"id": "tm-1", "name": "Lee", "email": 42}

        once = normalize_team_member(raw)

        assert once == {"id": "tm-1", "name": "Lee", "email": "", "role": "", "department": ""}
        assert normalize_team_member(once) == once
        assert raw["email"] == 42

    def test_group_by_department(self):
        """Test grouping sorts by name and collects members without a department."""
        members = [
            {"name": "zed", "department": "Ops"},
            {"name": "Amy", "department": ""},
            {"name": "bo", "department": "Ops"},
        ]

        groups = group_by_department(members)

        assert list(groups) == ["Ops", "Unassigned"]
        assert [m["name"] for m in groups["Ops"]] == ["bo", "zed"]
