"""Tests for account export and import."""

import pytest

import babylog.storage.sqlite as sqlite_module
from babylog.protocols import StorageError, ValidationError
from babylog.storage.transfer import (
    dump_json,
    export_account,
    import_account,
    load_json,
    prepare_import,
)
from babylog.types import NotificationSchedule, RecordFamily

from factories import OTHER_OWNER, OWNER, make_activity, make_custom, make_document, make_growth


def _seed(store):
    store.save_profile(OWNER, {"name": "Mia", "birthDate": "2024-01-15"})
    store.save_settings(OWNER, {"feedingIntervalMinutes": 180, "themePreference": "light"})
    store.put_record(OWNER, RecordFamily.ACTIVITIES, make_activity("a1", "2024-03-01T08:00:00Z"))
    store.put_record(OWNER, RecordFamily.ACTIVITIES, make_activity("a2", "2024-03-02T08:00:00Z", notes="burp"))
    store.put_record(OWNER, RecordFamily.CUSTOM_ACTIVITIES, make_custom("c1"))
    store.put_record(OWNER, RecordFamily.GROWTH_RECORDS, make_growth("g1"))
    store.save_schedule(
        NotificationSchedule(
            id="s1",
            user_id=OWNER,
            chat_id=OWNER,
            type="feeding",
            schedule_data={"intervalMinutes": 180},
            next_run=1700000000,
        )
    )


def _account_state(store):
    user = store.get_user(OWNER)
    return {
        "profile": user["profile"],
        "settings": user["settings"],
        "activities": store.list_records(OWNER, RecordFamily.ACTIVITIES),
        "customActivities": store.list_records(OWNER, RecordFamily.CUSTOM_ACTIVITIES),
        "growthRecords": store.list_records(OWNER, RecordFamily.GROWTH_RECORDS),
    }


class TestExport:
    """Export document shape."""

    def test_export_document_shape(self, store):
        _seed(store)
        document = export_account(store, OWNER)

        assert document["version"] == 1
        assert document["timestamp"]
        assert document["profile"]["name"] == "Mia"
        assert [a["id"] for a in document["activities"]] == ["a2", "a1"]
        assert [c["id"] for c in document["customActivities"]] == ["c1"]
        assert [g["id"] for g in document["growthRecords"]] == ["g1"]
        assert document["schedules"] == [
            {"intervalMinutes": 180, "id": "s1", "type": "feeding", "enabled": True, "next_run": 1700000000}
        ]

    def test_export_empty_owner(self, store):
        document = export_account(store, OWNER)
        assert document["profile"] is None
        assert document["activities"] == []

    def test_export_is_json_serialisable(self, store, tmp_path):
        _seed(store)
        path = dump_json(export_account(store, OWNER), tmp_path / "out" / "export.json")
        assert load_json(path)["activities"][0]["id"] == "a2"


class TestImport:
    """Replace semantics, skipping and conflicts."""

    def test_round_trip_preserves_account(self, store):
        """Importing a fresh export leaves the account as it was."""
        _seed(store)
        before = _account_state(store)
        schedules_before = store.list_schedules(OWNER)

        import_account(store, OWNER, export_account(store, OWNER))

        assert _account_state(store) == before
        after = store.list_schedules(OWNER)
        assert [(s.id, s.next_run, s.enabled) for s in after] == [
            (s.id, s.next_run, s.enabled) for s in schedules_before
        ]

    def test_import_replaces_collections(self, store):
        _seed(store)
        result = import_account(
            store,
            OWNER,
            make_document(activities=[make_activity("new", "2024-04-01T08:00:00Z")], customActivities=[]),
        )

        assert result.imported["activities"] == 1
        assert result.imported["customActivities"] == 0
        assert [a["id"] for a in store.list_records(OWNER, RecordFamily.ACTIVITIES)] == ["new"]
        assert store.list_records(OWNER, RecordFamily.CUSTOM_ACTIVITIES) == []
        # Schedules are always cleared on import
        assert store.list_schedules(OWNER) == []

    def test_import_writes_profile_and_settings(self, store):
        _seed(store)
        import_account(store, OWNER, make_document())
        user = store.get_user(OWNER)
        assert user["profile"] == {"name": "Mia", "birthDate": "2024-01-15"}
        assert user["settings"] == {"feedingIntervalMinutes": 150}

    def test_import_skips_entries_without_identity(self, store):
        document = make_document(
            activities=[make_activity("a1"), {"id": "a2", "type": "feeding"}],
            growthRecords=[{"weight": 4000}],
        )
        result = import_account(store, OWNER, document)

        assert result.imported["activities"] == 1
        assert result.skipped == {"activities": 1, "growthRecords": 1}

    def test_import_counts_foreign_conflicts(self, store):
        store.put_record(OTHER_OWNER, RecordFamily.ACTIVITIES, make_activity("a1", notes="theirs"))

        result = import_account(store, OWNER, make_document())

        assert result.imported["activities"] == 1
        assert result.conflicts == {"activities": 1}
        assert store.get_record(OTHER_OWNER, RecordFamily.ACTIVITIES, "a1")["notes"] == "theirs"

    def test_import_schedule_defaults(self, store):
        document = make_document(
            schedules=[
                {"id": "s1", "type": "feeding", "enabled": True},
                {"id": "s2", "type": "sleep"},
            ]
        )
        import_account(store, OWNER, document)
        schedules = {s.id: s for s in store.list_schedules(OWNER)}

        assert schedules["s1"].enabled is True
        assert schedules["s1"].next_run is not None
        assert schedules["s1"].chat_id == OWNER
        assert schedules["s2"].enabled is False


class TestImportValidation:
    """Malformed documents are rejected before storage is touched."""

    @pytest.mark.parametrize(
        "document",
        [
            None,
            [],
            {"timestamp": "2024-03-10T12:00:00Z"},
            {"version": 1},
        ],
    )
    def test_rejects_malformed_document(self, document):
        with pytest.raises(ValidationError, match="Invalid backup file format"):
            prepare_import(document)

    def test_rejects_future_version(self):
        with pytest.raises(ValidationError, match="Unsupported backup version"):
            prepare_import(make_document(version=2))

    def test_rejects_oversized_array(self):
        activities = [make_activity(f"a{i}") for i in range(5001)]
        with pytest.raises(ValidationError, match="maximum batch size"):
            prepare_import(make_document(activities=activities))

    def test_rejects_custom_activities_over_limit(self):
        custom = [make_custom(f"c{i}") for i in range(51)]
        with pytest.raises(ValidationError, match="per-user limit"):
            prepare_import(make_document(customActivities=custom))

    def test_invalid_entry_rejects_whole_document(self, store):
        _seed(store)
        before = _account_state(store)
        document = make_document(activities=[make_activity("ok"), make_activity("bad", type="juggling")])

        with pytest.raises(ValidationError, match=r"activities\[1\] invalid"):
            import_account(store, OWNER, document)
        assert _account_state(store) == before

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValidationError, match="Invalid settings"):
            prepare_import(make_document(settings={"feedingIntervalMinutes": 5}))

    def test_load_json_rejects_garbage(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{nope")
        with pytest.raises(ValidationError, match="Invalid JSON"):
            load_json(path)


class TestImportAtomicity:
    """A failure partway through import rolls everything back."""

    def test_failure_after_delete_restores_previous_state(self, store, monkeypatch):
        _seed(store)
        before = _account_state(store)
        schedules_before = store.list_schedules(OWNER)

        def failing_upsert(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(sqlite_module, "upsert_owned", failing_upsert)

        with pytest.raises(StorageError, match="disk full"):
            import_account(store, OWNER, make_document())

        monkeypatch.undo()
        assert _account_state(store) == before
        assert len(store.list_schedules(OWNER)) == len(schedules_before)

    def test_failure_midway_through_inserts(self, store, monkeypatch):
        """Rows inserted before the failure are rolled back too."""
        _seed(store)
        before = _account_state(store)
        real_upsert = sqlite_module.upsert_owned
        calls = {"n": 0}

        def flaky_upsert(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise StorageError("connection reset")
            return real_upsert(*args, **kwargs)

        monkeypatch.setattr(sqlite_module, "upsert_owned", flaky_upsert)
        with pytest.raises(StorageError):
            import_account(store, OWNER, make_document(activities=[make_activity("x1"), make_activity("x2")]))

        monkeypatch.undo()
        assert _account_state(store) == before

    def test_rolled_back_import_is_durable(self, store, monkeypatch):
        """A fresh store on the same file sees the pre-import rows."""
        _seed(store)

        def failing_upsert(*args, **kwargs):
            raise StorageError("boom")

        monkeypatch.setattr(sqlite_module, "upsert_owned", failing_upsert)
        with pytest.raises(StorageError):
            import_account(store, OWNER, make_document())
        monkeypatch.undo()

        reopened = sqlite_module.SQLiteRecordStore(store.db_path)
        assert {a["id"] for a in reopened.list_records(OWNER, RecordFamily.ACTIVITIES)} == {"a1", "a2"}
        assert reopened.get_user(OWNER)["profile"]["name"] == "Mia"


class TestScheduleImport:
    def test_row_columns_stay_out_of_schedule_data(self, store):
        document = make_document(
            schedules=[
                {"id": "s1", "type": "feeding", "enabled": True, "next_run": 1700000000, "intervalMinutes": 60}
            ]
        )
        import_account(store, OWNER, document)

        schedule = store.list_schedules(OWNER)[0]
        assert schedule.schedule_data == {"intervalMinutes": 60}
        assert schedule.next_run == 1700000000

    def test_repeated_round_trips_do_not_nest_stale_next_run(self, store):
        _seed(store)
        import_account(store, OWNER, export_account(store, OWNER))
        store.claim_schedule("s1", OWNER, 1700000000, 1700003600)
        import_account(store, OWNER, export_account(store, OWNER))

        schedule = store.list_schedules(OWNER)[0]
        assert schedule.next_run == 1700003600
        assert "next_run" not in schedule.schedule_data


class TestUnwritableDataDir:
    """Account transfer never touches the client log directory."""

    @pytest.fixture
    def blocked_home(self, tmp_path, monkeypatch):
        blocker = tmp_path / "home-is-a-file"
        blocker.write_text("")
        monkeypatch.setenv("BABYLOG_DATA_DIR", str(blocker))
        return blocker

    def test_import_succeeds(self, store, blocked_home):
        store.put_record(OWNER, RecordFamily.ACTIVITIES, make_activity("old"))

        result = import_account(store, OWNER, make_document())

        assert result.imported["activities"] == 2
        assert {a["id"] for a in store.list_records(OWNER, RecordFamily.ACTIVITIES)} == {"a1", "a2"}

    def test_export_succeeds(self, store, blocked_home):
        _seed(store)
        document = export_account(store, OWNER)
        assert [a["id"] for a in document["activities"]] == ["a2", "a1"]
