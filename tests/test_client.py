"""Tests for BabyLogClient: optimistic writes, queue fallback and sync."""

import pytest

from babylog.protocols import OwnershipConflict, TransientNetworkError, ValidationError
from babylog.types import RecordFamily

from factories import OTHER_OWNER, OWNER, make_activity, make_custom, make_growth


class TestOfflineCreate:
    """Create offline, sync when connectivity returns."""

    def test_offline_activity_reaches_server_after_reconnect(self, client, connectivity, service):
        connectivity.set_online(False)
        activity = make_activity("a1", "2024-01-01T08:00:00Z")

        write = client.add_activity(activity)
        assert [a["id"] for a in client.activities] == ["a1"]

        assert write.persist_or_enqueue() is False
        pending = client.queue.pending(client.session)
        assert [(e.action, e.payload["id"]) for e in pending] == [("saveActivity", "a1")]

        connectivity.set_online(True)
        result = client.on_connectivity_restored()

        assert result.success
        assert client.queue.pending_count(client.session) == 0
        assert [a["id"] for a in service.get_account_snapshot(OWNER).activities] == ["a1"]
        assert [a["id"] for a in client.activities] == ["a1"]

    def test_persist_offline_raises(self, client, connectivity):
        connectivity.set_online(False)
        write = client.add_activity(make_activity("a1"))
        with pytest.raises(TransientNetworkError):
            write.persist()
        # Optimistic copy stays until the caller decides
        assert [a["id"] for a in client.activities] == ["a1"]

    def test_online_write_applies_immediately(self, client, service):
        assert client.add_growth_record(make_growth("g1")).persist_or_enqueue() is True
        assert client.queue.pending_count(client.session) == 0
        assert service.store.has_record(OWNER, RecordFamily.GROWTH_RECORDS, "g1")

    def test_new_write_queues_behind_pending(self, client, connectivity, service):
        connectivity.set_online(False)
        client.add_activity(make_activity("first")).persist_or_enqueue()
        connectivity.set_online(True)

        # The older entry is drained before the new one is sent
        assert client.add_activity(make_activity("second")).persist() is not None
        assert client.queue.pending_count(client.session) == 0
        ids = {a["id"] for a in service.get_account_snapshot(OWNER).activities}
        assert ids == {"first", "second"}

    def test_invalid_activity_rejected_before_local_write(self, client):
        with pytest.raises(ValidationError):
            client.add_activity(make_activity("bad", type="juggling"))
        assert client.activities == []


class TestPermanentFailures:
    """Writes the server refuses are reverted and leave a notice."""

    def test_conflict_on_persist_reverts_new_record(self, client, service):
        service.save_activity(OTHER_OWNER, make_activity("dup"))

        write = client.add_activity(make_activity("dup"))
        with pytest.raises(OwnershipConflict):
            write.persist()

        assert client.activities == []
        notices = client.notices
        assert len(notices) == 1
        assert notices[0].record_id == "dup"
        assert notices[0].action == "saveActivity"

    def test_conflict_on_persist_restores_previous_version(self, client, service, local_store):
        service.save_activity(OTHER_OWNER, make_activity("dup"))
        local_store.put_record(OWNER, RecordFamily.ACTIVITIES, make_activity("dup", notes="mine"))

        with pytest.raises(OwnershipConflict):
            client.update_activity(make_activity("dup", notes="edited")).persist()

        assert client.activities[0]["notes"] == "mine"

    def test_deferred_conflict_reverted_on_sync(self, client, connectivity, service):
        service.save_activity(OTHER_OWNER, make_activity("dup", notes="theirs"))
        connectivity.set_online(False)
        client.add_activity(make_activity("dup", notes="mine")).persist_or_enqueue()

        connectivity.set_online(True)
        result = client.sync()

        assert len(result.drain.discarded) == 1
        assert client.activities == []
        assert len(client.notices) == 1
        assert service.store.get_record(OTHER_OWNER, RecordFamily.ACTIVITIES, "dup")["notes"] == "theirs"

    def test_dismiss_notices(self, client, service):
        service.save_activity(OTHER_OWNER, make_activity("dup"))
        with pytest.raises(OwnershipConflict):
            client.add_activity(make_activity("dup")).persist()
        assert client.dismiss_notices() == 1
        assert client.notices == []


class TestDeletes:
    """Optimistic deletes."""

    def test_remove_custom_activity(self, client, service):
        client.add_custom_activity(make_custom("c1")).persist()
        client.remove_custom_activity("c1").persist()

        assert client.state.custom_activities == []
        assert not service.store.has_record(OWNER, RecordFamily.CUSTOM_ACTIVITIES, "c1")

    def test_remove_requires_id(self, client):
        with pytest.raises(ValidationError):
            client.remove_activity("")

    def test_update_missing_activity_rejected(self, client):
        with pytest.raises(ValidationError, match="No activity"):
            client.update_activity(make_activity("ghost"))


class TestSingletons:
    """Profile and settings writes."""

    def test_update_settings_merges_and_sends_patch(self, client, service):
        service.save_settings(
            OWNER, {"feedingIntervalMinutes": 180, "notificationsEnabled": True, "themePreference": "light"}
        )
        client.sync()

        write = client.update_settings({"themePreference": "dark"})
        assert write.payload == {"themePreference": "dark"}
        write.persist()

        assert client.state.settings["themePreference"] == "dark"
        assert client.state.settings["feedingIntervalMinutes"] == 180
        assert client.state.settings["notificationsEnabled"] is False
        assert service.store.get_user(OWNER)["settings"] == {
            "feedingIntervalMinutes": 180,
            "notificationsEnabled": True,
            "themePreference": "dark",
        }

    def test_update_profile_merges_locally(self, client, service):
        client.set_profile({"name": "Mia"}).persist()
        client.update_profile({"gender": "girl"}).persist()

        assert client.state.profile == {"name": "Mia", "gender": "girl"}
        assert service.store.get_user(OWNER)["profile"] == {"name": "Mia", "gender": "girl"}


class TestAccountActions:
    """Reset and cache clearing."""

    def test_reset_all_data(self, client, service):
        client.add_activity(make_activity("a1")).persist()
        client.set_profile({"name": "Mia"}).persist()

        client.reset_all_data()

        assert service.store.get_user(OWNER) is None
        assert service.get_activities(OWNER) == []
        assert client.activities == []
        assert client.state.profile is None

    def test_reset_fails_offline_and_keeps_local(self, client, connectivity):
        client.add_activity(make_activity("a1")).persist()
        connectivity.set_online(False)

        with pytest.raises(TransientNetworkError):
            client.reset_all_data()
        assert [a["id"] for a in client.activities] == ["a1"]

    def test_clear_cached_data_leaves_server(self, client, connectivity, service):
        client.add_activity(make_activity("a1")).persist()
        connectivity.set_online(False)
        client.add_activity(make_activity("a2")).persist_or_enqueue()

        client.clear_cached_data()

        assert client.activities == []
        assert client.queue.pending_count(client.session) == 0
        assert [a["id"] for a in service.get_activities(OWNER)] == ["a1"]

    def test_app_start_pulls_snapshot(self, client, service):
        service.save_activity(OWNER, make_activity("from-other-device"))
        assert client.on_app_start().pulled
        assert [a["id"] for a in client.activities] == ["from-other-device"]
