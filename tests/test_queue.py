"""Tests for the offline mutation queue."""

import uuid
from unittest.mock import MagicMock

import pytest

from babylog.protocols import (
    OwnershipConflict,
    StaticConnectivity,
    TransientNetworkError,
    ValidationError,
)
from babylog.session import OwnerSession
from babylog.storage.queue import OfflineQueue, generate_queue_id, replay_mutation
from babylog.types import MAX_QUEUE_RETRIES, QueueAction, UpsertResult

from factories import OTHER_OWNER, OWNER, make_activity


@pytest.fixture
def mock_remote():
    remote = MagicMock()
    remote.save_activity.return_value = UpsertResult(success=True)
    return remote


class TestEnqueue:
    """Durable, ordered, owner-tagged entries."""

    def test_enqueue_is_durable(self, queue, session, client_db):
        queue.enqueue(session, QueueAction.SAVE_ACTIVITY, make_activity("a1"))

        reopened = OfflineQueue(client_db)
        entries = reopened.pending(session)
        assert len(entries) == 1
        assert entries[0].action == "saveActivity"
        assert entries[0].payload["id"] == "a1"
        assert entries[0].attempts == 0

    def test_entries_are_ordered(self, queue, session):
        for i in range(5):
            queue.enqueue(session, "saveActivity", make_activity(f"a{i}"))
        assert [e.payload["id"] for e in queue.pending(session)] == [f"a{i}" for i in range(5)]

    def test_entries_are_scoped_by_owner(self, queue, session):
        other = OwnerSession(OTHER_OWNER)
        queue.enqueue(session, "saveActivity", make_activity("mine"))
        queue.enqueue(other, "saveActivity", make_activity("theirs"))

        assert [e.payload["id"] for e in queue.pending(session)] == ["mine"]
        assert [e.payload["id"] for e in queue.pending(other)] == ["theirs"]
        assert queue.clear(session) == 1
        assert queue.pending_count(other) == 1

    def test_unknown_action_rejected(self, queue, session):
        with pytest.raises(ValidationError, match="Unknown queue action"):
            queue.enqueue(session, "launchRocket", {})

    def test_ids_are_unique(self):
        ids = {generate_queue_id() for _ in range(200)}
        assert len(ids) == 200

    def test_id_fallback_without_uuid(self, monkeypatch):
        def no_entropy():
            raise NotImplementedError("no randomness source")

        monkeypatch.setattr(uuid, "uuid4", no_entropy)
        entry_id = generate_queue_id()
        millis, suffix = entry_id.split("-")
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_max_retries_must_be_positive(self, client_db):
        with pytest.raises(ValueError):
            OfflineQueue(client_db, max_retries=0)


class TestDrain:
    """Replay, retry and discard."""

    def test_drain_applies_in_order(self, queue, session, mock_remote):
        queue.enqueue(session, "saveActivity", make_activity("a1"))
        queue.enqueue(session, "deleteActivity", {"id": "a1"})

        result = queue.drain(session, mock_remote)

        assert len(result.applied) == 2
        assert queue.pending_count(session) == 0
        assert [c[0] for c in mock_remote.method_calls] == ["save_activity", "delete_activity"]
        mock_remote.delete_activity.assert_called_once_with(OWNER, "a1")

    def test_drain_only_touches_session_owner(self, queue, session, mock_remote):
        other = OwnerSession(OTHER_OWNER)
        queue.enqueue(other, "saveActivity", make_activity("theirs"))

        result = queue.drain(session, mock_remote)

        assert result.applied == []
        assert queue.pending_count(other) == 1
        mock_remote.save_activity.assert_not_called()

    def test_offline_drain_is_skipped(self, queue, mock_remote):
        session = OwnerSession(OWNER, connectivity=StaticConnectivity(online=False))
        queue.enqueue(session, "saveActivity", make_activity("a1"))

        result = queue.drain(session, mock_remote)

        assert result.skipped_reason == "offline"
        assert queue.pending_count(session) == 1
        mock_remote.save_activity.assert_not_called()

    def test_concurrent_drain_is_skipped(self, queue, session, mock_remote):
        queue.enqueue(session, "saveActivity", make_activity("a1"))
        lock = queue._owner_lock(OWNER)
        lock.acquire()
        try:
            result = queue.drain(session, mock_remote)
        finally:
            lock.release()

        assert result.skipped_reason == "already draining"
        assert queue.pending_count(session) == 1

    def test_drain_for_other_owner_not_blocked(self, queue, session, mock_remote):
        other = OwnerSession(OTHER_OWNER)
        queue.enqueue(other, "saveActivity", make_activity("theirs"))
        with queue._owner_lock(OWNER):
            result = queue.drain(other, mock_remote)
        assert len(result.applied) == 1

    def test_transient_failure_is_retried(self, queue, session, mock_remote):
        mock_remote.save_activity.side_effect = TransientNetworkError("timeout")
        queue.enqueue(session, "saveActivity", make_activity("a1"))

        result = queue.drain(session, mock_remote)

        entry = queue.pending(session)[0]
        assert len(result.retried) == 1
        assert entry.attempts == 1
        assert "timeout" in entry.last_error

    def test_bounded_retry(self, queue, session, mock_remote):
        """An always-failing entry is attempted MAX_QUEUE_RETRIES times, then dropped."""
        mock_remote.save_activity.side_effect = TransientNetworkError("down")
        queue.enqueue(session, "saveActivity", make_activity("a1"))

        for _ in range(MAX_QUEUE_RETRIES + 3):
            result = queue.drain(session, mock_remote)
            if result.discarded:
                break

        assert mock_remote.save_activity.call_count == MAX_QUEUE_RETRIES
        assert queue.pending_count(session) == 0
        assert "max retries exceeded" in result.discarded[0].last_error

    def test_permanent_failure_discarded_immediately(self, queue, session, mock_remote):
        queue.enqueue(session, "saveActivity", make_activity("a1"))
        queue.enqueue(session, "saveActivity", make_activity("a2"))
        mock_remote.save_activity.side_effect = [ValidationError("Invalid activity type"), UpsertResult(True)]

        result = queue.drain(session, mock_remote)

        assert [e.payload["id"] for e in result.discarded] == ["a1"]
        assert len(result.applied) == 1
        assert queue.pending_count(session) == 0

    def test_conflict_result_is_permanent(self, queue, session, mock_remote):
        mock_remote.save_activity.return_value = UpsertResult(success=False, error="ID conflict")
        queue.enqueue(session, "saveActivity", make_activity("dup"))

        result = queue.drain(session, mock_remote)

        assert len(result.discarded) == 1
        assert "OwnershipConflict" in result.discarded[0].last_error
        assert mock_remote.save_activity.call_count == 1

    def test_unexpected_error_is_retried_not_lost(self, queue, session, mock_remote):
        mock_remote.save_activity.side_effect = RuntimeError("bug")
        queue.enqueue(session, "saveActivity", make_activity("a1"))

        result = queue.drain(session, mock_remote)

        assert len(result.retried) == 1
        assert queue.pending(session)[0].attempts == 1

    def test_delete_without_id_is_discarded(self, queue, session, mock_remote):
        queue.enqueue(session, "deleteGrowth", {})
        result = queue.drain(session, mock_remote)
        assert len(result.discarded) == 1
        mock_remote.delete_growth_record.assert_not_called()

    def test_drain_against_local_remote(self, queue, session, remote, service):
        queue.enqueue(session, "saveActivity", make_activity("a1"))
        queue.enqueue(session, "saveProfile", {"name": "Mia"})
        queue.enqueue(session, "saveSettings", {"themePreference": "dark"})

        result = queue.drain(session, remote)

        assert len(result.applied) == 3
        snapshot = service.get_account_snapshot(OWNER)
        assert [a["id"] for a in snapshot.activities] == ["a1"]
        assert snapshot.profile == {"name": "Mia"}
        assert snapshot.settings == {"themePreference": "dark"}

    def test_drain_logs_sync_event(self, queue, session, mock_remote, babylog_home):
        queue.enqueue(session, "saveActivity", make_activity("a1"))
        queue.drain(session, mock_remote)

        log_files = list((babylog_home / "logs").glob("sync-events-*.log"))
        assert len(log_files) == 1
        assert f"drain | owner={OWNER} | applied=1, retried=0, discarded=0" in log_files[0].read_text()

    def test_unwritable_log_dir_does_not_stop_drain(self, queue, session, mock_remote, tmp_path, monkeypatch):
        blocker = tmp_path / "home-is-a-file"
        blocker.write_text("")
        monkeypatch.setenv("BABYLOG_DATA_DIR", str(blocker))
        queue.enqueue(session, "saveActivity", make_activity("bad"))
        queue.enqueue(session, "saveActivity", make_activity("good"))
        mock_remote.save_activity.side_effect = [ValidationError("Invalid activity type"), UpsertResult(True)]

        result = queue.drain(session, mock_remote)

        assert [e.payload["id"] for e in result.discarded] == ["bad"]
        assert len(result.applied) == 1
        assert queue.pending_count(session) == 0


class TestReplayMutation:
    """Action dispatch."""

    def test_unknown_action(self, mock_remote):
        with pytest.raises(ValidationError):
            replay_mutation(mock_remote, OWNER, "nope", {})

    def test_conflict_raises(self, mock_remote):
        mock_remote.save_custom_activity.return_value = UpsertResult(success=False, error="conflict")
        with pytest.raises(OwnershipConflict):
            replay_mutation(mock_remote, OWNER, "saveCustomActivity", {"id": "c1"})

    def test_settings_dispatch(self, mock_remote):
        replay_mutation(mock_remote, OWNER, "saveSettings", {"themePreference": "dark"})
        mock_remote.save_settings.assert_called_once_with(OWNER, {"themePreference": "dark"})
