"""
babylog client.

``BabyLogClient`` is what a presentation layer holds. Every mutation is
applied to local state immediately and returns a :class:`PendingWrite`; the
caller then decides how to reach the server:

    write = client.add_activity({"id": "a1", "type": "feeding", ...})
    write.persist()             # raises on any failure
    write.persist_or_enqueue()  # transient failures go to the offline queue

Nothing is sent in the background and no failure is swallowed. Writes that
the server refuses permanently are reverted locally and leave a Notice.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from babylog.protocols import (
    RemoteBackend,
    TransientNetworkError,
    ValidationError,
    is_permanent,
)
from babylog.session import OwnerSession
from babylog.storage.local import LocalState, LocalStateStore
from babylog.storage.queue import OfflineQueue, replay_mutation
from babylog.storage.sync_engine import SyncEngine, merge_settings
from babylog.types import (
    FORCED_SETTINGS,
    DrainResult,
    Notice,
    QueueAction,
    QueuedMutation,
    RecordFamily,
    SyncResult,
)
from babylog.utils import get_babylog_home
from babylog.validation import (
    validate_activity,
    validate_custom_activity,
    validate_growth_record,
    validate_profile,
    validate_settings,
)

logger = logging.getLogger(__name__)

_SAVE_FAMILIES = {
    QueueAction.SAVE_ACTIVITY.value: RecordFamily.ACTIVITIES,
    QueueAction.SAVE_CUSTOM_ACTIVITY.value: RecordFamily.CUSTOM_ACTIVITIES,
    QueueAction.SAVE_GROWTH.value: RecordFamily.GROWTH_RECORDS,
}

_DELETE_FAMILIES = {
    QueueAction.DELETE_ACTIVITY.value: RecordFamily.ACTIVITIES,
    QueueAction.DELETE_CUSTOM_ACTIVITY.value: RecordFamily.CUSTOM_ACTIVITIES,
    QueueAction.DELETE_GROWTH.value: RecordFamily.GROWTH_RECORDS,
}


class PendingWrite:
    """A mutation already applied locally, not yet confirmed by the server."""

    def __init__(
        self,
        client: "BabyLogClient",
        action: QueueAction,
        payload: Dict[str, Any],
        previous: Optional[Dict[str, Any]] = None,
    ):
        self.client = client
        self.action = action
        self.payload = payload
        self.previous = previous
        self.applied = False
        self.queued: Optional[QueuedMutation] = None

    @property
    def record_id(self) -> Optional[str]:
        return self.payload.get("id")

    def persist(self) -> Any:
        """Send the write now.

        Older queued writes for this owner go first; if any of them are still
        pending afterwards the write is not sent.

        Raises:
            TransientNetworkError: Remote unreachable, or older writes pending.
            ValidationError / OwnershipConflict: The server refused the write;
                the local change has been reverted.
        """
        if self.applied:
            return None
        client = self.client
        if self.queued is not None:
            raise ValueError("Write was already handed to the offline queue")
        if not client.session.online:
            raise TransientNetworkError("Offline")
        if client.queue.pending_count(client.session):
            client.drain()
            if client.queue.pending_count(client.session):
                raise TransientNetworkError("Older writes are still pending for this owner")

        try:
            result = replay_mutation(
                client.remote, client.session.owner_id, self.action.value, self.payload
            )
        except Exception as e:
            if is_permanent(e):
                client._revert(self.action.value, self.payload, self.previous, str(e))
            raise
        self.applied = True
        return result

    def persist_or_enqueue(self) -> bool:
        """Send the write, or hand it to the offline queue.

        Returns True when the server applied the write, False when it was
        queued. Permanent failures still raise.
        """
        if self.applied:
            return True
        if self.queued is not None:
            return False
        client = self.client
        if not client.session.online or client.queue.pending_count(client.session):
            # Keep order behind anything already waiting
            self.queued = client.queue.enqueue(client.session, self.action, self.payload)
            client.drain()
            return False
        try:
            self.persist()
        except TransientNetworkError as e:
            logger.info(f"Deferring {self.action.value} {self.record_id}: {e}")
            self.queued = client.queue.enqueue(client.session, self.action, self.payload)
            return False
        return True


class BabyLogClient:
    """Offline-first client for one owner."""

    def __init__(
        self,
        session: OwnerSession,
        remote: RemoteBackend,
        db_path: Optional[Union[str, Path]] = None,
        queue: Optional[OfflineQueue] = None,
        local_store: Optional[LocalStateStore] = None,
    ):
        db_path = Path(db_path) if db_path else get_babylog_home() / "client.db"
        self.session = session
        self.remote = remote
        self.queue = queue or OfflineQueue(db_path)
        self.local_store = local_store or LocalStateStore(db_path)
        self.engine = SyncEngine(
            self.queue, self.remote, self.local_store, on_discarded=self._handle_discarded
        )

    @property
    def owner_id(self) -> int:
        return self.session.owner_id

    @property
    def state(self) -> LocalState:
        """Current local state (read fresh from the local store)."""
        return self.local_store.load(self.owner_id)

    @property
    def activities(self) -> List[Dict[str, Any]]:
        return self.state.activities

    @property
    def notices(self) -> List[Notice]:
        return self.state.notices

    def dismiss_notices(self) -> int:
        return self.local_store.clear_notices(self.owner_id)

    # === Local application ===

    def _save_record(self, action: QueueAction, record: Dict[str, Any]) -> PendingWrite:
        family = _SAVE_FAMILIES[action.value]
        record = copy.deepcopy(record)
        previous = self.state.find(family, record["id"])
        self.local_store.put_record(self.owner_id, family, record)
        return PendingWrite(self, action, record, previous=previous)

    def _delete_record(self, action: QueueAction, record_id: str) -> PendingWrite:
        if not record_id or not isinstance(record_id, str):
            raise ValidationError("Record id is required and must be a string")
        family = _DELETE_FAMILIES[action.value]
        previous = self.state.find(family, record_id)
        self.local_store.remove_record(self.owner_id, family, record_id)
        return PendingWrite(self, action, {"id": record_id}, previous=previous)

    def _revert(self, action: str, payload: Dict[str, Any], previous: Optional[Dict[str, Any]], reason: str):
        """Undo an optimistic change the server refused and leave a notice."""
        record_id = payload.get("id")
        if action in _SAVE_FAMILIES:
            family = _SAVE_FAMILIES[action]
            if previous is not None:
                self.local_store.put_record(self.owner_id, family, previous)
            else:
                self.local_store.remove_record(self.owner_id, family, record_id)
        elif action in _DELETE_FAMILIES and previous is not None:
            self.local_store.put_record(self.owner_id, _DELETE_FAMILIES[action], previous)
        elif action == QueueAction.SAVE_PROFILE.value and previous is not None:
            self.local_store.set_singleton(self.owner_id, "profile", previous)
        elif action == QueueAction.SAVE_SETTINGS.value and previous is not None:
            self.local_store.set_singleton(self.owner_id, "settings", previous)
        logger.warning(f"Server refused {action} {record_id or ''}: {reason}")
        self.local_store.add_notice(
            self.owner_id, Notice(action=action, record_id=record_id, message=reason)
        )

    def _handle_discarded(self, session: OwnerSession, discarded: List[QueuedMutation]) -> None:
        """Revert queued writes the server refused.

        Collection saves are removed locally so the next snapshot restores the
        server's copy; singleton writes are left for the snapshot to correct.
        """
        for entry in discarded:
            if entry.action in _SAVE_FAMILIES:
                self._revert(entry.action, entry.payload, None, entry.last_error or "discarded")
            else:
                self.local_store.add_notice(
                    session.owner_id,
                    Notice(
                        action=entry.action,
                        record_id=entry.payload.get("id"),
                        message=entry.last_error or "discarded",
                    ),
                )

    # === Activities ===

    def add_activity(self, activity: Dict[str, Any]) -> PendingWrite:
        return self._save_record(QueueAction.SAVE_ACTIVITY, validate_activity(activity))

    def update_activity(self, activity: Dict[str, Any]) -> PendingWrite:
        """Replace an activity with a new full copy."""
        validate_activity(activity)
        if self.state.find(RecordFamily.ACTIVITIES, activity["id"]) is None:
            raise ValidationError(f"No activity with id {activity['id']}")
        return self._save_record(QueueAction.SAVE_ACTIVITY, activity)

    def remove_activity(self, activity_id: str) -> PendingWrite:
        return self._delete_record(QueueAction.DELETE_ACTIVITY, activity_id)

    # === Custom activities ===

    def add_custom_activity(self, definition: Dict[str, Any]) -> PendingWrite:
        return self._save_record(QueueAction.SAVE_CUSTOM_ACTIVITY, validate_custom_activity(definition))

    def remove_custom_activity(self, definition_id: str) -> PendingWrite:
        return self._delete_record(QueueAction.DELETE_CUSTOM_ACTIVITY, definition_id)

    # === Growth ===

    def add_growth_record(self, record: Dict[str, Any]) -> PendingWrite:
        return self._save_record(QueueAction.SAVE_GROWTH, validate_growth_record(record))

    def remove_growth_record(self, record_id: str) -> PendingWrite:
        return self._delete_record(QueueAction.DELETE_GROWTH, record_id)

    # === Profile and settings ===

    def set_profile(self, profile: Dict[str, Any]) -> PendingWrite:
        """Overwrite the profile."""
        profile = copy.deepcopy(validate_profile(profile))
        previous = self.state.profile
        self.local_store.set_singleton(self.owner_id, "profile", profile)
        return PendingWrite(self, QueueAction.SAVE_PROFILE, profile, previous=previous)

    def update_profile(self, patch: Dict[str, Any]) -> PendingWrite:
        """Merge ``patch`` into the current profile and save the result."""
        current = self.state.profile or {}
        return self.set_profile({**current, **patch})

    def update_settings(self, patch: Dict[str, Any]) -> PendingWrite:
        """Merge ``patch`` into settings; only the patch is sent."""
        patch = copy.deepcopy(validate_settings(patch))
        previous = self.state.settings
        merged = {**merge_settings(previous, None), **patch, **FORCED_SETTINGS}
        self.local_store.set_singleton(self.owner_id, "settings", merged)
        return PendingWrite(self, QueueAction.SAVE_SETTINGS, patch, previous=previous)

    # === Queue ===

    def enqueue(self, action: Union[QueueAction, str], payload: Dict[str, Any]) -> QueuedMutation:
        return self.queue.enqueue(self.session, action, payload)

    def drain(self) -> DrainResult:
        result = self.queue.drain(self.session, self.remote)
        if result.discarded:
            self._handle_discarded(self.session, result.discarded)
        return result

    # === Sync triggers ===

    def sync(self) -> SyncResult:
        return self.engine.sync(self.session)

    def on_app_start(self) -> SyncResult:
        logger.debug(f"App start sync for owner {self.owner_id}")
        return self.sync()

    def on_connectivity_restored(self) -> SyncResult:
        logger.debug(f"Connectivity restored for owner {self.owner_id}")
        return self.sync()

    # === Account ===

    def reset_all_data(self) -> None:
        """Delete the account on the server, then forget everything locally.

        Raises whatever the remote raises; local data is only cleared after
        the server confirmed.
        """
        self.remote.delete_account(self.owner_id)
        self.queue.clear(self.session)
        self.local_store.clear(self.owner_id)
        logger.warning(f"All data reset for owner {self.owner_id}")

    def clear_cached_data(self) -> None:
        """Forget local state and pending writes; the server is untouched."""
        dropped = self.queue.clear(self.session)
        self.local_store.clear(self.owner_id)
        if dropped:
            logger.warning(f"Cleared cache for owner {self.owner_id}, dropping {dropped} unsent writes")