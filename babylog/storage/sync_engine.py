"""Client-side sync for babylog.

Reconnect sequence: drain the offline queue first, then pull a server
snapshot and merge it into local state. Draining first means the snapshot
already contains everything this device managed to push.

Merge rules:
- profile and settings: the server copy wins when it has one
- collections: server list plus local records the server doesn't have yet;
  a server copy replaces the local copy with the same id; a record missing
  from the server is never treated as deleted
- writes still sitting in the queue are re-applied on top, so a pull never
  hides a change the user already sees
"""

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from babylog.logging_config import log_sync_event
from babylog.protocols import RemoteBackend, TransientNetworkError
from babylog.session import OwnerSession
from babylog.storage.local import LocalState, LocalStateStore, sort_family, sort_newest_first
from babylog.storage.queue import OfflineQueue
from babylog.types import (
    DEFAULT_SETTINGS,
    FORCED_SETTINGS,
    AccountSnapshot,
    DrainResult,
    QueueAction,
    QueuedMutation,
    RecordFamily,
    SyncResult,
)

logger = logging.getLogger(__name__)


# === Merge functions ===


def merge_settings(
    local: Optional[Dict[str, Any]],
    server: Optional[Dict[str, Any]],
    forced: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Server settings win outright; defaults fill gaps; ``forced`` goes last."""
    base = server if server else (local or {})
    merged = {**DEFAULT_SETTINGS, **base}
    merged.update(FORCED_SETTINGS if forced is None else forced)
    return merged


def merge_profile(
    local: Optional[Dict[str, Any]], server: Optional[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    """Server profile wins when it has one.

    An empty server object means the users row exists without a saved
    profile, so the local profile is kept.
    """
    if server:
        return server
    return local


def merge_collection(
    local: Iterable[Dict[str, Any]],
    server: Iterable[Dict[str, Any]],
    sort_key: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Union of the server list and local records the server lacks."""
    server = list(server or [])
    server_ids = {r.get("id") for r in server}
    merged = server + [r for r in (local or []) if r.get("id") not in server_ids]
    return sort_newest_first(merged, sort_key)


def merge_snapshot(state: LocalState, snapshot: AccountSnapshot) -> LocalState:
    """Merge a server snapshot into local state; returns a new LocalState."""
    return LocalState(
        profile=merge_profile(state.profile, snapshot.profile),
        settings=merge_settings(state.settings, snapshot.settings),
        activities=merge_collection(state.activities, snapshot.activities or [], "timestamp"),
        custom_activities=merge_collection(state.custom_activities, snapshot.custom_activities or []),
        growth_records=merge_collection(state.growth_records, snapshot.growth_records or [], "date"),
        notices=list(state.notices),
    )


_SAVE_ACTIONS = {
    QueueAction.SAVE_ACTIVITY.value: RecordFamily.ACTIVITIES,
    QueueAction.SAVE_CUSTOM_ACTIVITY.value: RecordFamily.CUSTOM_ACTIVITIES,
    QueueAction.SAVE_GROWTH.value: RecordFamily.GROWTH_RECORDS,
}

_DELETE_ACTIONS = {
    QueueAction.DELETE_ACTIVITY.value: RecordFamily.ACTIVITIES,
    QueueAction.DELETE_CUSTOM_ACTIVITY.value: RecordFamily.CUSTOM_ACTIVITIES,
    QueueAction.DELETE_GROWTH.value: RecordFamily.GROWTH_RECORDS,
}


def apply_mutation(state: LocalState, action: str, payload: Dict[str, Any]) -> None:
    """Apply one mutation to local state in place."""
    if action in _SAVE_ACTIONS:
        family = _SAVE_ACTIONS[action]
        records = [r for r in state.collection(family) if r.get("id") != payload.get("id")]
        records.append(copy.deepcopy(payload))
        state.set_collection(family, sort_family(family, records))
    elif action in _DELETE_ACTIONS:
        family = _DELETE_ACTIONS[action]
        state.set_collection(
            family, [r for r in state.collection(family) if r.get("id") != payload.get("id")]
        )
    elif action == QueueAction.SAVE_PROFILE.value:
        state.profile = copy.deepcopy(payload)
    elif action == QueueAction.SAVE_SETTINGS.value:
        state.settings = {**(state.settings or {}), **payload, **FORCED_SETTINGS}
    else:
        raise ValueError(f"Unknown mutation: {action}")


def overlay_pending(state: LocalState, pending: Iterable[QueuedMutation]) -> LocalState:
    """Re-apply queued writes, oldest first, on top of ``state``."""
    for entry in pending:
        apply_mutation(state, entry.action, entry.payload)
    return state


# === Engine ===


class SyncEngine:
    """Drain-then-pull synchronization for one client."""

    def __init__(
        self,
        queue: OfflineQueue,
        remote: RemoteBackend,
        local_store: LocalStateStore,
        on_discarded: Optional[Callable[[OwnerSession, List[QueuedMutation]], None]] = None,
    ):
        self.queue = queue
        self.remote = remote
        self.local_store = local_store
        self.on_discarded = on_discarded

    def pull(self, session: OwnerSession) -> LocalState:
        """Fetch a snapshot and merge it into stored local state.

        Raises:
            TransientNetworkError: If the snapshot couldn't be fetched.
        """
        snapshot = self.remote.get_snapshot(session.owner_id)
        state = self.local_store.load(session.owner_id)
        merged = merge_snapshot(state, snapshot)
        overlay_pending(merged, self.queue.pending(session))
        self.local_store.save(session.owner_id, merged)
        return merged

    def sync(self, session: OwnerSession) -> SyncResult:
        """Drain the owner's queue, then pull and merge a snapshot."""
        if not session.online:
            logger.debug(f"Offline, skipping sync for owner {session.owner_id}")
            return SyncResult(drain=DrainResult(skipped_reason="offline"))

        result = SyncResult()
        result.drain = self.queue.drain(session, self.remote)
        if result.drain.discarded and self.on_discarded is not None:
            self.on_discarded(session, result.drain.discarded)

        try:
            state = self.pull(session)
        except TransientNetworkError as e:
            logger.warning(f"Snapshot fetch failed for owner {session.owner_id}: {e}")
            result.errors.append(f"pull: {e}")
            log_sync_event("pull-failed", str(e), owner_id=session.owner_id)
            return result

        result.pulled = True
        log_sync_event(
            "pull",
            f"activities={len(state.activities)}, custom={len(state.custom_activities)}, "
            f"growth={len(state.growth_records)}",
            owner_id=session.owner_id,
        )
        return result
