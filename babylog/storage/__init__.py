"""Storage layer for babylog.

Server side: the owner-scoped record store and account transfer.
Client side: the offline queue, the local state cache and the sync engine.
The HTTP/in-process remotes live in :mod:`babylog.storage.remote`.
"""

from .local import LocalState, LocalStateStore
from .queue import OfflineQueue
from .sqlite import SQLiteRecordStore
from .sync_engine import SyncEngine, merge_profile, merge_settings, merge_snapshot
from .upsert import upsert_owned

__all__ = [
    "LocalState",
    "LocalStateStore",
    "OfflineQueue",
    "SQLiteRecordStore",
    "SyncEngine",
    "merge_profile",
    "merge_settings",
    "merge_snapshot",
    "upsert_owned",
]
