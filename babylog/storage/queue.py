"""Offline mutation queue.

Writes that could not reach the remote are appended here and replayed
oldest-first when connectivity returns. The queue lives in the client's
SQLite file, one row per entry, scoped by owner id.

Retry policy:
- success removes the entry
- ValidationError / OwnershipConflict / unknown action: dropped, reported
- anything else: ``attempts`` is incremented and the entry is kept; once
  ``attempts`` reaches ``max_retries`` the entry is dropped
"""

import contextlib
import json
import logging
import random
import sqlite3
import string
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Union

from babylog.logging_config import log_discard, log_drain
from babylog.protocols import (
    OwnershipConflict,
    RemoteBackend,
    StorageError,
    TransientNetworkError,
    ValidationError,
    is_permanent,
)
from babylog.session import OwnerSession
from babylog.storage.schema import init_client_db
from babylog.types import (
    MAX_QUEUE_RETRIES,
    VALID_QUEUE_ACTIONS,
    DrainResult,
    QueueAction,
    QueuedMutation,
    UpsertResult,
)

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

# Failures the queue expects and retries quietly
EXPECTED_FAILURES = (TransientNetworkError, StorageError)


def generate_queue_id() -> str:
    """Return a unique queue entry id.

    Uses uuid4; when the OS randomness source is unavailable, falls back to
    a millisecond timestamp plus a pseudo-random suffix.
    """
    try:
        return str(uuid.uuid4())
    except (NotImplementedError, OSError):
        suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
        return f"{int(time.time() * 1000)}-{suffix}"


def _record_id(payload: Dict[str, Any]) -> str:
    record_id = payload.get("id") if isinstance(payload, dict) else None
    if not record_id or not isinstance(record_id, str):
        raise ValidationError("Queued delete is missing a record id")
    return record_id


def replay_mutation(remote: RemoteBackend, owner_id: int, action: str, payload: Dict[str, Any]) -> Any:
    """Send one mutation to the remote; UpsertResult failures raise OwnershipConflict."""
    handlers: Dict[str, Callable[[], Any]] = {
        QueueAction.SAVE_ACTIVITY.value: lambda: remote.save_activity(owner_id, payload),
        QueueAction.DELETE_ACTIVITY.value: lambda: remote.delete_activity(owner_id, _record_id(payload)),
        QueueAction.SAVE_CUSTOM_ACTIVITY.value: lambda: remote.save_custom_activity(owner_id, payload),
        QueueAction.DELETE_CUSTOM_ACTIVITY.value: lambda: remote.delete_custom_activity(
            owner_id, _record_id(payload)
        ),
        QueueAction.SAVE_GROWTH.value: lambda: remote.save_growth_record(owner_id, payload),
        QueueAction.DELETE_GROWTH.value: lambda: remote.delete_growth_record(owner_id, _record_id(payload)),
        QueueAction.SAVE_PROFILE.value: lambda: remote.save_profile(owner_id, payload),
        QueueAction.SAVE_SETTINGS.value: lambda: remote.save_settings(owner_id, payload),
    }
    handler = handlers.get(action)
    if handler is None:
        raise ValidationError(f"Unknown queue action: {action}")
    result = handler()
    if isinstance(result, UpsertResult) and not result.success:
        raise OwnershipConflict(result.error or "ID conflict with another user", record_id=payload.get("id"))
    return result


class OfflineQueue:
    """Durable, per-owner, ordered log of pending mutations."""

    def __init__(self, db_path: Union[str, Path], max_retries: int = MAX_QUEUE_RETRIES):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_retries = max_retries
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        with self._connect() as conn:
            init_client_db(conn)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise StorageError(f"Queue operation failed: {e}") from e
        finally:
            conn.close()

    def _owner_lock(self, owner_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(owner_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[owner_id] = lock
            return lock

    def _row_to_entry(self, row: sqlite3.Row) -> QueuedMutation:
        try:
            payload = json.loads(row["payload"])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt queue entry {row['id']}: {e}") from e
        return QueuedMutation(
            id=row["id"],
            owner_id=row["owner_id"],
            action=row["action"],
            payload=payload,
            timestamp=row["timestamp"],
            attempts=row["attempts"],
            last_error=row["last_error"],
        )

    # === Public API ===

    def enqueue(
        self, session: OwnerSession, action: Union[QueueAction, str], payload: Dict[str, Any]
    ) -> QueuedMutation:
        """Append a mutation for the session's owner. Durable on return."""
        action_name = action.value if isinstance(action, QueueAction) else str(action)
        if action_name not in VALID_QUEUE_ACTIONS:
            raise ValidationError(f"Unknown queue action: {action_name}")
        entry = QueuedMutation(
            id=generate_queue_id(),
            owner_id=session.owner_id,
            action=action_name,
            payload=payload,
            timestamp=int(time.time() * 1000),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO offline_queue (id, owner_id, action, payload, timestamp, attempts) "
                "VALUES (?, ?, ?, ?, ?, 0)",
                (
                    entry.id,
                    entry.owner_id,
                    entry.action,
                    json.dumps(payload, ensure_ascii=False),
                    entry.timestamp,
                ),
            )
        logger.debug(f"Queued {action_name} for owner {session.owner_id} ({entry.id})")
        return entry

    def pending(self, session: OwnerSession) -> List[QueuedMutation]:
        """Entries for the session's owner, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM offline_queue WHERE owner_id = ? ORDER BY seq",
                (session.owner_id,),
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def pending_count(self, session: OwnerSession) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM offline_queue WHERE owner_id = ?", (session.owner_id,)
            ).fetchone()
        return int(row[0])

    def clear(self, session: OwnerSession) -> int:
        """Drop every entry for the session's owner. Returns the number removed."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM offline_queue WHERE owner_id = ?", (session.owner_id,))
            removed = cur.rowcount
        if removed:
            logger.info(f"Cleared {removed} queued mutations for owner {session.owner_id}")
        return removed

    def _remove(self, entry_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM offline_queue WHERE id = ?", (entry_id,))

    def _record_failure(self, entry: QueuedMutation, error: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE offline_queue SET attempts = ?, last_error = ? WHERE id = ?",
                (entry.attempts, error[:500], entry.id),
            )

    def drain(self, session: OwnerSession, remote: RemoteBackend) -> DrainResult:
        """Replay the owner's pending entries against ``remote``, oldest first.

        No-op when offline or when a drain for the same owner is already
        running on this queue.
        """
        if not session.online:
            logger.debug(f"Offline, not draining queue for owner {session.owner_id}")
            return DrainResult(skipped_reason="offline")

        lock = self._owner_lock(session.owner_id)
        if not lock.acquire(blocking=False):
            logger.debug(f"Drain already running for owner {session.owner_id}")
            return DrainResult(skipped_reason="already draining")

        result = DrainResult()
        try:
            for entry in self.pending(session):
                self._drain_one(session, remote, entry, result)
        finally:
            lock.release()

        if result.applied or result.retried or result.discarded:
            logger.info(
                f"Drained queue for owner {session.owner_id}: applied={len(result.applied)}, "
                f"retried={len(result.retried)}, discarded={len(result.discarded)}"
            )
            log_drain(session.owner_id, len(result.applied), len(result.retried), len(result.discarded))
        return result

    def _drain_one(
        self,
        session: OwnerSession,
        remote: RemoteBackend,
        entry: QueuedMutation,
        result: DrainResult,
    ) -> None:
        try:
            replay_mutation(remote, session.owner_id, entry.action, entry.payload)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            if is_permanent(e):
                logger.warning(f"Dropping {entry.action} {entry.id}: {error}")
                self._discard(entry, error, result)
                return
            if not isinstance(e, EXPECTED_FAILURES):
                logger.exception(f"Unexpected error replaying {entry.action} {entry.id}")
            entry.attempts += 1
            entry.last_error = error
            if entry.attempts >= self.max_retries:
                logger.warning(
                    f"Dropping {entry.action} {entry.id} after {entry.attempts} attempts: {error}"
                )
                self._discard(entry, f"max retries exceeded: {error}", result)
                return
            self._record_failure(entry, error)
            result.retried.append(entry.id)
            return

        self._remove(entry.id)
        result.applied.append(entry.id)

    def _discard(self, entry: QueuedMutation, reason: str, result: DrainResult) -> None:
        entry.last_error = reason
        self._remove(entry.id)
        result.discarded.append(entry)
        log_discard(entry.owner_id, entry.action, entry.id, reason)

