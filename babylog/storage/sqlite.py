"""SQLite record store for babylog.

Server-authoritative storage for profile/settings, activities, custom
activity definitions, growth records and notification schedules. Every
multi-row write goes through :func:`babylog.storage.upsert.upsert_owned`;
every read and delete is scoped by owner.

Connections are opened per operation. Account-wide operations (import,
delete-all) run inside :meth:`SQLiteRecordStore.account_transaction`, which
holds one lock per store plus a ``BEGIN IMMEDIATE`` write transaction.
"""

import contextlib
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from babylog.protocols import OwnershipConflict, StorageError
from babylog.storage.schema import OWNER_COLUMNS, init_server_db
from babylog.storage.upsert import upsert_owned
from babylog.types import (
    DEFAULT_ACTIVITY_LIMIT,
    MAX_ACTIVITY_LIMIT,
    AccountSnapshot,
    RECORD_ENVELOPES,
    NotificationSchedule,
    Profile,
    RecordFamily,
    UpsertResult,
    UserSettings,
)

logger = logging.getLogger(__name__)

# family -> (table, columns written, columns updated on conflict)
FAMILY_TABLES = {
    RecordFamily.ACTIVITIES: (
        "activities",
        ["id", "type", "timestamp", "data"],
        ["type", "timestamp", "data"],
    ),
    RecordFamily.CUSTOM_ACTIVITIES: (
        "custom_activities",
        ["id", "data"],
        ["data"],
    ),
    RecordFamily.GROWTH_RECORDS: (
        "growth_records",
        ["id", "date", "data"],
        ["date", "data"],
    ),
}

# Account tables cleared by import; delete_account also clears users
ACCOUNT_COLLECTION_TABLES = (
    "activities",
    "custom_activities",
    "growth_records",
    "notification_schedules",
)


def _family(family: Union[RecordFamily, str]) -> RecordFamily:
    try:
        family = RecordFamily(family)
    except ValueError:
        raise ValueError(f"Unknown record family: {family}")
    if family not in FAMILY_TABLES:
        raise ValueError(f"Record family {family.value} is not stored as owned rows")
    return family


class SQLiteRecordStore:
    """SQLite-backed server store, one owner per row."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._account_lock = threading.Lock()
        self._init_db()

    # === Connections ===

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on exception, always close."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise StorageError(f"Database operation failed: {e}") from e
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def _use(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        """Reuse a caller's connection (inside a transaction) or open one."""
        if conn is not None:
            yield conn
            return
        with self._connect() as own:
            yield own

    @contextlib.contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """One unit of work on a fresh connection: commit on success, roll back on error."""
        with self._connect() as conn:
            yield conn

    @contextlib.contextmanager
    def account_transaction(self) -> Iterator[sqlite3.Connection]:
        """Run an account-wide unit of work atomically.

        Holds the store's account lock for the whole unit and opens a
        ``BEGIN IMMEDIATE`` transaction. Commits when the block exits
        normally; rolls back on any exception. sqlite failures surface as a
        single :class:`StorageError`.
        """
        with self._account_lock:
            conn = self._get_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                logger.warning(f"Account transaction failed, rolling back: {e}")
                conn.rollback()
                raise StorageError(f"Account transaction failed: {e}") from e
            except Exception as e:
                logger.warning(f"Account transaction failed, rolling back: {e}")
                conn.rollback()
                raise
            finally:
                conn.close()

    def _init_db(self):
        with self._connect() as conn:
            init_server_db(conn)

    def close(self):
        """Connections are per-operation; nothing to release."""
        pass

    # === JSON helpers ===

    def _to_json(self, data: Any) -> str:
        return json.dumps(data, ensure_ascii=False)

    def _from_json(self, s: Optional[str], what: str) -> Any:
        """Parse a stored JSON blob; a corrupt blob is a storage error."""
        if s is None or s == "":
            return None
        try:
            return json.loads(s)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt JSON in {what}: {e}") from e

    def _decode_singleton(self, envelope, s: Optional[str], what: str) -> Optional[Dict[str, Any]]:
        data = self._from_json(s, what)
        if data is None:
            return None
        if not isinstance(data, dict):
            raise StorageError(f"Corrupt JSON in {what}: expected an object")
        return envelope.from_dict(data).to_dict()

    # === Users (profile and settings) ===

    def get_user(self, owner_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
        """Return ``{"profile": ..., "settings": ...}`` or None if no users row."""
        with self._use(conn) as c:
            row = c.execute(
                "SELECT profile_data, settings_data FROM users WHERE telegram_id = ?",
                (owner_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "profile": self._decode_singleton(Profile, row["profile_data"], f"users.profile_data[{owner_id}]"),
            "settings": self._decode_singleton(UserSettings, row["settings_data"], f"users.settings_data[{owner_id}]"),
        }

    def save_profile(
        self, owner_id: int, profile: Dict[str, Any], conn: Optional[sqlite3.Connection] = None
    ) -> None:
        """Overwrite the owner's profile."""
        with self._use(conn) as c:
            c.execute(
                "INSERT INTO users (telegram_id, profile_data) VALUES (?, ?) "
                "ON CONFLICT(telegram_id) DO UPDATE SET profile_data = excluded.profile_data",
                (owner_id, self._to_json(Profile.from_dict(profile).to_dict())),
            )

    def save_settings(
        self, owner_id: int, patch: Dict[str, Any], conn: Optional[sqlite3.Connection] = None
    ) -> Dict[str, Any]:
        """Merge ``patch`` into the stored settings and return the result."""
        with self._use(conn) as c:
            row = c.execute(
                "SELECT settings_data FROM users WHERE telegram_id = ?", (owner_id,)
            ).fetchone()
            existing = {}
            if row is not None:
                existing = self._decode_singleton(
                    UserSettings, row["settings_data"], f"users.settings_data[{owner_id}]"
                ) or {}
            merged = UserSettings.from_dict({**existing, **patch}).to_dict()
            c.execute(
                "INSERT INTO users (telegram_id, settings_data) VALUES (?, ?) "
                "ON CONFLICT(telegram_id) DO UPDATE SET settings_data = excluded.settings_data",
                (owner_id, self._to_json(merged)),
            )
        return merged

    def replace_user(
        self,
        owner_id: int,
        profile: Optional[Dict[str, Any]],
        settings: Optional[Dict[str, Any]],
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Write both singletons as given, keeping the users row itself."""
        with self._use(conn) as c:
            c.execute(
                "INSERT INTO users (telegram_id, profile_data, settings_data) VALUES (?, ?, ?) "
                "ON CONFLICT(telegram_id) DO UPDATE SET "
                "profile_data = excluded.profile_data, settings_data = excluded.settings_data",
                (owner_id, self._to_json(profile or {}), self._to_json(settings or {})),
            )

    # === Owned collections ===

    def _row_to_record(self, family: RecordFamily, row: sqlite3.Row) -> Dict[str, Any]:
        data = self._from_json(row["data"], f"{FAMILY_TABLES[family][0]}[{row['id']}]") or {}
        if not isinstance(data, dict):
            raise StorageError(f"Corrupt record {row['id']}: expected an object")
        record = dict(data)
        record["id"] = row["id"]
        if family == RecordFamily.ACTIVITIES:
            record["type"] = row["type"]
            record["timestamp"] = row["timestamp"]
        elif family == RecordFamily.GROWTH_RECORDS:
            record["date"] = row["date"]
        return RECORD_ENVELOPES[family].from_dict(record).to_dict()

    def list_records(
        self,
        owner_id: int,
        family: Union[RecordFamily, str],
        limit: Optional[int] = None,
        before: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> List[Dict[str, Any]]:
        """List an owner's records, newest first where the family has an order."""
        family = _family(family)
        table = FAMILY_TABLES[family][0]
        sql = f"SELECT * FROM {table} WHERE telegram_id = ?"
        params: List[Any] = [owner_id]
        if family == RecordFamily.ACTIVITIES:
            if before:
                sql += " AND timestamp < ?"
                params.append(before)
            sql += " ORDER BY timestamp DESC"
        elif family == RecordFamily.GROWTH_RECORDS:
            sql += " ORDER BY date DESC"
        else:
            sql += " ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._use(conn) as c:
            rows = c.execute(sql, params).fetchall()
        return [self._row_to_record(family, r) for r in rows]

    def get_record(
        self, owner_id: int, family: Union[RecordFamily, str], record_id: str
    ) -> Optional[Dict[str, Any]]:
        family = _family(family)
        table = FAMILY_TABLES[family][0]
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {table} WHERE id = ? AND telegram_id = ?",
                (record_id, owner_id),
            ).fetchone()
        return self._row_to_record(family, row) if row else None

    def has_record(
        self,
        owner_id: int,
        family: Union[RecordFamily, str],
        record_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        table = FAMILY_TABLES[_family(family)][0]
        with self._use(conn) as c:
            row = c.execute(
                f"SELECT 1 FROM {table} WHERE id = ? AND telegram_id = ?",
                (record_id, owner_id),
            ).fetchone()
        return row is not None

    def count_records(
        self,
        owner_id: int,
        family: Union[RecordFamily, str],
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        table = FAMILY_TABLES[_family(family)][0]
        with self._use(conn) as c:
            row = c.execute(f"SELECT COUNT(*) FROM {table} WHERE telegram_id = ?", (owner_id,)).fetchone()
        return int(row[0])

    def put_record(
        self,
        owner_id: int,
        family: Union[RecordFamily, str],
        record: Dict[str, Any],
        conn: Optional[sqlite3.Connection] = None,
    ) -> UpsertResult:
        """Insert or update one owned record.

        Raises:
            OwnershipConflict: If the id already belongs to another owner.
        """
        result = self.try_put_record(owner_id, family, record, conn=conn)
        if not result.success:
            raise OwnershipConflict(result.error or "ID conflict with another user", record_id=record.get("id"))
        return result

    def try_put_record(
        self,
        owner_id: int,
        family: Union[RecordFamily, str],
        record: Dict[str, Any],
        conn: Optional[sqlite3.Connection] = None,
    ) -> UpsertResult:
        """Like :meth:`put_record` but reports a conflict instead of raising."""
        family = _family(family)
        table, columns, update_columns = FAMILY_TABLES[family]
        envelope = RECORD_ENVELOPES[family].from_dict(record)
        values = []
        for column in columns:
            if column == "data":
                values.append(self._to_json(envelope.to_dict()))
            else:
                values.append(getattr(envelope, column))
        with self._use(conn) as c:
            return upsert_owned(
                c,
                table,
                columns,
                values,
                "id",
                update_columns,
                owner_id,
                owner_column=OWNER_COLUMNS[table],
            )

    def delete_record(
        self,
        owner_id: int,
        family: Union[RecordFamily, str],
        record_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        """Delete one record scoped by owner. Missing rows are a no-op (0)."""
        table = FAMILY_TABLES[_family(family)][0]
        with self._use(conn) as c:
            cur = c.execute(
                f"DELETE FROM {table} WHERE id = ? AND telegram_id = ?",
                (record_id, owner_id),
            )
            return cur.rowcount

    def get_snapshot(
        self,
        owner_id: int,
        limit: int = DEFAULT_ACTIVITY_LIMIT,
        before: Optional[str] = None,
    ) -> AccountSnapshot:
        """Read everything the client needs in one consistent view."""
        limit = max(1, min(int(limit or DEFAULT_ACTIVITY_LIMIT), MAX_ACTIVITY_LIMIT))
        with self._connect() as conn:
            conn.execute("BEGIN")
            user = self.get_user(owner_id, conn=conn)
            activities = self.list_records(
                owner_id, RecordFamily.ACTIVITIES, limit=limit, before=before, conn=conn
            )
            custom = self.list_records(owner_id, RecordFamily.CUSTOM_ACTIVITIES, conn=conn)
            growth = self.list_records(owner_id, RecordFamily.GROWTH_RECORDS, conn=conn)
        return AccountSnapshot(
            profile=user["profile"] if user else None,
            settings=user["settings"] if user else None,
            activities=activities,
            custom_activities=custom,
            growth_records=growth,
        )

    # === Notification schedules ===

    def _row_to_schedule(self, row: sqlite3.Row) -> NotificationSchedule:
        data = self._from_json(row["schedule_data"], f"notification_schedules[{row['id']}]") or {}
        return NotificationSchedule(
            id=row["id"],
            user_id=row["user_id"],
            chat_id=row["chat_id"],
            type=row["type"],
            schedule_data=data,
            next_run=row["next_run"],
            enabled=bool(row["enabled"]),
        )

    def try_save_schedule(
        self, schedule: NotificationSchedule, conn: Optional[sqlite3.Connection] = None
    ) -> UpsertResult:
        columns = ["id", "chat_id", "type", "schedule_data", "next_run", "enabled"]
        values = [
            schedule.id,
            schedule.chat_id,
            schedule.type,
            self._to_json(schedule.schedule_data),
            schedule.next_run,
            1 if schedule.enabled else 0,
        ]
        with self._use(conn) as c:
            return upsert_owned(
                c,
                "notification_schedules",
                columns,
                values,
                "id",
                columns[1:],
                schedule.user_id,
                owner_column="user_id",
            )

    def save_schedule(
        self, schedule: NotificationSchedule, conn: Optional[sqlite3.Connection] = None
    ) -> UpsertResult:
        result = self.try_save_schedule(schedule, conn=conn)
        if not result.success:
            raise OwnershipConflict(result.error or "ID conflict with another user", record_id=schedule.id)
        return result

    def list_schedules(
        self, owner_id: int, conn: Optional[sqlite3.Connection] = None
    ) -> List[NotificationSchedule]:
        with self._use(conn) as c:
            rows = c.execute(
                "SELECT * FROM notification_schedules WHERE user_id = ? ORDER BY rowid",
                (owner_id,),
            ).fetchall()
        return [self._row_to_schedule(r) for r in rows]

    def delete_schedule(self, owner_id: int, schedule_id: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM notification_schedules WHERE id = ? AND user_id = ?",
                (schedule_id, owner_id),
            )
            return cur.rowcount

    def due_schedules(self, now: int, limit: int = 100) -> List[NotificationSchedule]:
        """Enabled schedules whose ``next_run`` is at or before ``now``."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM notification_schedules "
                "WHERE enabled = 1 AND next_run IS NOT NULL AND next_run <= ? "
                "ORDER BY next_run LIMIT ?",
                (now, limit),
            ).fetchall()
        return [self._row_to_schedule(r) for r in rows]

    def claim_schedule(
        self, schedule_id: str, owner_id: int, expected_next_run: int, new_next_run: int
    ) -> bool:
        """Advance ``next_run`` only if nobody else has claimed this run.

        Returns True when this caller won the claim.
        """
        if new_next_run < expected_next_run:
            raise ValueError("next_run cannot move backwards")
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE notification_schedules SET next_run = ? "
                "WHERE id = ? AND user_id = ? AND next_run = ? AND enabled = 1",
                (new_next_run, schedule_id, owner_id, expected_next_run),
            )
            return cur.rowcount == 1

    # === Account-wide ===

    def clear_collections(self, owner_id: int, conn: sqlite3.Connection) -> Dict[str, int]:
        """Delete every owned collection row for ``owner_id`` on ``conn``."""
        deleted = {}
        for table in ACCOUNT_COLLECTION_TABLES:
            cur = conn.execute(
                f"DELETE FROM {table} WHERE {OWNER_COLUMNS[table]} = ?", (owner_id,)
            )
            deleted[table] = cur.rowcount
        return deleted

    def delete_account(self, owner_id: int) -> int:
        """Delete every record the owner has, users row included, atomically."""
        with self.account_transaction() as conn:
            deleted = self.clear_collections(owner_id, conn)
            cur = conn.execute("DELETE FROM users WHERE telegram_id = ?", (owner_id,))
            deleted["users"] = cur.rowcount
        total = sum(deleted.values())
        logger.info(f"Deleted account {owner_id}: {deleted}")
        return total
