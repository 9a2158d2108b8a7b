"""Client-side local state.

``LocalState`` is what the presentation layer renders: profile, settings
and the three record collections for one owner, plus any notices about
writes the server refused. ``LocalStateStore`` keeps it durable in the
client's SQLite file so a restart while offline loses nothing.
"""

import contextlib
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from babylog.protocols import StorageError
from babylog.storage.schema import init_client_db
from babylog.types import Notice, RecordFamily
from babylog.validation import parse_iso

logger = logging.getLogger(__name__)

# Collections and the date field they are ordered by (newest first)
SORT_FIELDS = {
    RecordFamily.ACTIVITIES: "timestamp",
    RecordFamily.GROWTH_RECORDS: "date",
}

LOCAL_FAMILIES = (
    RecordFamily.ACTIVITIES,
    RecordFamily.CUSTOM_ACTIVITIES,
    RecordFamily.GROWTH_RECORDS,
)


def sort_newest_first(records: List[Dict[str, Any]], sort_key: Optional[str]) -> List[Dict[str, Any]]:
    """Sort by an ISO date field, newest first; unparsable dates go last."""
    if not sort_key:
        return list(records)

    def key(record: Dict[str, Any]):
        parsed = parse_iso(record.get(sort_key))
        if parsed is None:
            return (1, 0.0)
        return (0, -parsed.timestamp())

    return sorted(records, key=key)


def sort_family(family: Union[RecordFamily, str], records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sort_newest_first(records, SORT_FIELDS.get(RecordFamily(family)))


@dataclass
class LocalState:
    """One owner's records as the client currently sees them."""

    profile: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None
    activities: List[Dict[str, Any]] = field(default_factory=list)
    custom_activities: List[Dict[str, Any]] = field(default_factory=list)
    growth_records: List[Dict[str, Any]] = field(default_factory=list)
    notices: List[Notice] = field(default_factory=list)

    def collection(self, family: Union[RecordFamily, str]) -> List[Dict[str, Any]]:
        family = RecordFamily(family)
        if family == RecordFamily.ACTIVITIES:
            return self.activities
        if family == RecordFamily.CUSTOM_ACTIVITIES:
            return self.custom_activities
        if family == RecordFamily.GROWTH_RECORDS:
            return self.growth_records
        raise ValueError(f"No local collection for {family.value}")

    def set_collection(self, family: Union[RecordFamily, str], records: List[Dict[str, Any]]) -> None:
        family = RecordFamily(family)
        if family == RecordFamily.ACTIVITIES:
            self.activities = records
        elif family == RecordFamily.CUSTOM_ACTIVITIES:
            self.custom_activities = records
        elif family == RecordFamily.GROWTH_RECORDS:
            self.growth_records = records
        else:
            raise ValueError(f"No local collection for {family.value}")

    def find(self, family: Union[RecordFamily, str], record_id: str) -> Optional[Dict[str, Any]]:
        for record in self.collection(family):
            if record.get("id") == record_id:
                return record
        return None


class LocalStateStore:
    """Durable client copy of each owner's state."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
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
            raise StorageError(f"Local state operation failed: {e}") from e
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def _from_json(self, s: str, what: str) -> Any:
        try:
            return json.loads(s)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt local {what}: {e}") from e

    # === Reads ===

    def load(self, owner_id: int) -> LocalState:
        state = LocalState()
        with self._connect() as conn:
            for row in conn.execute(
                "SELECT kind, data FROM local_singletons WHERE owner_id = ?", (owner_id,)
            ).fetchall():
                value = self._from_json(row["data"], row["kind"])
                if row["kind"] == "profile":
                    state.profile = value
                elif row["kind"] == "settings":
                    state.settings = value

            for family in LOCAL_FAMILIES:
                rows = conn.execute(
                    "SELECT record_id, data FROM local_records "
                    "WHERE owner_id = ? AND family = ? ORDER BY rowid",
                    (owner_id, family.value),
                ).fetchall()
                records = [self._from_json(r["data"], f"{family.value}[{r['record_id']}]") for r in rows]
                state.set_collection(family, sort_family(family, records))

            state.notices = [
                Notice(
                    action=r["action"],
                    record_id=r["record_id"],
                    message=r["message"],
                    created_at=r["created_at"],
                )
                for r in conn.execute(
                    "SELECT * FROM local_notices WHERE owner_id = ? ORDER BY seq", (owner_id,)
                ).fetchall()
            ]
        return state

    # === Writes ===

    def _put(self, conn: sqlite3.Connection, owner_id: int, family: RecordFamily, record: Dict[str, Any]):
        conn.execute(
            "INSERT INTO local_records (owner_id, family, record_id, data) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(owner_id, family, record_id) DO UPDATE SET data = excluded.data",
            (owner_id, family.value, record["id"], json.dumps(record, ensure_ascii=False)),
        )

    def put_record(self, owner_id: int, family: Union[RecordFamily, str], record: Dict[str, Any]) -> None:
        with self._connect() as conn:
            self._put(conn, owner_id, RecordFamily(family), record)

    def remove_record(self, owner_id: int, family: Union[RecordFamily, str], record_id: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM local_records WHERE owner_id = ? AND family = ? AND record_id = ?",
                (owner_id, RecordFamily(family).value, record_id),
            )
            return cur.rowcount

    def set_singleton(self, owner_id: int, kind: str, data: Optional[Dict[str, Any]]) -> None:
        if kind not in ("profile", "settings"):
            raise ValueError(f"Unknown singleton: {kind}")
        with self._connect() as conn:
            if data is None:
                conn.execute(
                    "DELETE FROM local_singletons WHERE owner_id = ? AND kind = ?", (owner_id, kind)
                )
                return
            conn.execute(
                "INSERT INTO local_singletons (owner_id, kind, data) VALUES (?, ?, ?) "
                "ON CONFLICT(owner_id, kind) DO UPDATE SET data = excluded.data",
                (owner_id, kind, json.dumps(data, ensure_ascii=False)),
            )

    def save(self, owner_id: int, state: LocalState) -> None:
        """Replace the owner's stored state with ``state`` in one transaction."""
        with self._connect() as conn:
            conn.execute("DELETE FROM local_singletons WHERE owner_id = ?", (owner_id,))
            conn.execute("DELETE FROM local_records WHERE owner_id = ?", (owner_id,))
            for kind, value in (("profile", state.profile), ("settings", state.settings)):
                if value is not None:
                    conn.execute(
                        "INSERT INTO local_singletons (owner_id, kind, data) VALUES (?, ?, ?)",
                        (owner_id, kind, json.dumps(value, ensure_ascii=False)),
                    )
            for family in LOCAL_FAMILIES:
                for record in state.collection(family):
                    self._put(conn, owner_id, family, record)

    def add_notice(self, owner_id: int, notice: Notice) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO local_notices (owner_id, action, record_id, message, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (owner_id, notice.action, notice.record_id, notice.message, notice.created_at),
            )

    def clear_notices(self, owner_id: int) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM local_notices WHERE owner_id = ?", (owner_id,))
            return cur.rowcount

    def clear(self, owner_id: int) -> None:
        """Forget everything stored locally for ``owner_id``."""
        with self._connect() as conn:
            conn.execute("DELETE FROM local_singletons WHERE owner_id = ?", (owner_id,))
            conn.execute("DELETE FROM local_records WHERE owner_id = ?", (owner_id,))
            conn.execute("DELETE FROM local_notices WHERE owner_id = ?", (owner_id,))
        logger.info(f"Cleared local state for owner {owner_id}")
