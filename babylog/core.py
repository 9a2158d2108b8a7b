"""
babylog account service.

The server-side boundary: every request from the HTTP layer (or the
in-process remote) lands on one of these methods. Each method validates the
owner id and the payload, enforces per-owner record limits and then hands
off to the record store. Errors surface as babylog exceptions; the caller
maps them to transport status codes.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from babylog.protocols import ValidationError
from babylog.storage.sqlite import SQLiteRecordStore
from babylog.storage.transfer import export_account, import_account
from babylog.storage.upsert import upsert_owned
from babylog.types import (
    DEFAULT_ACTIVITY_LIMIT,
    MAX_ACTIVITIES_PER_USER,
    MAX_ACTIVITY_LIMIT,
    MAX_CUSTOM_ACTIVITIES_PER_USER,
    MAX_GROWTH_RECORDS_PER_USER,
    AccountSnapshot,
    ImportResult,
    NotificationSchedule,
    RecordFamily,
    UpsertResult,
)
from babylog.validation import (
    validate_activity,
    validate_custom_activity,
    validate_growth_record,
    validate_owner_id,
    validate_profile,
    validate_schedule,
    validate_settings,
)

logger = logging.getLogger(__name__)

# Page size for the standalone activities listing
DEFAULT_ACTIVITIES_PAGE = 50

_LIMITS = {
    RecordFamily.ACTIVITIES: (MAX_ACTIVITIES_PER_USER, "activities"),
    RecordFamily.CUSTOM_ACTIVITIES: (MAX_CUSTOM_ACTIVITIES_PER_USER, "custom activities"),
    RecordFamily.GROWTH_RECORDS: (MAX_GROWTH_RECORDS_PER_USER, "growth records"),
}


class AccountService:
    """Validated, limit-checked operations on one record store."""

    def __init__(self, store: Union[SQLiteRecordStore, str, Path]):
        if not isinstance(store, SQLiteRecordStore):
            store = SQLiteRecordStore(store)
        self.store = store

    # === Generic ===

    def upsert_owned(
        self,
        table: str,
        columns: Sequence[str],
        values: Sequence[Any],
        conflict_key: str,
        update_columns: Sequence[str],
        owner_id: int,
        owner_column: str = "telegram_id",
    ) -> UpsertResult:
        """Run the ownership-safe upsert in its own transaction."""
        owner_id = validate_owner_id(owner_id)
        with self.store.connection() as conn:
            return upsert_owned(
                conn, table, columns, values, conflict_key, update_columns, owner_id, owner_column
            )

    def _check_limit(self, owner_id: int, family: RecordFamily, record_id: str) -> None:
        if self.store.has_record(owner_id, family, record_id):
            return
        limit, label = _LIMITS[family]
        count = self.store.count_records(owner_id, family)
        if count >= limit:
            logger.warning(f"Owner {owner_id} reached the {label} limit ({count})")
            raise ValidationError(f"Maximum of {limit} {label} allowed")

    def _save(self, owner_id: Any, family: RecordFamily, record: Dict[str, Any]) -> UpsertResult:
        owner_id = validate_owner_id(owner_id)
        self._check_limit(owner_id, family, record["id"])
        result = self.store.put_record(owner_id, family, record)
        logger.debug(f"Saved {family.value} {record['id']} for owner {owner_id}")
        return result

    def _delete(self, owner_id: Any, family: RecordFamily, record_id: Any) -> int:
        owner_id = validate_owner_id(owner_id)
        if not record_id or not isinstance(record_id, str):
            raise ValidationError(f"{family.value} id is required and must be a string")
        deleted = self.store.delete_record(owner_id, family, record_id)
        logger.info(f"Deleted {family.value} {record_id} for owner {owner_id} (changes={deleted})")
        return deleted

    # === Reads ===

    def get_account_snapshot(
        self, owner_id: Any, limit: int = DEFAULT_ACTIVITY_LIMIT, before: Optional[str] = None
    ) -> AccountSnapshot:
        owner_id = validate_owner_id(owner_id)
        return self.store.get_snapshot(owner_id, limit=limit, before=before)

    def get_activities(
        self, owner_id: Any, limit: int = DEFAULT_ACTIVITIES_PAGE, before: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        owner_id = validate_owner_id(owner_id)
        limit = max(1, min(int(limit or DEFAULT_ACTIVITIES_PAGE), MAX_ACTIVITY_LIMIT))
        return self.store.list_records(owner_id, RecordFamily.ACTIVITIES, limit=limit, before=before)

    # === Collections ===

    def save_activity(self, owner_id: Any, activity: Dict[str, Any]) -> UpsertResult:
        return self._save(owner_id, RecordFamily.ACTIVITIES, validate_activity(activity))

    def delete_activity(self, owner_id: Any, activity_id: str) -> int:
        return self._delete(owner_id, RecordFamily.ACTIVITIES, activity_id)

    def save_custom_activity(self, owner_id: Any, definition: Dict[str, Any]) -> UpsertResult:
        return self._save(owner_id, RecordFamily.CUSTOM_ACTIVITIES, validate_custom_activity(definition))

    def delete_custom_activity(self, owner_id: Any, definition_id: str) -> int:
        return self._delete(owner_id, RecordFamily.CUSTOM_ACTIVITIES, definition_id)

    def save_growth_record(self, owner_id: Any, record: Dict[str, Any]) -> UpsertResult:
        return self._save(owner_id, RecordFamily.GROWTH_RECORDS, validate_growth_record(record))

    def delete_growth_record(self, owner_id: Any, record_id: str) -> int:
        return self._delete(owner_id, RecordFamily.GROWTH_RECORDS, record_id)

    # === Singletons ===

    def save_profile(self, owner_id: Any, profile: Dict[str, Any]) -> None:
        owner_id = validate_owner_id(owner_id)
        if not profile:
            raise ValidationError("Profile data is required")
        self.store.save_profile(owner_id, validate_profile(profile))
        logger.info(f"Profile saved for owner {owner_id}")

    def save_settings(self, owner_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``patch`` into stored settings; returns the merged settings."""
        owner_id = validate_owner_id(owner_id)
        if not patch:
            raise ValidationError("Settings data is required")
        merged = self.store.save_settings(owner_id, validate_settings(patch))
        logger.info(f"Settings saved for owner {owner_id}")
        return merged

    # === Schedules ===

    def save_schedule(self, owner_id: Any, schedule: Dict[str, Any]) -> UpsertResult:
        owner_id = validate_owner_id(owner_id)
        data = validate_schedule(schedule)
        row = NotificationSchedule.for_owner(
            owner_id, data, next_run=data.get("next_run"), enabled=bool(data.get("enabled", True))
        )
        return self.store.save_schedule(row)

    def list_schedules(self, owner_id: Any) -> List[NotificationSchedule]:
        return self.store.list_schedules(validate_owner_id(owner_id))

    def delete_schedule(self, owner_id: Any, schedule_id: str) -> int:
        owner_id = validate_owner_id(owner_id)
        return self.store.delete_schedule(owner_id, schedule_id)

    # === Account-wide ===

    def export_account(self, owner_id: Any) -> Dict[str, Any]:
        owner_id = validate_owner_id(owner_id)
        document = export_account(self.store, owner_id)
        logger.info(f"Exported account {owner_id}")
        return document

    def import_account(self, owner_id: Any, document: Any) -> ImportResult:
        owner_id = validate_owner_id(owner_id)
        logger.info(f"Importing account {owner_id}")
        return import_account(self.store, owner_id, document)

    def delete_account(self, owner_id: Any) -> int:
        owner_id = validate_owner_id(owner_id)
        logger.warning(f"Owner {owner_id} initiated complete data deletion")
        deleted = self.store.delete_account(owner_id)
        logger.warning(f"Data deletion completed for owner {owner_id}: {deleted} records")
        return deleted
