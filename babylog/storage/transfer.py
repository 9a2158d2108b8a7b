"""Account import/export for babylog.

Export produces a versioned document::

    {"version": 1, "timestamp": "...", "profile": {...}, "settings": {...},
     "activities": [...], "customActivities": [...], "growthRecords": [...],
     "schedules": [...]}

Import validates the whole document first, then replaces the owner's
collections inside one account transaction. Any failure after the first
delete rolls the account back to exactly what it was.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from babylog.protocols import ValidationError
from babylog.storage.sqlite import SQLiteRecordStore
from babylog.types import (
    EXPORT_VERSION,
    MAX_ACTIVITIES_PER_USER,
    MAX_CUSTOM_ACTIVITIES_PER_USER,
    MAX_GROWTH_RECORDS_PER_USER,
    MAX_IMPORT_RECORDS,
    ImportResult,
    NotificationSchedule,
    RecordFamily,
    unix_now,
    utc_now,
)
from babylog.validation import (
    validate_activity,
    validate_custom_activity,
    validate_growth_record,
    validate_profile,
    validate_schedule,
    validate_settings,
)

logger = logging.getLogger(__name__)


@dataclass
class _ImportArray:
    key: str
    identity: Callable[[Dict[str, Any]], bool]
    validator: Callable[[Any], Dict[str, Any]]
    per_user_limit: Optional[int] = None


_ARRAYS = [
    _ImportArray(
        "activities",
        lambda a: bool(a.get("id") and a.get("type") and a.get("timestamp")),
        validate_activity,
        MAX_ACTIVITIES_PER_USER,
    ),
    _ImportArray(
        "customActivities",
        lambda c: bool(c.get("id")),
        validate_custom_activity,
        MAX_CUSTOM_ACTIVITIES_PER_USER,
    ),
    _ImportArray(
        "growthRecords",
        lambda g: bool(g.get("id") and g.get("date")),
        validate_growth_record,
        MAX_GROWTH_RECORDS_PER_USER,
    ),
    _ImportArray(
        "schedules",
        lambda s: bool(s.get("id") and s.get("type")),
        validate_schedule,
    ),
]


@dataclass
class PreparedImport:
    """A validated import document, ready to apply."""

    profile: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None
    entries: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    skipped: Dict[str, int] = field(default_factory=dict)


def export_account(store: SQLiteRecordStore, owner_id: int) -> Dict[str, Any]:
    """Build the full export document for ``owner_id``."""
    user = store.get_user(owner_id)
    activities = store.list_records(owner_id, RecordFamily.ACTIVITIES)
    custom = store.list_records(owner_id, RecordFamily.CUSTOM_ACTIVITIES)
    growth = store.list_records(owner_id, RecordFamily.GROWTH_RECORDS)
    schedules = [s.to_export_dict() for s in store.list_schedules(owner_id)]

    document = {
        "version": EXPORT_VERSION,
        "timestamp": utc_now(),
        "profile": user["profile"] if user else None,
        "settings": user["settings"] if user else None,
        "activities": activities,
        "customActivities": custom,
        "growthRecords": growth,
        "schedules": schedules,
    }
    logger.info(
        f"Exported account {owner_id}: activities={len(activities)}, custom={len(custom)}, "
        f"growth={len(growth)}, schedules={len(schedules)}"
    )
    return document


def prepare_import(document: Any) -> PreparedImport:
    """Validate an import document without touching storage.

    Entries missing their identity fields are skipped. Entries that have
    them but fail validation reject the whole document.

    Raises:
        ValidationError: If the document is malformed.
    """
    if not isinstance(document, dict):
        raise ValidationError("Invalid backup file format")
    if not document.get("version") or not document.get("timestamp"):
        raise ValidationError("Invalid backup file format")
    version = document["version"]
    if isinstance(version, bool) or not isinstance(version, int) or version > EXPORT_VERSION:
        raise ValidationError(f"Unsupported backup version: {version}")

    prepared = PreparedImport()
    if document.get("profile"):
        try:
            prepared.profile = validate_profile(document["profile"])
        except ValidationError as e:
            raise ValidationError(f"Invalid profile: {e}")
    if document.get("settings"):
        try:
            prepared.settings = validate_settings(document["settings"])
        except ValidationError as e:
            raise ValidationError(f"Invalid settings: {e}")

    for array in _ARRAYS:
        items = document.get(array.key)
        if items is None:
            continue
        if not isinstance(items, list):
            raise ValidationError(f"{array.key} must be a list")
        if len(items) > MAX_IMPORT_RECORDS:
            raise ValidationError(f"{array.key} exceed maximum batch size of {MAX_IMPORT_RECORDS}")
        if array.per_user_limit is not None and len(items) > array.per_user_limit:
            raise ValidationError(f"{array.key} exceed per-user limit of {array.per_user_limit}")

        accepted = []
        skipped = 0
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"{array.key}[{index}] invalid: must be an object")
            if not array.identity(item):
                skipped += 1
                continue
            try:
                accepted.append(array.validator(item))
            except ValidationError as e:
                raise ValidationError(f"{array.key}[{index}] invalid: {e}")
        prepared.entries[array.key] = accepted
        if skipped:
            logger.debug(f"Skipping {skipped} {array.key} entries without identity fields")
            prepared.skipped[array.key] = skipped

    return prepared


def import_account(store: SQLiteRecordStore, owner_id: int, document: Any) -> ImportResult:
    """Replace the owner's account with the contents of ``document``.

    Profile and settings are written as given (the users row is kept);
    activities, custom activities, growth records and schedules are deleted
    and re-inserted. Rows whose id belongs to another owner are skipped and
    counted in ``conflicts``.

    Raises:
        ValidationError: If the document is malformed (nothing is touched).
        StorageError: If storage fails (everything is rolled back).
    """
    prepared = prepare_import(document)
    result = ImportResult(skipped=dict(prepared.skipped))
    now = unix_now()

    family_keys = {
        "activities": RecordFamily.ACTIVITIES,
        "customActivities": RecordFamily.CUSTOM_ACTIVITIES,
        "growthRecords": RecordFamily.GROWTH_RECORDS,
    }

    with store.account_transaction() as conn:
        store.clear_collections(owner_id, conn)

        if prepared.profile is not None or prepared.settings is not None:
            store.replace_user(owner_id, prepared.profile, prepared.settings, conn=conn)

        for key, family in family_keys.items():
            entries = prepared.entries.get(key)
            if entries is None:
                continue
            imported = conflicts = 0
            for entry in entries:
                if store.try_put_record(owner_id, family, entry, conn=conn).success:
                    imported += 1
                else:
                    conflicts += 1
            result.imported[key] = imported
            if conflicts:
                result.conflicts[key] = conflicts

        schedules = prepared.entries.get("schedules")
        if schedules is not None:
            imported = conflicts = 0
            for entry in schedules:
                schedule = NotificationSchedule.for_owner(
                    owner_id,
                    entry,
                    next_run=entry.get("next_run") or now,
                    enabled=bool(entry.get("enabled")),
                )
                if store.try_save_schedule(schedule, conn=conn).success:
                    imported += 1
                else:
                    conflicts += 1
            result.imported["schedules"] = imported
            if conflicts:
                result.conflicts["schedules"] = conflicts

    if result.conflicts:
        logger.warning(f"Import for {owner_id} skipped ids owned by other users: {result.conflicts}")
    logger.info(f"Imported account {owner_id}: {result.imported}")
    return result


# === File helpers ===


def dump_json(document: Dict[str, Any], path: Union[str, Path]) -> Path:
    """Write an export document to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def load_json(path: Union[str, Path]) -> Dict[str, Any]:
    """Read an export document from ``path``.

    Raises:
        ValidationError: If the file isn't valid JSON.
    """
    path = Path(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}")
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {path}: {e}")
