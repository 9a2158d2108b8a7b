"""
Shared record types for babylog.

All record dataclasses live here. They are the shared vocabulary between
the server store, the offline queue, the sync engine and the client. Each
record family is a typed envelope around the JSON payload that travels on
the wire and sits in the database: ``from_dict`` reads the camelCase wire
shape, ``to_dict`` writes it back, and keys the dataclass does not know
about (and explicit nulls) are carried in ``extra`` so nothing is lost on a
round trip.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def unix_now() -> int:
    """Get current time as integer unix seconds."""
    return int(datetime.now(timezone.utc).timestamp())


# === Constants ===

# Bounded retry for offline queue entries
MAX_QUEUE_RETRIES = 5

# Default network budget for remote calls (seconds)
DEFAULT_REMOTE_TIMEOUT = 30.0

# Export document format version
EXPORT_VERSION = 1

# Per-owner limits, checked only when a new id is inserted
MAX_ACTIVITIES_PER_USER = 50000
MAX_CUSTOM_ACTIVITIES_PER_USER = 50
MAX_GROWTH_RECORDS_PER_USER = 1000

# Upper bound on any single array in an import document
MAX_IMPORT_RECORDS = 5000

# Snapshot pagination for activities
DEFAULT_ACTIVITY_LIMIT = 500
MAX_ACTIVITY_LIMIT = 1000

DEFAULT_SETTINGS: Dict[str, Any] = {
    "feedingIntervalMinutes": 180,
    "notificationsEnabled": True,
    "themePreference": "auto",
}

# Client-side policy overlaid on every merged settings object.
# Reminder notifications are switched off in this release.
FORCED_SETTINGS: Dict[str, Any] = {
    "notificationsEnabled": False,
}


class RecordFamily(str, Enum):
    """Multi-row record families, named by their snapshot document key."""

    ACTIVITIES = "activities"
    CUSTOM_ACTIVITIES = "customActivities"
    GROWTH_RECORDS = "growthRecords"
    SCHEDULES = "schedules"


class QueueAction(str, Enum):
    """Mutation kinds the offline queue knows how to replay."""

    SAVE_ACTIVITY = "saveActivity"
    DELETE_ACTIVITY = "deleteActivity"
    SAVE_CUSTOM_ACTIVITY = "saveCustomActivity"
    DELETE_CUSTOM_ACTIVITY = "deleteCustomActivity"
    SAVE_GROWTH = "saveGrowth"
    DELETE_GROWTH = "deleteGrowth"
    SAVE_PROFILE = "saveProfile"
    SAVE_SETTINGS = "saveSettings"


VALID_QUEUE_ACTIONS = frozenset(a.value for a in QueueAction)

ACTIVITY_TYPES = frozenset(
    {
        "feeding",
        "water",
        "medication",
        "sleep",
        "custom",
        "diaper",
        "pump",
        "bath",
        "walk",
        "play",
        "doctor",
        "other",
    }
)

ACTIVITY_UNITS = frozenset({"ml", "mg", "gr", "drops", "pieces"})

CUSTOM_ACTIVITY_ICONS = frozenset(
    {"star", "heart", "sun", "cloud", "music", "book", "bath", "utensils"}
)

CUSTOM_ACTIVITY_COLORS = frozenset(
    {
        "bg-red-500",
        "bg-orange-500",
        "bg-amber-500",
        "bg-yellow-500",
        "bg-lime-500",
        "bg-green-500",
        "bg-emerald-500",
        "bg-teal-500",
        "bg-cyan-500",
        "bg-sky-500",
        "bg-blue-500",
        "bg-indigo-500",
        "bg-violet-500",
        "bg-purple-500",
        "bg-fuchsia-500",
        "bg-pink-500",
        "bg-rose-500",
    }
)


# === Envelope helpers ===


def _wire(name: str, **kwargs) -> Any:
    """Declare a dataclass field with its camelCase wire name."""
    metadata = {"wire": name}
    return field(metadata=metadata, **kwargs)


def _envelope_from_dict(cls, data: Dict[str, Any]):
    known = {}
    wire_names = set()
    for f in fields(cls):
        if f.name == "extra":
            continue
        wire_name = f.metadata.get("wire", f.name)
        wire_names.add(wire_name)
        if data.get(wire_name) is not None:
            known[f.name] = data[wire_name]
    extra = {k: v for k, v in data.items() if k not in wire_names or v is None}
    return cls(**known, extra=extra)


def _envelope_to_dict(record) -> Dict[str, Any]:
    out: Dict[str, Any] = dict(record.extra)
    for f in fields(record):
        if f.name == "extra":
            continue
        value = getattr(record, f.name)
        if value is None:
            continue
        out[f.metadata.get("wire", f.name)] = value
    return out


class _Envelope:
    """Mixin giving a record dataclass its wire conversions."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} payload must be an object")
        return _envelope_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _envelope_to_dict(self)


# === Record Types ===


@dataclass
class Profile(_Envelope):
    """Singleton profile, one per owner."""

    name: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = _wire("birthDate", default=None)
    created_at: Optional[str] = _wire("createdAt", default=None)
    updated_at: Optional[str] = _wire("updatedAt", default=None)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserSettings(_Envelope):
    """Singleton settings, merged additively on save."""

    feeding_interval_minutes: Optional[int] = _wire("feedingIntervalMinutes", default=None)
    notifications_enabled: Optional[bool] = _wire("notificationsEnabled", default=None)
    theme_preference: Optional[str] = _wire("themePreference", default=None)
    active_sleep_start: Optional[str] = _wire("activeSleepStart", default=None)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Activity(_Envelope):
    """A tracked activity (feeding, sleep, diaper, ...)."""

    id: Optional[str] = None
    type: Optional[str] = None
    timestamp: Optional[str] = None
    end_timestamp: Optional[str] = _wire("endTimestamp", default=None)
    sub_type: Optional[str] = _wire("subType", default=None)
    notes: Optional[str] = None
    amount: Optional[float] = None
    unit: Optional[str] = None
    medication_name: Optional[str] = _wire("medicationName", default=None)
    metadata: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CustomActivityDefinition(_Envelope):
    """A user-defined activity button."""

    id: Optional[str] = None
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    schedule: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GrowthRecord(_Envelope):
    """A weight/height measurement."""

    id: Optional[str] = None
    date: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = _wire("weightUnit", default=None)
    height: Optional[float] = None
    height_unit: Optional[str] = _wire("heightUnit", default=None)
    age_in_days: Optional[int] = _wire("ageInDays", default=None)
    extra: Dict[str, Any] = field(default_factory=dict)


RECORD_ENVELOPES = {
    RecordFamily.ACTIVITIES: Activity,
    RecordFamily.CUSTOM_ACTIVITIES: CustomActivityDefinition,
    RecordFamily.GROWTH_RECORDS: GrowthRecord,
}


# Export keys that live in their own schedule columns
SCHEDULE_ROW_KEYS = frozenset({"id", "type", "next_run", "enabled"})


@dataclass
class NotificationSchedule:
    """A notification schedule row.

    ``chat_id`` must equal ``user_id``; rows where it doesn't are treated as
    suspicious and skipped by every consumer.
    """

    id: str
    user_id: int
    chat_id: int
    type: str
    schedule_data: Dict[str, Any] = field(default_factory=dict)
    next_run: Optional[int] = None
    enabled: bool = True

    @classmethod
    def for_owner(
        cls, owner_id: int, data: Dict[str, Any], next_run: Optional[int], enabled: bool
    ) -> "NotificationSchedule":
        """Build a personal row from the flat export shape.

        Row columns are kept out of ``schedule_data`` so the blob never holds
        a stale ``next_run``.
        """
        return cls(
            id=data["id"],
            user_id=owner_id,
            chat_id=owner_id,
            type=data["type"],
            schedule_data={k: v for k, v in data.items() if k not in SCHEDULE_ROW_KEYS},
            next_run=next_run,
            enabled=enabled,
        )

    @property
    def is_personal(self) -> bool:
        return self.chat_id == self.user_id

    def to_export_dict(self) -> Dict[str, Any]:
        """Flatten into the export document shape."""
        out = dict(self.schedule_data)
        out.update(
            {
                "id": self.id,
                "type": self.type,
                "enabled": self.enabled,
                "next_run": self.next_run,
            }
        )
        return out


# === Results ===


@dataclass
class UpsertResult:
    """Outcome of an ownership-safe upsert."""

    success: bool
    error: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.success


@dataclass
class AccountSnapshot:
    """Full point-in-time read of one owner's records."""

    profile: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None
    activities: List[Dict[str, Any]] = field(default_factory=list)
    custom_activities: List[Dict[str, Any]] = field(default_factory=list)
    growth_records: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile,
            "settings": self.settings,
            "activities": self.activities,
            "customActivities": self.custom_activities,
            "growthRecords": self.growth_records,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountSnapshot":
        return cls(
            profile=data.get("profile"),
            settings=data.get("settings"),
            activities=data.get("activities") or [],
            custom_activities=data.get("customActivities") or [],
            growth_records=data.get("growthRecords") or [],
        )


@dataclass
class ImportResult:
    """Counts from an account import."""

    imported: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, int] = field(default_factory=dict)
    conflicts: Dict[str, int] = field(default_factory=dict)

    @property
    def total_imported(self) -> int:
        return sum(self.imported.values())


@dataclass
class QueuedMutation:
    """A mutation waiting in the offline queue."""

    id: str
    owner_id: int
    action: str
    payload: Dict[str, Any]
    timestamp: int  # unix milliseconds
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass
class DrainResult:
    """Outcome of one pass over the offline queue."""

    applied: List[str] = field(default_factory=list)
    retried: List[str] = field(default_factory=list)
    discarded: List[QueuedMutation] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


@dataclass
class Notice:
    """Non-blocking message about a write the server refused."""

    action: str
    record_id: Optional[str]
    message: str
    created_at: str = field(default_factory=utc_now)


@dataclass
class SyncResult:
    """Result of a drain-then-pull sync."""

    drain: Optional[DrainResult] = None
    pulled: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0
