"""Input validation for babylog records.

Every ``validate_*`` function takes the raw wire payload (a dict), raises
:class:`~babylog.protocols.ValidationError` on the first problem found and
returns the payload unchanged when it is acceptable. The server runs these
before any storage write; the import pipeline runs them over the whole
document before touching storage.

Canonical helpers:
- ``validate_owner_id`` - positive integer within the 53-bit safe range
- ``validate_json_size`` - serialized record size cap (100 KB)
- ``parse_iso`` - ISO-8601 parsing via python-dateutil
"""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil.parser import isoparse

from babylog.protocols import ValidationError
from babylog.types import (
    ACTIVITY_TYPES,
    ACTIVITY_UNITS,
    CUSTOM_ACTIVITY_COLORS,
    CUSTOM_ACTIVITY_ICONS,
)

logger = logging.getLogger(__name__)

MAX_JSON_SIZE = 100 * 1024
MAX_SAFE_INTEGER = 2**53 - 1
MAX_NOTES_LENGTH = 300
MAX_MEDICATION_NAME_LENGTH = 50
MAX_NAME_LENGTH = 50
MAX_AMOUNT = 10000
MAX_WEIGHT = 50000  # grams
MAX_HEIGHT = 200  # cm
MIN_FEEDING_INTERVAL = 30
MAX_FEEDING_INTERVAL = 1440


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime, or None if invalid."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_owner_id(owner_id: Any) -> int:
    """Validate and normalise an owner id.

    Accepts ints or numeric strings. Booleans are rejected.
    """
    if isinstance(owner_id, bool):
        raise ValidationError("User ID must be a valid number")
    try:
        value = int(owner_id)
    except (TypeError, ValueError):
        raise ValidationError("User ID must be a valid number")
    if value <= 0 or value > MAX_SAFE_INTEGER:
        raise ValidationError("Invalid user ID range")
    return value


def validate_json_size(data: Any, max_size: int = MAX_JSON_SIZE) -> None:
    try:
        encoded = json.dumps(data, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid JSON data: {e}")
    if len(encoded) > max_size:
        raise ValidationError(f"Payload too large: {len(encoded)} bytes (max: {max_size} bytes)")


def _require_object(data: Any, label: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(f"{label} must be an object")
    return data


def _require_string(data: Dict[str, Any], key: str, label: str) -> str:
    value = data.get(key)
    if not value or not isinstance(value, str):
        raise ValidationError(f"{label} is required and must be a string")
    return value


def _check_length(value: Any, max_length: int, label: str) -> None:
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    if len(value) > max_length:
        raise ValidationError(f"{label} is too long (max: {max_length} characters)")


def _check_number(value: Any, low: float, high: float, message: str) -> None:
    if isinstance(value, bool):
        raise ValidationError(message)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(message)
    if math.isnan(number) or number < low or number > high:
        raise ValidationError(message)


def validate_activity(activity: Any) -> Dict[str, Any]:
    act = _require_object(activity, "Activity")
    _require_string(act, "id", "Activity ID")
    activity_type = _require_string(act, "type", "Activity type")
    if activity_type not in ACTIVITY_TYPES:
        raise ValidationError("Invalid activity type")

    _require_string(act, "timestamp", "Activity timestamp")
    start = parse_iso(act["timestamp"])
    if start is None:
        raise ValidationError("Invalid timestamp format")

    end_raw = act.get("endTimestamp")
    if end_raw is not None:
        if not isinstance(end_raw, str):
            raise ValidationError("End timestamp must be a string")
        end = parse_iso(end_raw)
        if end is None:
            raise ValidationError("Invalid end timestamp format")
        if end <= start:
            raise ValidationError("End time must be after start time")

    if isinstance(act.get("notes"), str) and act["notes"]:
        _check_length(act["notes"], MAX_NOTES_LENGTH, "Notes")
    if isinstance(act.get("medicationName"), str) and act["medicationName"]:
        _check_length(act["medicationName"], MAX_MEDICATION_NAME_LENGTH, "Medication name")

    if act.get("amount") is not None:
        _check_number(act["amount"], 0, MAX_AMOUNT, "Invalid amount value")

    unit = act.get("unit")
    if unit is not None and (not isinstance(unit, str) or unit not in ACTIVITY_UNITS):
        allowed = ", ".join(sorted(ACTIVITY_UNITS))
        raise ValidationError(f"Invalid unit. Allowed values: {allowed}")

    if act.get("subType") is not None:
        _check_length(act["subType"], MAX_NAME_LENGTH, "SubType")

    validate_json_size(act)
    return act


def validate_custom_activity(definition: Any) -> Dict[str, Any]:
    ca = _require_object(definition, "Custom activity")
    _require_string(ca, "id", "Custom activity ID")
    name = _require_string(ca, "name", "Custom activity name")
    _check_length(name, MAX_NAME_LENGTH, "Custom activity name")

    if ca.get("icon") not in CUSTOM_ACTIVITY_ICONS:
        allowed = ", ".join(sorted(CUSTOM_ACTIVITY_ICONS))
        raise ValidationError(f"Invalid icon. Allowed values: {allowed}")
    if ca.get("color") not in CUSTOM_ACTIVITY_COLORS:
        raise ValidationError("Invalid color value")

    validate_json_size(ca)
    return ca


def validate_growth_record(record: Any) -> Dict[str, Any]:
    rec = _require_object(record, "Growth record")
    _require_string(rec, "id", "Growth record ID")
    _require_string(rec, "date", "Growth record date")
    if parse_iso(rec["date"]) is None:
        raise ValidationError("Invalid date format")

    if rec.get("weight") is not None:
        _check_number(rec["weight"], 0, MAX_WEIGHT, "Invalid weight value")
    if rec.get("height") is not None:
        _check_number(rec["height"], 0, MAX_HEIGHT, "Invalid height value")

    validate_json_size(rec)
    return rec


def validate_profile(profile: Any) -> Dict[str, Any]:
    prof = _require_object(profile, "Profile")
    if isinstance(prof.get("name"), str) and prof["name"]:
        _check_length(prof["name"], MAX_NAME_LENGTH, "Name")
    if isinstance(prof.get("birthDate"), str) and prof["birthDate"]:
        if parse_iso(prof["birthDate"]) is None:
            raise ValidationError("Invalid birth date format")
    validate_json_size(prof)
    return prof


def _is_strict_iso(value: Any) -> bool:
    # Full date-time required; a bare date is not an "active since" instant.
    return isinstance(value, str) and "T" in value and parse_iso(value) is not None


def validate_settings(settings: Any) -> Dict[str, Any]:
    sett = _require_object(settings, "Settings")

    if "feedingIntervalMinutes" in sett:
        value = sett["feedingIntervalMinutes"]
        message = (
            f"Invalid feeding interval (must be between {MIN_FEEDING_INTERVAL} "
            f"and {MAX_FEEDING_INTERVAL} minutes)"
        )
        if isinstance(value, bool):
            raise ValidationError(message)
        try:
            interval = int(value)
        except (TypeError, ValueError):
            raise ValidationError(message)
        if interval < MIN_FEEDING_INTERVAL or interval > MAX_FEEDING_INTERVAL:
            raise ValidationError(message)

    for key in ("activeSleepStart", "activeWalkStart"):
        if sett.get(key) is not None and not _is_strict_iso(sett[key]):
            raise ValidationError(f"Invalid {key} (must be null or valid ISO 8601 date string)")

    validate_json_size(sett)
    return sett


def validate_schedule(schedule: Any) -> Dict[str, Any]:
    sched = _require_object(schedule, "Schedule")
    _require_string(sched, "id", "Schedule ID")
    _require_string(sched, "type", "Schedule type")
    next_run = sched.get("next_run")
    if next_run is not None and (isinstance(next_run, bool) or not isinstance(next_run, int)):
        raise ValidationError("Schedule next_run must be unix seconds")
    validate_json_size(sched)
    return sched
