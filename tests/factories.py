"""Record and document builders shared by the tests."""

from typing import Any, Dict

OWNER = 100
OTHER_OWNER = 200


def make_activity(activity_id: str = "a1", timestamp: str = "2024-03-01T08:00:00.000Z", **extra) -> Dict[str, Any]:
    activity = {"id": activity_id, "type": "feeding", "timestamp": timestamp}
    activity.update(extra)
    return activity


def make_custom(definition_id: str = "c1", name: str = "Tummy time", **extra) -> Dict[str, Any]:
    definition = {"id": definition_id, "name": name, "icon": "star", "color": "bg-blue-500"}
    definition.update(extra)
    return definition


def make_growth(record_id: str = "g1", date: str = "2024-03-01", **extra) -> Dict[str, Any]:
    record = {"id": record_id, "date": date, "weight": 4200, "height": 55}
    record.update(extra)
    return record


def make_document(**overrides) -> Dict[str, Any]:
    document = {
        "version": 1,
        "timestamp": "2024-03-10T12:00:00Z",
        "profile": {"name": "Mia", "birthDate": "2024-01-15"},
        "settings": {"feedingIntervalMinutes": 150},
        "activities": [make_activity("a1"), make_activity("a2", "2024-03-02T08:00:00Z")],
        "customActivities": [make_custom("c1")],
        "growthRecords": [make_growth("g1")],
        "schedules": [],
    }
    document.update(overrides)
    return document
