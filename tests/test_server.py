"""Tests for the FastAPI server."""

import pytest
from fastapi.testclient import TestClient

from babylog.protocols import StorageError
from babylog.server.app import create_app
from babylog.server.config import Settings, get_settings
from babylog.server.dependencies import get_service

from factories import OTHER_OWNER, OWNER, make_activity, make_custom, make_document, make_growth


@pytest.fixture
def settings(tmp_path):
    return Settings(database_path=str(tmp_path / "api.db"))


@pytest.fixture
def app(settings, service):
    application = create_app(settings)
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_service] = lambda: service
    return application


@pytest.fixture
def api(app):
    return TestClient(app)


def _url(owner=OWNER, path=""):
    return f"/api/user/{owner}{path}"


class TestHealth:
    def test_health(self, api):
        response = api.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestSnapshotRoutes:
    """Reads."""

    def test_empty_snapshot(self, api):
        response = api.get(_url())
        assert response.status_code == 200
        assert response.json() == {
            "profile": None,
            "settings": None,
            "activities": [],
            "customActivities": [],
            "growthRecords": [],
        }

    def test_snapshot_after_writes(self, api):
        api.post(_url(path="/activity"), json=make_activity("a1"))
        api.post(_url(path="/custom-activity"), json=make_custom("c1"))
        api.post(_url(path="/growth"), json=make_growth("g1"))
        api.post(_url(path="/profile"), json={"profile": {"name": "Mia"}})

        body = api.get(_url()).json()

        assert [a["id"] for a in body["activities"]] == ["a1"]
        assert [c["id"] for c in body["customActivities"]] == ["c1"]
        assert [g["id"] for g in body["growthRecords"]] == ["g1"]
        assert body["profile"] == {"name": "Mia"}

    def test_activities_pagination(self, api):
        for day in range(1, 4):
            api.post(_url(path="/activity"), json=make_activity(f"a{day}", f"2024-03-0{day}T08:00:00Z"))

        first = api.get(_url(path="/activities"), params={"limit": 2}).json()["activities"]
        assert [a["id"] for a in first] == ["a3", "a2"]

        rest = api.get(
            _url(path="/activities"), params={"limit": 2, "before": first[-1]["timestamp"]}
        ).json()["activities"]
        assert [a["id"] for a in rest] == ["a1"]

    def test_snapshot_limit_param(self, api):
        for day in range(1, 4):
            api.post(_url(path="/activity"), json=make_activity(f"a{day}", f"2024-03-0{day}T08:00:00Z"))
        body = api.get(_url(), params={"limit": 1}).json()
        assert [a["id"] for a in body["activities"]] == ["a3"]


class TestWriteRoutes:
    """Writes and deletes."""

    def test_save_activity(self, api, service):
        response = api.post(_url(path="/activity"), json=make_activity("a1"))
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert service.get_activities(OWNER)[0]["id"] == "a1"

    def test_cross_owner_write_rejected(self, api, service):
        """Owner 200 reusing owner 100's id gets 403; owner 100's row is unchanged."""
        original = make_activity("dup", notes="original")
        api.post(_url(OWNER, "/activity"), json=original)
        before = service.store.get_record(OWNER, "activities", "dup")

        response = api.post(_url(OTHER_OWNER, "/activity"), json=make_activity("dup", notes="hijack"))

        assert response.status_code == 403
        assert "ID conflict" in response.json()["error"]
        assert service.store.get_record(OWNER, "activities", "dup") == before
        assert service.get_activities(OTHER_OWNER) == []

    def test_settings_patch_merges(self, api):
        api.post(
            _url(path="/settings"),
            json={"settings": {"feedingIntervalMinutes": 180, "notificationsEnabled": True, "themePreference": "light"}},
        )

        response = api.post(_url(path="/settings"), json={"settings": {"themePreference": "dark"}})

        assert response.status_code == 200
        assert response.json()["settings"] == {
            "feedingIntervalMinutes": 180,
            "notificationsEnabled": True,
            "themePreference": "dark",
        }
        assert api.get(_url()).json()["settings"]["themePreference"] == "dark"

    def test_delete_routes(self, api, service):
        api.post(_url(path="/activity"), json=make_activity("a1"))
        api.post(_url(path="/custom-activity"), json=make_custom("c1"))
        api.post(_url(path="/growth"), json=make_growth("g1"))

        assert api.post(_url(path="/activity/delete"), json={"activityId": "a1"}).json()["deleted"] == 1
        assert api.post(_url(path="/custom-activity/delete"), json={"customActivityId": "c1"}).json()["deleted"] == 1
        assert api.post(_url(path="/growth/delete"), json={"recordId": "g1"}).json()["deleted"] == 1
        # Deleting again is a no-op, not an error
        response = api.post(_url(path="/activity/delete"), json={"activityId": "a1"})
        assert response.status_code == 200
        assert response.json()["deleted"] == 0

    def test_delete_other_owners_record_is_noop(self, api, service):
        api.post(_url(OWNER, "/activity"), json=make_activity("a1"))
        response = api.post(_url(OTHER_OWNER, "/activity/delete"), json={"activityId": "a1"})
        assert response.json()["deleted"] == 0
        assert len(service.get_activities(OWNER)) == 1


class TestErrorMapping:
    """Exceptions become status codes with an ``error`` body."""

    def test_invalid_owner_is_400(self, api):
        response = api.get(_url("abc"))
        assert response.status_code == 400
        assert response.json() == {"error": "User ID must be a valid number"}

    def test_owner_out_of_range_is_400(self, api):
        assert api.get(_url(0)).status_code == 400

    def test_invalid_payload_is_400(self, api):
        response = api.post(_url(path="/activity"), json=make_activity(type="juggling"))
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid activity type"}

    def test_missing_body_field_is_400(self, api):
        response = api.post(_url(path="/activity/delete"), json={})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_empty_profile_is_400(self, api):
        response = api.post(_url(path="/profile"), json={"profile": {}})
        assert response.status_code == 400

    def test_storage_error_is_500(self, api, service, monkeypatch):
        def broken(*args, **kwargs):
            raise StorageError("database is locked")

        monkeypatch.setattr(service, "get_account_snapshot", broken)
        response = api.get(_url())
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestOwnerHeader:
    """Optional proxy header check."""

    @pytest.fixture
    def strict_api(self, tmp_path, service):
        settings = Settings(database_path=str(tmp_path / "api.db"), trust_owner_header=True)
        application = create_app(settings)
        application.dependency_overrides[get_settings] = lambda: settings
        application.dependency_overrides[get_service] = lambda: service
        return TestClient(application)

    def test_matching_header_allowed(self, strict_api):
        response = strict_api.get(_url(), headers={"X-Owner-Id": str(OWNER)})
        assert response.status_code == 200

    def test_mismatched_header_forbidden(self, strict_api):
        response = strict_api.get(_url(), headers={"X-Owner-Id": str(OTHER_OWNER)})
        assert response.status_code == 403

    def test_missing_header_forbidden(self, strict_api):
        assert strict_api.get(_url()).status_code == 403


class TestAccountRoutes:
    """Export, import and delete-all."""

    def test_export_download(self, api):
        api.post(_url(path="/activity"), json=make_activity("a1"))
        response = api.get(_url(path="/export"))

        assert response.status_code == 200
        assert f"babylog_export_{OWNER}.json" in response.headers["content-disposition"]
        body = response.json()
        assert body["version"] == 1
        assert [a["id"] for a in body["activities"]] == ["a1"]

    def test_import_then_export(self, api):
        response = api.post(_url(path="/import"), json=make_document())
        assert response.status_code == 200
        assert response.json()["imported"]["activities"] == 2

        exported = api.get(_url(path="/export")).json()
        assert {a["id"] for a in exported["activities"]} == {"a1", "a2"}
        assert exported["profile"]["name"] == "Mia"

    def test_import_rejects_bad_version(self, api):
        response = api.post(_url(path="/import"), json=make_document(version=9))
        assert response.status_code == 400
        assert "Unsupported backup version" in response.json()["error"]

    def test_delete_all(self, api, service):
        api.post(_url(path="/activity"), json=make_activity("a1"))
        api.post(_url(path="/profile"), json={"profile": {"name": "Mia"}})

        response = api.post(_url(path="/delete-all"))

        assert response.status_code == 200
        assert response.json()["deleted"] == 2
        assert api.get(_url()).json()["profile"] is None
