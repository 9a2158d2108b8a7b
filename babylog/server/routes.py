"""Per-owner data routes.

Every route lives under ``/api/user/{owner_id}`` and maps one-to-one onto
an :class:`~babylog.core.AccountService` method. Errors are raised as
babylog exceptions and turned into status codes by the app's handlers.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse

from babylog.types import DEFAULT_ACTIVITY_LIMIT

from .dependencies import OwnerId, Service
from .models import (
    ActivitiesResponse,
    DeleteActivityRequest,
    DeleteCustomActivityRequest,
    DeleteGrowthRequest,
    DeleteResponse,
    ImportResponse,
    ProfileRequest,
    SettingsRequest,
    SettingsResponse,
    SnapshotResponse,
    SuccessResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/user/{owner_id}", tags=["user"])


@router.get("", response_model=SnapshotResponse)
def get_snapshot(
    owner: OwnerId,
    service: Service,
    limit: int = Query(DEFAULT_ACTIVITY_LIMIT, ge=1),
    before: str | None = None,
):
    """Profile, settings and all collections (activities paginated)."""
    return service.get_account_snapshot(owner, limit=limit, before=before).to_dict()


@router.get("/activities", response_model=ActivitiesResponse)
def get_activities(
    owner: OwnerId,
    service: Service,
    limit: int = Query(50, ge=1),
    before: str | None = None,
):
    return {"activities": service.get_activities(owner, limit=limit, before=before)}


@router.post("/profile", response_model=SuccessResponse)
def save_profile(owner: OwnerId, service: Service, request: ProfileRequest):
    service.save_profile(owner, request.profile)
    return SuccessResponse()


@router.post("/settings", response_model=SettingsResponse)
def save_settings(owner: OwnerId, service: Service, request: SettingsRequest):
    merged = service.save_settings(owner, request.settings)
    return SettingsResponse(settings=merged)


@router.post("/activity", response_model=SuccessResponse)
def save_activity(owner: OwnerId, service: Service, activity: dict[str, Any] = Body(...)):
    service.save_activity(owner, activity)
    return SuccessResponse()


@router.post("/activity/delete", response_model=DeleteResponse)
def delete_activity(owner: OwnerId, service: Service, request: DeleteActivityRequest):
    return DeleteResponse(deleted=service.delete_activity(owner, request.activity_id))


@router.post("/custom-activity", response_model=SuccessResponse)
def save_custom_activity(owner: OwnerId, service: Service, definition: dict[str, Any] = Body(...)):
    service.save_custom_activity(owner, definition)
    return SuccessResponse()


@router.post("/custom-activity/delete", response_model=DeleteResponse)
def delete_custom_activity(owner: OwnerId, service: Service, request: DeleteCustomActivityRequest):
    return DeleteResponse(deleted=service.delete_custom_activity(owner, request.custom_activity_id))


@router.post("/growth", response_model=SuccessResponse)
def save_growth_record(owner: OwnerId, service: Service, record: dict[str, Any] = Body(...)):
    service.save_growth_record(owner, record)
    return SuccessResponse()


@router.post("/growth/delete", response_model=DeleteResponse)
def delete_growth_record(owner: OwnerId, service: Service, request: DeleteGrowthRequest):
    return DeleteResponse(deleted=service.delete_growth_record(owner, request.record_id))


@router.get("/export")
def export_account(owner: OwnerId, service: Service):
    document = service.export_account(owner)
    return JSONResponse(
        content=document,
        headers={"Content-Disposition": f'attachment; filename="babylog_export_{owner}.json"'},
    )


@router.post("/import", response_model=ImportResponse)
def import_account(owner: OwnerId, service: Service, document: dict[str, Any] = Body(...)):
    result = service.import_account(owner, document)
    return ImportResponse(imported=result.imported, skipped=result.skipped, conflicts=result.conflicts)


@router.post("/delete-all", response_model=DeleteResponse)
def delete_account(owner: OwnerId, service: Service):
    return DeleteResponse(deleted=service.delete_account(owner))
