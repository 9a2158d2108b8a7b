"""Pydantic models for API requests and responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Requests
# =============================================================================


class ProfileRequest(BaseModel):
    """Full profile to store (overwrites)."""
    profile: dict[str, Any]


class SettingsRequest(BaseModel):
    """Settings patch, merged into what is stored."""
    settings: dict[str, Any]


class DeleteActivityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_id: str = Field(..., alias="activityId", min_length=1)


class DeleteCustomActivityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    custom_activity_id: str = Field(..., alias="customActivityId", min_length=1)


class DeleteGrowthRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    record_id: str = Field(..., alias="recordId", min_length=1)


# =============================================================================
# Responses
# =============================================================================


class SuccessResponse(BaseModel):
    success: bool = True


class SettingsResponse(BaseModel):
    success: bool = True
    settings: dict[str, Any]


class DeleteResponse(BaseModel):
    success: bool = True
    deleted: int = 0


class SnapshotResponse(BaseModel):
    """Everything a client needs to render one owner's data."""
    model_config = ConfigDict(populate_by_name=True)

    profile: dict[str, Any] | None = None
    settings: dict[str, Any] | None = None
    activities: list[dict[str, Any]] = []
    custom_activities: list[dict[str, Any]] = Field(default_factory=list, alias="customActivities")
    growth_records: list[dict[str, Any]] = Field(default_factory=list, alias="growthRecords")


class ActivitiesResponse(BaseModel):
    activities: list[dict[str, Any]]


class ImportResponse(BaseModel):
    success: bool = True
    imported: dict[str, int] = {}
    skipped: dict[str, int] = {}
    conflicts: dict[str, int] = {}


class ErrorResponse(BaseModel):
    error: str
