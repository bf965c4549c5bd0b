"""API request models for maintenance endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class AdvanceTimeRequest(BaseModel):
    """Request to fast-forward the virtual clock."""

    days: int = Field(default=0, ge=0, description="Days to advance")
    hours: int = Field(default=0, ge=0, description="Hours to advance")
    minutes: int = Field(default=0, ge=0, description="Minutes to advance")

    class Config:
        json_schema_extra = {"example": {"days": 0, "hours": 0, "minutes": 2}}


class CleanupRequest(BaseModel):
    """Request to run retention cleanup."""

    retention_days: Optional[int] = Field(
        None, gt=0, description="Override the configured retention window"
    )

    class Config:
        json_schema_extra = {"example": {"retention_days": 90}}
