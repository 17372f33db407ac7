"""Pydantic models for API response serialization."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Pies
# ---------------------------------------------------------------------------

class SliceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: int
    weight: int
    max_value: int = Field(alias="maxValue")


class PieResponse(BaseModel):
    id: UUID
    created: datetime
    patient: str | None = None
    slices: list[SliceResponse]


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

class RefreshOutcomeResponse(BaseModel):
    study_id: str
    mrn: str
    patient_id: str
    assessment_count: int
    error: str | None = None


class RefreshRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    source: str
    status: str
    started_at: datetime
    completed_at: datetime | None
    study_count: int
    error_count: int
    error: str | None = None


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    database: str = "connected"
    refresh: str = "idle"
