"""
FastAPI routes.

- GET  /pies/{id}      cached risk pie referenced by a RiskAssessment
- POST /refresh        run one refresh synchronously
- GET  /refresh/runs   recent refresh history
- GET  /health
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from riskservice.config import settings
from riskservice.errors import RiskServiceError
from riskservice.models.database import get_db
from riskservice.refresh.coordinator import RefreshCoordinator, log_outcome_summary
from riskservice.refresh.factory import build_coordinator
from riskservice.schemas.api import (
    HealthResponse,
    PieResponse,
    RefreshOutcomeResponse,
    RefreshRunResponse,
)
from riskservice.services.encryption import EncryptionService
from riskservice.services.pie_store import get_pie
from riskservice.services.runs import recent_runs, record_run

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache
def get_coordinator() -> RefreshCoordinator:
    return build_coordinator(settings)


@lru_cache
def get_encryption() -> EncryptionService:
    return EncryptionService()


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(
    db: Session = Depends(get_db),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
):
    """Basic health endpoint – verifies DB connectivity."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        db_status = "disconnected"
    return HealthResponse(
        status="healthy",
        environment=settings.ENVIRONMENT,
        database=db_status,
        refresh=coordinator.state.value,
    )


# ---------------------------------------------------------------------------
# Pies
# ---------------------------------------------------------------------------

@router.get("/pies/{pie_id}", response_model=PieResponse)
def read_pie(pie_id: str, db: Session = Depends(get_db)):
    try:
        key = UUID(pie_id)
    except ValueError:
        raise HTTPException(
            status_code=400, detail="Bad ID format for requested Pie. Should be a UUID"
        )
    pie = get_pie(db, key)
    if pie is None:
        raise HTTPException(status_code=404, detail="Pie not found")
    return pie.to_dict()


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

@router.post("/refresh", response_model=list[RefreshOutcomeResponse])
def refresh(
    db: Session = Depends(get_db),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
    encryption: EncryptionService = Depends(get_encryption),
):
    """
    Pull survey data and replace the FHIR risk assessments of every study.
    Per-study failures are reported in the body; only a failed fetch or
    aggregation is an error response.
    """
    started_at = datetime.now(timezone.utc)
    try:
        outcomes = coordinator.refresh()
    except RiskServiceError as exc:
        logger.error("Refresh failed: %s", exc)
        record_run(
            db,
            encryption,
            source=coordinator.source.name,
            started_at=started_at,
            outcomes=None,
            stages=coordinator.last_summary,
            error=str(exc),
        )
        db.commit()
        raise HTTPException(status_code=500, detail=str(exc))

    log_outcome_summary(outcomes)
    record_run(
        db,
        encryption,
        source=coordinator.source.name,
        started_at=started_at,
        outcomes=outcomes,
        stages=coordinator.last_summary,
    )
    db.commit()
    return [o.to_dict() for o in outcomes]


@router.get("/refresh/runs", response_model=list[RefreshRunResponse])
def list_refresh_runs(limit: int = 20, db: Session = Depends(get_db)):
    """Recent refresh runs, newest first. Outcomes (and their MRNs) are not exposed."""
    return recent_runs(db, limit=limit)
