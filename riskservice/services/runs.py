"""Refresh run history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from riskservice.models.pie import RefreshRun
from riskservice.refresh.coordinator import RefreshOutcome
from riskservice.services.audit import log_action
from riskservice.services.encryption import EncryptionService


def record_run(
    db: Session,
    encryption: EncryptionService,
    *,
    source: str,
    started_at: datetime,
    outcomes: list[RefreshOutcome] | None,
    stages: dict[str, Any] | None,
    error: str | None = None,
) -> RefreshRun:
    """Persist one refresh, encrypting each outcome's MRN. The caller commits."""
    outcomes = outcomes or []
    stored = []
    for outcome in outcomes:
        entry = outcome.to_dict()
        entry["mrn"] = encryption.encrypt(outcome.mrn)
        stored.append(entry)

    run = RefreshRun(
        source=source,
        status="failed" if error else "completed",
        started_at=started_at,
        completed_at=datetime.now(timezone.utc),
        study_count=len(outcomes),
        error_count=sum(1 for o in outcomes if o.error),
        error=error,
        stages=stages,
        outcomes=stored,
    )
    db.add(run)
    db.flush()
    log_action(
        db,
        actor="refresh",
        action="create",
        resource_type="RefreshRun",
        resource_id=run.id,
        detail={"source": source, "status": run.status, "studies": run.study_count},
    )
    return run


def recent_runs(db: Session, limit: int = 20) -> list[RefreshRun]:
    return (
        db.query(RefreshRun)
        .order_by(RefreshRun.started_at.desc())
        .limit(limit)
        .all()
    )
