"""Append-only storage of risk pies."""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from riskservice.models.pie import PieRecord
from riskservice.risk.pie import Pie
from riskservice.services.audit import log_action

logger = logging.getLogger(__name__)


def save_pies(db: Session, pies: Iterable[Pie], *, actor: str = "refresh") -> int:
    """Insert pies and their audit entries. The caller commits."""
    count = 0
    for pie in pies:
        db.add(
            PieRecord(
                id=pie.id,
                created=pie.created,
                patient=pie.patient,
                slices=[s.to_dict() for s in pie.slices],
            )
        )
        log_action(
            db,
            actor=actor,
            action="create",
            resource_type="Pie",
            resource_id=pie.id,
            detail={"patient": pie.patient},
        )
        count += 1
    logger.info("Stored %d pies", count)
    return count


def get_pie(db: Session, pie_id: UUID) -> PieRecord | None:
    return db.get(PieRecord, pie_id)
