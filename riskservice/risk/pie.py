"""
Risk pies derived from complete survey records.

A pie has four equally weighted slices, one per risk category, each scored
1-4. The overall score of a pie is its worst (highest) slice.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from riskservice.errors import DateError, ValidationError
from riskservice.risk.records import Record
from riskservice.risk.study import Study

logger = logging.getLogger(__name__)

SLICE_WEIGHT = 25
SLICE_MAX_VALUE = 4

# Slice name -> Record attribute, in pie order
PIE_SLICES: list[tuple[str, str]] = [
    ("Clinical Risk", "clinical_risk"),
    ("Functional and Environmental Risk", "functional_risk"),
    ("Psychosocial and Mental Health Risk", "psychosocial_risk"),
    ("Utilization Risk", "utilization_risk"),
]


@dataclass(frozen=True)
class Slice:
    name: str
    value: int
    weight: int = SLICE_WEIGHT
    max_value: int = SLICE_MAX_VALUE

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "weight": self.weight,
            "maxValue": self.max_value,
        }


@dataclass(frozen=True)
class Pie:
    slices: tuple[Slice, ...]
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    patient: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "created": self.created.isoformat(),
            "patient": self.patient,
            "slices": [s.to_dict() for s in self.slices],
        }


@dataclass(frozen=True)
class CalculationResult:
    as_of: datetime
    pie: Pie
    score: int


def _parse_score(name: str, raw: str) -> Slice:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError("invalid score", field=name, value=raw) from exc
    # Scores outside 1-4 are passed through as-is.
    return Slice(name=name, value=value)


def to_pie(record: Record, patient: str | None = None) -> Pie:
    """Convert a risk-factor-complete record to a pie with a fresh ID and timestamp."""
    if not record.is_risk_factor_complete():
        raise ValidationError("incomplete risk factors")
    slices = tuple(_parse_score(name, getattr(record, attr)) for name, attr in PIE_SLICES)
    return Pie(slices=slices, patient=patient)


def to_calculation_result(record: Record, patient: str | None = None) -> CalculationResult:
    pie = to_pie(record, patient=patient)
    as_of = record.risk_factor_datetime()
    score = max(s.value for s in pie.slices)
    return CalculationResult(as_of=as_of, pie=pie, score=score)


def ordered_results(study: Study, patient: str | None = None) -> list[CalculationResult]:
    """
    Calculation results for every usable record in the study, oldest first.
    Incomplete or malformed records are skipped, so the result may be shorter
    than the record list. Records sharing a date keep their insertion order.
    """
    results = []
    for record in study.records:
        try:
            results.append(to_calculation_result(record, patient=patient))
        except (ValidationError, DateError) as exc:
            logger.debug("Skipping record %s/%s: %s", study.id, record.event_name, exc)
    results.sort(key=lambda r: r.as_of)
    return results
