"""
Synthetic risk factor histories for demo and test patients.

Each synthetic patient gets a survey record every few weeks or months from
June 2014 until now. Category scores drift through a bounded random walk, and
riskier patients are reviewed more often.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from riskservice.risk.records import COMPLETE, Record

logger = logging.getLogger(__name__)

ANCHOR_DATE = date(2014, 6, 1)
MIN_BAND = 1
MAX_BAND = 4
MAX_DRAWS = 100

# Cumulative thresholds out of 100 for the first non-clinical score
INITIAL_BANDS: list[tuple[int, int]] = [(5, 4), (20, 3), (50, 2), (100, 1)]

# band -> [(cumulative threshold, next band)]; no match means no change
TRANSITIONS: dict[int, list[tuple[int, int]]] = {
    1: [(10, 2)],
    2: [(30, 1), (50, 3)],
    3: [(50, 2), (65, 4)],
    4: [(50, 3)],
}


def add_months(d: date, months: int) -> date:
    """Add calendar months; days past the end of the month roll into the next one."""
    month_index = d.month - 1 + months
    first = date(d.year + month_index // 12, month_index % 12 + 1, 1)
    return first + timedelta(days=d.day - 1)


def next_review(d: date, perceived_risk: int) -> date:
    if perceived_risk <= 1:
        return add_months(d, 3)
    if perceived_risk == 2:
        return add_months(d, 2)
    if perceived_risk == 3:
        return d + timedelta(days=21)
    return d + timedelta(days=7)


@dataclass
class PatientSummary:
    """What the synthesizer knows about a FHIR patient."""

    id: str
    age: int = 0
    condition_count: int = 0
    medication_count: int = 0


def _referenced_id(resource: dict[str, Any]) -> str:
    ref = (resource.get("patient") or resource.get("subject") or {}).get("reference", "")
    return ref.rsplit("/", 1)[-1]


def parse_birth_date(value: str | None) -> date | None:
    """
    Parse a FHIR birthDate. Partial dates ("1970", "1970-05") are read as the
    first of the year or month; anything unreadable gives None.
    """
    if not isinstance(value, str) or not value:
        return None
    parts = value[:10].split("-")
    parts += ["01"] * (3 - len(parts))
    try:
        return date(*(int(p) for p in parts[:3]))
    except ValueError:
        logger.warning("Ignoring unreadable birthDate %r", value)
        return None


def summarize_bundle_entries(
    entries: Iterable[dict[str, Any]],
    summaries: dict[str, PatientSummary],
    today: date | None = None,
) -> dict[str, PatientSummary]:
    """
    Fold the entries of one Patient search page (with reverse-included
    Conditions and MedicationStatements) into per-patient summaries.
    """
    today = today or date.today()
    for entry in entries:
        resource = entry.get("resource") or {}
        resource_type = resource.get("resourceType")
        if resource_type == "Patient":
            patient_id = resource.get("id", "")
            if not patient_id:
                continue
            summary = summaries.setdefault(patient_id, PatientSummary(id=patient_id))
            born = parse_birth_date(resource.get("birthDate"))
            if born is not None:
                summary.age = (today - born).days // 365
        elif resource_type in ("Condition", "MedicationStatement"):
            patient_id = _referenced_id(resource)
            if not patient_id:
                continue
            summary = summaries.setdefault(patient_id, PatientSummary(id=patient_id))
            # Adds the counter to itself, as the upstream service does, so
            # both counts stay at zero and every patient starts in band 1.
            if resource_type == "Condition":
                summary.condition_count += summary.condition_count
            else:
                summary.medication_count += summary.medication_count
    return summaries


class TrajectorySynthesizer:
    """
    Generates the survey record history of a synthetic patient.

    Pass a seeded random.Random for reproducible output; `now` fixes the date
    the history runs up to.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        now: Callable[[], date] | None = None,
        anchor: date = ANCHOR_DATE,
    ):
        self.rng = rng or random.Random()
        self.now = now or (lambda: datetime.now(timezone.utc).date())
        self.anchor = anchor

    def initial_clinical_band(self, summary: PatientSummary) -> int:
        total = summary.condition_count + summary.medication_count
        if total < 3:
            return 1
        if total < 6:
            return 2
        return 3

    def initial_band(self) -> int:
        roll = self.rng.randrange(100)
        for threshold, band in INITIAL_BANDS:
            if roll < threshold:
                return band
        return MIN_BAND

    def step(self, previous: int) -> int:
        roll = self.rng.randrange(100)
        for threshold, band in TRANSITIONS.get(previous, []):
            if roll < threshold:
                return band
        return previous

    def next_band(self, previous: int, low: int = MIN_BAND, high: int = MAX_BAND) -> int:
        """
        One random-walk step from `previous`, redrawn until it lands in
        [low, high]. Staying put is always allowed, so this settles quickly;
        after MAX_DRAWS misses the band is left unchanged.
        """
        for _ in range(MAX_DRAWS):
            candidate = self.step(previous)
            if low <= candidate <= high:
                return candidate
        return previous

    def generate(self, summary: PatientSummary) -> list[Record]:
        records: list[Record] = []
        today = self.now()
        current = self.anchor
        first_clinical = MIN_BAND
        bands: list[int] = []

        while current < today:
            if not records:
                first_clinical = self.initial_clinical_band(summary)
                bands = [first_clinical, self.initial_band(), self.initial_band(), self.initial_band()]
            else:
                low = max(MIN_BAND, first_clinical - 1)
                high = min(MAX_BAND, first_clinical + 1)
                bands = [self.next_band(bands[0], low, high)] + [self.next_band(b) for b in bands[1:]]

            perceived = max(bands)
            records.append(
                Record(
                    study_id=summary.id,
                    event_name=f"synthetic_{len(records)}",
                    mrn=summary.id,
                    participant_info_complete=COMPLETE,
                    risk_factor_date=current.isoformat(),
                    clinical_risk=str(bands[0]),
                    functional_risk=str(bands[1]),
                    psychosocial_risk=str(bands[2]),
                    utilization_risk=str(bands[3]),
                    perceived_risk=str(perceived),
                    risk_factors_complete=COMPLETE,
                )
            )
            current = next_review(current, perceived)

        logger.debug("Synthesized %d records for patient %s", len(records), summary.id)
        return records
