"""
Replacement of a patient's FHIR risk assessments.

Each refresh stores a fresh pie per calculation result, removes the
RiskAssessments this service posted previously for the patient, and posts one
new RiskAssessment per result pointing at its pie.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from riskservice.clients.fhir import FhirClient
from riskservice.errors import PersistenceError, UpstreamError
from riskservice.risk.pie import CalculationResult
from riskservice.services.pie_store import save_pies

logger = logging.getLogger(__name__)

METHOD_SYSTEM = "http://interventionengine.org/risk-assessments"
METHOD_CODE = "REDCap"
METHOD_TEXT = "REDCap Risk Service"
PREDICTED_OUTCOME = "Unexpected ED/Hospital Visit"


class AssessmentUpdater(Protocol):
    def update(self, patient_id: str, results: list[CalculationResult], pie_base_url: str) -> int:
        """Replace the patient's assessments with `results`; returns the number posted."""
        ...


def to_risk_assessment(
    patient_ref: str, result: CalculationResult, pie_base_url: str
) -> dict[str, Any]:
    return {
        "resourceType": "RiskAssessment",
        "status": "final",
        "subject": {"reference": patient_ref},
        "date": result.as_of.isoformat(),
        "method": {
            "coding": [{"system": METHOD_SYSTEM, "code": METHOD_CODE}],
            "text": METHOD_TEXT,
        },
        "prediction": [
            {
                "outcome": {"text": PREDICTED_OUTCOME},
                "probabilityDecimal": result.score,
            }
        ],
        "basis": [{"reference": f"{pie_base_url}{result.pie.id}"}],
    }


class FhirAssessmentUpdater:
    """Stores pies through a session factory and rewrites assessments on the FHIR server."""

    def __init__(self, fhir: FhirClient, session_factory: Callable[[], Session]):
        self.fhir = fhir
        self.session_factory = session_factory

    def update(self, patient_id: str, results: list[CalculationResult], pie_base_url: str) -> int:
        db = self.session_factory()
        try:
            save_pies(db, (r.pie for r in results))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Couldn't store pies for patient {patient_id}: {exc}") from exc
        finally:
            db.close()

        patient_ref = self.fhir.patient_reference(patient_id)
        try:
            stale = self.fhir.find_risk_assessments(patient_id, f"{METHOD_SYSTEM}|{METHOD_CODE}")
            for resource in stale:
                self.fhir.delete("RiskAssessment", resource["id"])
            for result in results:
                self.fhir.create(to_risk_assessment(patient_ref, result, pie_base_url))
        except UpstreamError as exc:
            raise PersistenceError(
                f"Couldn't update risk assessments for patient {patient_id}: {exc}"
            ) from exc

        logger.info(
            "Patient %s: replaced %d risk assessments with %d", patient_id, len(stale), len(results)
        )
        return len(results)
