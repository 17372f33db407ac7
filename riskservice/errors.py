"""
Exceptions raised by the risk service.

Record-level errors (ValidationError, DateError) only exclude one record from
derived results. Batch-level errors (UpstreamError while fetching,
ConflictError while aggregating) fail a whole refresh. Everything raised while
reconciling a single study is captured on that study's outcome instead.
"""

from __future__ import annotations

from typing import Any


class RiskServiceError(Exception):
    """Base exception for all risk service errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Record errors
# ---------------------------------------------------------------------------

class ValidationError(RiskServiceError):
    """A survey record cannot be turned into a pie."""

    def __init__(self, reason: str, field: str | None = None, value: str | None = None):
        message = reason if field is None else f"{reason}: {field}={value!r}"
        super().__init__(message, {"reason": reason, "field": field, "value": value})
        self.reason = reason
        self.field = field
        self.value = value


class DateError(RiskServiceError):
    """A risk factor date is not in YYYY-MM-DD form."""

    def __init__(self, value: str):
        super().__init__(f"invalid risk factor date: {value!r}", {"value": value})
        self.value = value


# ---------------------------------------------------------------------------
# Batch errors
# ---------------------------------------------------------------------------

class ConflictError(RiskServiceError):
    """A record disagrees with the identity already established for its study."""

    def __init__(self, study_id: str, field: str, existing: str, conflicting: str):
        super().__init__(
            f"Record with {field} {conflicting} cannot be added to study {study_id} "
            f"with {field} {existing}",
            {"study_id": study_id, "field": field, "existing": existing, "conflicting": conflicting},
        )
        self.study_id = study_id
        self.field = field
        self.existing = existing
        self.conflicting = conflicting


class UpstreamError(RiskServiceError):
    """REDCap or the FHIR server failed, answered non-2xx, or sent a malformed body."""

    pass


# ---------------------------------------------------------------------------
# Per-study errors
# ---------------------------------------------------------------------------

class PatientResolutionError(RiskServiceError):
    """The FHIR patient for a study could not be determined."""

    def __init__(self, message: str, study_id: str, mrn: str):
        super().__init__(message, {"study_id": study_id, "mrn": mrn})
        self.study_id = study_id
        self.mrn = mrn


class PatientNotFound(PatientResolutionError):
    def __init__(self, study_id: str, mrn: str):
        super().__init__(f"Couldn't find patient with MRN {mrn} for Study ID {study_id}", study_id, mrn)


class AmbiguousPatient(PatientResolutionError):
    def __init__(self, study_id: str, mrn: str, count: int):
        super().__init__(
            f"Found too many patients ({count}) with MRN {mrn} for Study ID {study_id}", study_id, mrn
        )
        self.count = count


class PersistenceError(RiskServiceError):
    """Risk assessments or pies could not be stored."""

    pass
