"""
REDCap survey records for the risk stratification project.

A record is one row of the REDCap flat export. Every field is kept as the
string REDCap sends; only the study ID is normalized, since REDCap exports it
as a JSON number or a string depending on the project setup.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from riskservice.errors import DateError

COMPLETE = "2"

# Export field name -> Record attribute
REDCAP_FIELDS: dict[str, str] = {
    "study_id": "study_id",
    "redcap_event_name": "event_name",
    "mrn": "mrn",
    "participant_information_complete": "participant_info_complete",
    "rf_date": "risk_factor_date",
    "rf_cmc_risk_cat": "clinical_risk",
    "rf_func_risk_cat": "functional_risk",
    "rf_sb_risk_cat": "psychosocial_risk",
    "rf_util_risk_cat": "utilization_risk",
    "rf_risk_predicted": "perceived_risk",
    "risk_factors_complete": "risk_factors_complete",
}


def normalize_study_id(value: Any) -> str:
    """
    Canonical string form of a REDCap study ID.

    Integral numbers are written as plain digits (1 and 1.0 both become "1")
    so a numeric ID never picks up a float representation.
    """
    if value is None:
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return str(value)


@dataclass(frozen=True)
class Record:
    study_id: str = ""
    event_name: str = ""
    mrn: str = ""
    participant_info_complete: str = ""
    risk_factor_date: str = ""
    clinical_risk: str = ""
    functional_risk: str = ""
    psychosocial_risk: str = ""
    utilization_risk: str = ""
    perceived_risk: str = ""
    risk_factors_complete: str = ""

    @classmethod
    def from_redcap(cls, row: dict[str, Any]) -> Record:
        """Build a record from one row of the REDCap export. Missing fields read as ''."""
        values = {}
        for key, attr in REDCAP_FIELDS.items():
            raw = row.get(key)
            if attr == "study_id":
                values[attr] = normalize_study_id(raw)
            else:
                values[attr] = "" if raw is None else str(raw)
        return cls(**values)

    def to_redcap(self) -> dict[str, str]:
        return {key: getattr(self, attr) for key, attr in REDCAP_FIELDS.items()}

    def is_participation_complete(self) -> bool:
        """Participant info form marked complete and an MRN is present."""
        return self.participant_info_complete == COMPLETE and self.mrn != ""

    def is_risk_factor_complete(self) -> bool:
        """Risk factor form marked complete with a date and all four category scores."""
        return (
            self.risk_factors_complete == COMPLETE
            and self.risk_factor_date != ""
            and self.clinical_risk != ""
            and self.functional_risk != ""
            and self.psychosocial_risk != ""
            and self.utilization_risk != ""
        )

    def risk_factor_datetime(self) -> datetime:
        """The risk factor date at midnight UTC."""
        try:
            parsed = datetime.strptime(self.risk_factor_date, "%Y-%m-%d")
        except ValueError as exc:
            raise DateError(self.risk_factor_date) from exc
        return parsed.replace(tzinfo=timezone.utc)
