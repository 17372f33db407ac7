"""Where refresh records come from, and how studies are matched to FHIR patients."""

from __future__ import annotations

import logging
from typing import Protocol

from riskservice.clients.fhir import FhirClient
from riskservice.clients.redcap import RedcapClient
from riskservice.errors import AmbiguousPatient, PatientNotFound
from riskservice.mock.synthesizer import PatientSummary, TrajectorySynthesizer, summarize_bundle_entries
from riskservice.risk.records import Record
from riskservice.risk.study import Study

logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    name: str

    def fetch_records(self) -> list[Record]: ...


class PatientResolver(Protocol):
    def resolve(self, study: Study) -> str:
        """Return the FHIR patient ID for the study or raise PatientResolutionError."""
        ...


# ---------------------------------------------------------------------------
# Record sources
# ---------------------------------------------------------------------------

class RedcapRecordSource:
    name = "redcap"

    def __init__(self, client: RedcapClient):
        self.client = client

    def fetch_records(self) -> list[Record]:
        return self.client.export_records()


class SyntheticRecordSource:
    """Synthesizes a survey history for every patient on the FHIR server."""

    name = "mock"

    def __init__(self, fhir: FhirClient, synthesizer: TrajectorySynthesizer | None = None):
        self.fhir = fhir
        self.synthesizer = synthesizer or TrajectorySynthesizer()

    def patient_summaries(self) -> dict[str, PatientSummary]:
        summaries: dict[str, PatientSummary] = {}
        params = [
            ("_revinclude", "Condition:patient"),
            ("_revinclude", "MedicationStatement:patient"),
        ]
        for page in self.fhir.iter_pages("Patient", params):
            summarize_bundle_entries(page.get("entry", []), summaries)
        logger.info("Summarized %d FHIR patients", len(summaries))
        return summaries

    def fetch_records(self) -> list[Record]:
        records: list[Record] = []
        for summary in self.patient_summaries().values():
            records.extend(self.synthesizer.generate(summary))
        return records


# ---------------------------------------------------------------------------
# Patient resolvers
# ---------------------------------------------------------------------------

class FhirPatientResolver:
    """Finds the patient whose identifier matches the study's MRN."""

    def __init__(self, fhir: FhirClient):
        self.fhir = fhir

    def resolve(self, study: Study) -> str:
        if not study.mrn:
            raise PatientNotFound(study.id, study.mrn)
        patients = self.fhir.find_patients_by_identifier(study.mrn)
        if not patients:
            raise PatientNotFound(study.id, study.mrn)
        if len(patients) > 1:
            raise AmbiguousPatient(study.id, study.mrn, len(patients))
        return patients[0]["id"]


class DirectPatientResolver:
    """For synthesized studies, whose MRN is the FHIR patient ID itself."""

    def resolve(self, study: Study) -> str:
        if not study.mrn:
            raise PatientNotFound(study.id, study.mrn)
        return study.mrn
