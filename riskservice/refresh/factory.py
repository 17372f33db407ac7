"""Wiring of the refresh coordinator from settings."""

from __future__ import annotations

import logging

from riskservice.clients.fhir import FhirClient
from riskservice.clients.redcap import RedcapClient
from riskservice.config import Settings
from riskservice.models.database import SessionLocal
from riskservice.refresh.coordinator import RefreshCoordinator
from riskservice.refresh.sources import (
    DirectPatientResolver,
    FhirPatientResolver,
    RedcapRecordSource,
    SyntheticRecordSource,
)
from riskservice.services.assessments import FhirAssessmentUpdater

logger = logging.getLogger(__name__)


def build_coordinator(settings: Settings) -> RefreshCoordinator:
    fhir = FhirClient(settings.FHIR_URL, timeout=settings.HTTP_TIMEOUT)

    if settings.REFRESH_SOURCE == "mock":
        source = SyntheticRecordSource(fhir)
        resolver = DirectPatientResolver()
    elif settings.REFRESH_SOURCE == "redcap":
        if not settings.REDCAP_TOKEN:
            logger.warning("REDCAP_TOKEN is not set; REDCap exports will be rejected")
        redcap = RedcapClient(settings.REDCAP_URL, settings.REDCAP_TOKEN, timeout=settings.HTTP_TIMEOUT)
        source = RedcapRecordSource(redcap)
        resolver = FhirPatientResolver(fhir)
    else:
        raise ValueError(f"Unknown REFRESH_SOURCE: {settings.REFRESH_SOURCE!r}")

    logger.info("Refreshing from %s into %s", source.name, settings.FHIR_URL)
    return RefreshCoordinator(
        source=source,
        resolver=resolver,
        updater=FhirAssessmentUpdater(fhir, SessionLocal),
        patient_reference=fhir.patient_reference,
        pie_base_url=settings.pie_base_url,
        max_workers=settings.REFRESH_WORKERS,
    )
