"""
Refresh of FHIR risk assessments from survey data.

A refresh fetches every survey record, groups the records into studies, and
for each study finds the FHIR patient, derives its pies in date order and
hands them to the assessment updater. Fetch and aggregation failures fail the
whole refresh; anything that goes wrong for one study is recorded on that
study's outcome and the rest carry on.

Only one refresh runs at a time in the process. A second caller waits for
the running one to finish and then runs its own.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator

from riskservice.errors import RiskServiceError
from riskservice.refresh.sources import PatientResolver, RecordSource
from riskservice.refresh.stages import StagePipeline
from riskservice.risk.pie import ordered_results
from riskservice.risk.study import Study, StudyMap
from riskservice.services.assessments import AssessmentUpdater

logger = logging.getLogger(__name__)


class RefreshState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RefreshGuard:
    """Single-flight guard: holders run one at a time, later callers block."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = RefreshState.IDLE

    @property
    def state(self) -> RefreshState:
        return self._state

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._lock:
            self._state = RefreshState.RUNNING
            try:
                yield
            finally:
                self._state = RefreshState.IDLE


REFRESH_GUARD = RefreshGuard()


@dataclass
class RefreshOutcome:
    study_id: str
    mrn: str
    patient_id: str = ""
    assessment_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "study_id": self.study_id,
            "mrn": self.mrn,
            "patient_id": self.patient_id,
            "assessment_count": self.assessment_count,
            "error": self.error,
        }


class RefreshCoordinator:
    def __init__(
        self,
        source: RecordSource,
        resolver: PatientResolver,
        updater: AssessmentUpdater,
        patient_reference: Callable[[str], str],
        pie_base_url: str,
        guard: RefreshGuard = REFRESH_GUARD,
        max_workers: int = 1,
    ):
        self.source = source
        self.resolver = resolver
        self.updater = updater
        self.patient_reference = patient_reference
        self.pie_base_url = pie_base_url
        self.guard = guard
        self.max_workers = max(1, max_workers)
        self.last_summary: dict[str, Any] | None = None

    @property
    def state(self) -> RefreshState:
        return self.guard.state

    def refresh(self) -> list[RefreshOutcome]:
        with self.guard.hold():
            pipeline = StagePipeline(f"refresh:{self.source.name}")
            pipeline.add_stage("fetch", self._fetch)
            pipeline.add_stage("aggregate", self._aggregate)
            pipeline.add_stage("reconcile", self._reconcile)
            try:
                context = pipeline.run()
            finally:
                self.last_summary = pipeline.summary()
            return context["outcomes"]

    # -- stages --------------------------------------------------------------

    def _fetch(self, context: dict[str, Any]) -> dict[str, Any]:
        records = self.source.fetch_records()
        logger.info("Fetched %d records from %s", len(records), self.source.name)
        return {"records": records}

    def _aggregate(self, context: dict[str, Any]) -> dict[str, Any]:
        studies = StudyMap()
        studies.add_records(context["records"])
        return {"studies": studies}

    def _reconcile(self, context: dict[str, Any]) -> dict[str, Any]:
        studies: list[Study] = context["studies"].values()
        if self.max_workers == 1 or len(studies) < 2:
            outcomes = [self.reconcile_study(s) for s in studies]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                outcomes = list(executor.map(self.reconcile_study, studies))
        return {"outcomes": outcomes}

    # -- per study -----------------------------------------------------------

    def reconcile_study(self, study: Study) -> RefreshOutcome:
        """Resolve, derive and update one study. Never raises."""
        outcome = RefreshOutcome(study_id=study.id, mrn=study.mrn)
        try:
            outcome.patient_id = self.resolver.resolve(study)
            results = ordered_results(study, patient=self.patient_reference(outcome.patient_id))
            outcome.assessment_count = self.updater.update(
                outcome.patient_id, results, self.pie_base_url
            )
        except RiskServiceError as exc:
            outcome.error = str(exc)
            logger.warning("Study %s: %s", study.id, exc)
        except Exception as exc:
            outcome.error = f"unexpected error: {exc}"
            logger.exception("Study %s: unexpected error", study.id)
        return outcome


def log_outcome_summary(outcomes: list[RefreshOutcome]) -> None:
    errors = [o for o in outcomes if o.error]
    assessments = sum(o.assessment_count for o in outcomes)
    logger.info(
        "Refreshed %d studies: %d risk assessments posted, %d errors",
        len(outcomes),
        assessments,
        len(errors),
    )
    for outcome in errors:
        logger.info("  study %s: %s", outcome.study_id, outcome.error)
