"""Tests for the refresh coordinator – fakes stand in for REDCap and FHIR."""

import random
import threading
import time
from datetime import date

import httpx
import pytest

from riskservice.clients.redcap import RedcapClient
from riskservice.errors import AmbiguousPatient, ConflictError, PatientNotFound, PersistenceError, UpstreamError
from riskservice.mock.synthesizer import PatientSummary, TrajectorySynthesizer
from riskservice.refresh.coordinator import RefreshCoordinator, RefreshGuard, RefreshState
from riskservice.refresh.sources import DirectPatientResolver, RedcapRecordSource
from riskservice.risk.records import Record
from riskservice.risk.study import Study


def _make_record(study_id, mrn, date="2016-01-01", complete="2"):
    return Record(
        study_id=study_id,
        mrn=mrn,
        risk_factor_date=date,
        clinical_risk="2",
        functional_risk="1",
        psychosocial_risk="3",
        utilization_risk="1",
        risk_factors_complete=complete,
    )


class FakeSource:
    name = "fake"

    def __init__(self, records=None, error=None, delay=0.0):
        self.records = records or []
        self.error = error
        self.delay = delay
        self.calls = 0

    def fetch_records(self):
        self.calls += 1
        time.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.records)


class FakeResolver:
    """MRN -> list of patient ids, mirroring an identifier search."""

    def __init__(self, patients):
        self.patients = patients

    def resolve(self, study: Study) -> str:
        matches = self.patients.get(study.mrn, [])
        if not matches:
            raise PatientNotFound(study.id, study.mrn)
        if len(matches) > 1:
            raise AmbiguousPatient(study.id, study.mrn, len(matches))
        return matches[0]


class FakeUpdater:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls = []

    def update(self, patient_id, results, pie_base_url):
        if patient_id in self.fail_for:
            raise PersistenceError(f"store down for {patient_id}")
        self.calls.append((patient_id, results, pie_base_url))
        return len(results)


def _coordinator(source, resolver=None, updater=None, **kwargs):
    return RefreshCoordinator(
        source=source,
        resolver=resolver or FakeResolver({}),
        updater=updater or FakeUpdater(),
        patient_reference=lambda pid: f"http://fhir.test/Patient/{pid}",
        pie_base_url="http://risk.test/pies/",
        guard=kwargs.pop("guard", RefreshGuard()),
        **kwargs,
    )


def test_refresh_happy_path():
    records = [
        _make_record("1", "1-1", "2016-04-01"),
        _make_record("1", "", "2015-12-07"),
        _make_record("1", "", "2016-02-01", complete="0"),
        _make_record("a", "1-a"),
    ]
    updater = FakeUpdater()
    coordinator = _coordinator(
        FakeSource(records), FakeResolver({"1-1": ["p1"], "1-a": ["pa"]}), updater
    )

    outcomes = coordinator.refresh()

    assert [(o.study_id, o.mrn, o.patient_id, o.assessment_count, o.error) for o in outcomes] == [
        ("1", "1-1", "p1", 2, None),
        ("a", "1-a", "pa", 1, None),
    ]
    patient_id, results, base = updater.calls[0]
    assert patient_id == "p1"
    assert base == "http://risk.test/pies/"
    assert [r.as_of.date().isoformat() for r in results] == ["2015-12-07", "2016-04-01"]
    assert results[0].pie.patient == "http://fhir.test/Patient/p1"
    assert coordinator.last_summary["status"] == "completed"
    assert coordinator.state == RefreshState.IDLE


def test_per_study_errors_are_isolated():
    records = [
        _make_record("1", "missing"),
        _make_record("2", "twins"),
        _make_record("3", "broken"),
        _make_record("4", "ok"),
    ]
    resolver = FakeResolver({"twins": ["t1", "t2"], "broken": ["pb"], "ok": ["pk"]})
    outcomes = _coordinator(FakeSource(records), resolver, FakeUpdater(fail_for={"pb"})).refresh()

    by_study = {o.study_id: o for o in outcomes}
    assert "Couldn't find patient" in by_study["1"].error
    assert "too many patients (2)" in by_study["2"].error
    assert by_study["3"].patient_id == "pb"
    assert "store down" in by_study["3"].error
    assert by_study["3"].assessment_count == 0
    assert by_study["4"].error is None
    assert by_study["4"].assessment_count == 1


def test_unexpected_error_in_one_study_is_captured():
    class ExplodingUpdater(FakeUpdater):
        def update(self, patient_id, results, pie_base_url):
            if patient_id == "p1":
                raise KeyError("id")
            return super().update(patient_id, results, pie_base_url)

    records = [_make_record("1", "m1"), _make_record("2", "m2")]
    resolver = FakeResolver({"m1": ["p1"], "m2": ["p2"]})
    outcomes = _coordinator(FakeSource(records), resolver, ExplodingUpdater()).refresh()

    assert outcomes[0].error.startswith("unexpected error")
    assert outcomes[1].error is None


def test_fetch_failure_fails_the_refresh():
    coordinator = _coordinator(FakeSource(error=UpstreamError("REDCap down")))

    with pytest.raises(UpstreamError):
        coordinator.refresh()

    assert coordinator.state == RefreshState.IDLE
    assert coordinator.last_summary["stages"]["fetch"]["status"] == "failed"
    assert coordinator.last_summary["stages"]["reconcile"]["status"] == "skipped"


def test_aggregation_conflict_fails_the_refresh():
    records = [_make_record("1", "1-1"), _make_record("1", "9-9")]
    updater = FakeUpdater()
    coordinator = _coordinator(FakeSource(records), FakeResolver({"1-1": ["p1"]}), updater)

    with pytest.raises(ConflictError):
        coordinator.refresh()
    assert updater.calls == []
    assert coordinator.last_summary["stages"]["aggregate"]["status"] == "failed"


def test_every_study_failing_still_returns_outcomes():
    records = [_make_record("1", "x"), _make_record("2", "y")]
    outcomes = _coordinator(FakeSource(records)).refresh()
    assert len(outcomes) == 2
    assert all(o.error for o in outcomes)


def test_parallel_reconcile_keeps_study_order():
    records = [_make_record(str(i), f"m{i}") for i in range(10)]
    resolver = FakeResolver({f"m{i}": [f"p{i}"] for i in range(10)})
    outcomes = _coordinator(FakeSource(records), resolver, max_workers=4).refresh()
    assert [o.patient_id for o in outcomes] == [f"p{i}" for i in range(10)]


def test_concurrent_refreshes_are_serialized():
    guard = RefreshGuard()
    source = FakeSource([_make_record("1", "m1")], delay=0.2)
    coordinator = _coordinator(source, FakeResolver({"m1": ["p1"]}), guard=guard)
    running = []
    overlaps = []

    original_fetch = source.fetch_records

    def tracking_fetch():
        if running:
            overlaps.append(True)
        running.append(True)
        try:
            return original_fetch()
        finally:
            running.pop()

    source.fetch_records = tracking_fetch
    results = []
    threads = [threading.Thread(target=lambda: results.append(coordinator.refresh())) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 3
    assert source.calls == 3
    assert overlaps == []
    assert guard.state == RefreshState.IDLE


def test_guard_reports_running_while_held():
    guard = RefreshGuard()
    with guard.hold():
        assert guard.state == RefreshState.RUNNING
    assert guard.state == RefreshState.IDLE


def test_synthetic_records_flow_through_the_same_path():
    synth = TrajectorySynthesizer(rng=random.Random(3), now=lambda: date(2016, 6, 1))
    records = synth.generate(PatientSummary(id="p1")) + synth.generate(PatientSummary(id="p2"))
    updater = FakeUpdater()
    outcomes = _coordinator(FakeSource(records), DirectPatientResolver(), updater).refresh()

    assert [o.patient_id for o in outcomes] == ["p1", "p2"]
    assert outcomes[0].assessment_count == len([r for r in records if r.study_id == "p1"])
    assert all(o.error is None for o in outcomes)


def _redcap_row(study_id, mrn="", rf_date="2016-01-01", clinical="2"):
    return {
        "study_id": study_id,
        "redcap_event_name": "visit_arm_1",
        "mrn": mrn,
        "participant_information_complete": "2" if mrn else "",
        "rf_date": rf_date,
        "rf_cmc_risk_cat": clinical,
        "rf_func_risk_cat": "1",
        "rf_sb_risk_cat": "3",
        "rf_util_risk_cat": "1",
        "rf_risk_predicted": "2",
        "risk_factors_complete": "2",
    }


def test_malformed_redcap_records_are_dropped_not_fatal():
    rows = [
        _redcap_row(1, mrn="1-1", rf_date="2015-12-07"),
        _redcap_row(1, rf_date="12/07/2016"),
        _redcap_row(1, rf_date="2016-04-01", clinical="high"),
        _redcap_row("a", mrn="1-a", rf_date="2016-02-21"),
    ]
    client = RedcapClient(
        "http://redcap.test/api", "secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=rows)),
    )
    updater = FakeUpdater()
    coordinator = _coordinator(
        RedcapRecordSource(client), FakeResolver({"1-1": ["p1"], "1-a": ["pa"]}), updater
    )

    outcomes = coordinator.refresh()

    assert [(o.study_id, o.assessment_count, o.error) for o in outcomes] == [
        ("1", 1, None),
        ("a", 1, None),
    ]
    _, results, _ = updater.calls[0]
    assert [r.as_of.date().isoformat() for r in results] == ["2015-12-07"]
    assert coordinator.last_summary["status"] == "completed"
