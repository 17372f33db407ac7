"""Grouping of survey records into per-subject studies."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from riskservice.errors import ConflictError
from riskservice.risk.records import Record

logger = logging.getLogger(__name__)


class Study:
    """All records for one study subject, in the order they were added."""

    def __init__(self, study_id: str = "", mrn: str = ""):
        self.id = study_id
        self.mrn = mrn
        self.records: list[Record] = []

    def __repr__(self) -> str:
        return f"Study(id={self.id!r}, mrn={self.mrn!r}, records={len(self.records)})"

    def add_record(self, record: Record) -> None:
        """
        Append a record, taking the study ID and MRN from it if not yet set.
        Raises ConflictError if either disagrees with the study's; the study
        is left untouched in that case.
        """
        if record.study_id and self.id and record.study_id != self.id:
            raise ConflictError(self.id, "study ID", self.id, record.study_id)
        if record.mrn and self.mrn and record.mrn != self.mrn:
            raise ConflictError(self.id, "MRN", self.mrn, record.mrn)

        if record.study_id and not self.id:
            self.id = record.study_id
        if record.mrn and not self.mrn:
            self.mrn = record.mrn
        self.records.append(record)


class StudyMap:
    """Studies keyed by canonical study ID, in order of first appearance."""

    def __init__(self) -> None:
        self._studies: dict[str, Study] = {}

    def __len__(self) -> int:
        return len(self._studies)

    def __iter__(self) -> Iterator[str]:
        return iter(self._studies)

    def __contains__(self, study_id: object) -> bool:
        return study_id in self._studies

    def __getitem__(self, study_id: str) -> Study:
        return self._studies[study_id]

    def values(self) -> list[Study]:
        return list(self._studies.values())

    def add_record(self, record: Record) -> None:
        study = self._studies.get(record.study_id)
        if study is None:
            study = self._studies[record.study_id] = Study()
        study.add_record(record)

    def add_records(self, records: Iterable[Record]) -> None:
        """
        Add records in order, stopping at the first conflict.
        Studies built before the conflict stay in the map.
        """
        count = 0
        for record in records:
            self.add_record(record)
            count += 1
        logger.info("Aggregated %d records into %d studies", count, len(self._studies))
