"""
Data models for the risk service store.

- Pies are written once per refreshed calculation and never updated
- Refresh runs keep the history of each reconciliation, MRNs encrypted
- Audit log entries record every write for compliance
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from riskservice.models.database import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Pie – risk breakdown referenced by a FHIR RiskAssessment's basis
# ---------------------------------------------------------------------------
class PieRecord(Base):
    __tablename__ = "pies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created = Column(DateTime(timezone=True), nullable=False)
    patient = Column(String(512), nullable=True, comment="FHIR Patient reference URL")
    slices = Column(JSONDocument, nullable=False, comment="[{name, value, weight, maxValue}]")

    __table_args__ = (Index("ix_pies_patient", "patient"),)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "created": self.created,
            "patient": self.patient,
            "slices": self.slices,
        }


# ---------------------------------------------------------------------------
# Refresh Run – one reconciliation of survey data against the FHIR server
# ---------------------------------------------------------------------------
class RefreshRun(Base):
    __tablename__ = "refresh_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source = Column(String(32), nullable=False, comment="redcap | mock")
    status = Column(String(32), nullable=False, comment="completed | failed")
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    study_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    error = Column(String(2048), nullable=True, comment="Batch-level failure, if any")
    stages = Column(JSONDocument, comment="Per-stage status and timing")
    outcomes = Column(JSONDocument, default=list, comment="Per-study outcomes, MRN encrypted")

    __table_args__ = (Index("ix_refresh_runs_started", "started_at"),)


# ---------------------------------------------------------------------------
# Audit Log – immutable compliance trail
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor = Column(String(128), nullable=False, comment="User or service identity")
    action = Column(String(64), nullable=False, comment="create | read")
    resource_type = Column(String(64), nullable=False)
    resource_id = Column(Uuid(as_uuid=True), nullable=False)
    detail = Column(JSONDocument, comment="Context for the action")
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (Index("ix_audit_timestamp", "timestamp"),)
